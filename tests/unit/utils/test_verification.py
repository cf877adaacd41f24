"""Tests for modweave.utils.verification module."""

import hashlib

import pytest

from modweave.utils.verification import (
    checksums_match,
    compute_checksum,
    sign_payload,
    verify_signature,
)


class TestComputeChecksum:
    """Tests for compute_checksum()."""

    def test_file_checksum(self, temp_dir):
        """A file payload is digested directly."""
        path = temp_dir / "mod.zip"
        path.write_bytes(b"payload")
        assert compute_checksum(path) == hashlib.sha256(b"payload").hexdigest()
        assert compute_checksum(path, "md5") == hashlib.md5(b"payload").hexdigest()

    def test_directory_checksum_is_stable(self, temp_dir):
        """The same tree always yields the same digest, and content matters."""
        payload = temp_dir / "payload"
        payload.mkdir()
        (payload / "a.dll").write_bytes(b"a")
        (payload / "b.cfg").write_bytes(b"b")
        first = compute_checksum(payload)
        assert compute_checksum(payload) == first

        (payload / "b.cfg").write_bytes(b"changed")
        assert compute_checksum(payload) != first

    def test_unsupported_algorithm(self, temp_dir):
        """Unknown algorithms raise ValueError."""
        path = temp_dir / "f"
        path.write_bytes(b"x")
        with pytest.raises(ValueError, match="Unsupported checksum algorithm"):
            compute_checksum(path, "crc32")

    def test_algorithm_names_are_normalized(self, temp_dir):
        """SHA-256 is accepted as sha256."""
        path = temp_dir / "f"
        path.write_bytes(b"x")
        assert compute_checksum(path, "SHA-256") == compute_checksum(path)

    def test_checksums_match_ignores_case(self):
        """Digest comparison is case-insensitive."""
        assert checksums_match("ABCDEF", "abcdef ")
        assert not checksums_match("abc", "abd")


class TestSignatures:
    """Tests for payload signatures."""

    def test_sign_and_verify(self, temp_dir):
        """A signature produced with the key verifies with the same key."""
        path = temp_dir / "mod.zip"
        path.write_bytes(b"payload")
        signature = sign_payload(path, "secret")
        assert verify_signature(path, signature, "secret")
        assert verify_signature(path, signature.upper(), b"secret")

    def test_wrong_key_fails(self, temp_dir):
        """A different key does not verify."""
        path = temp_dir / "mod.zip"
        path.write_bytes(b"payload")
        assert not verify_signature(path, sign_payload(path, "secret"), "other")

    def test_tampered_payload_fails(self, temp_dir):
        """Changing the payload invalidates the signature."""
        path = temp_dir / "mod.zip"
        path.write_bytes(b"payload")
        signature = sign_payload(path, "secret")
        path.write_bytes(b"tampered")
        assert not verify_signature(path, signature, "secret")

    def test_missing_signature_or_key(self, temp_dir):
        """An empty signature or key never verifies."""
        path = temp_dir / "mod.zip"
        path.write_bytes(b"payload")
        assert not verify_signature(path, "", "secret")
        assert not verify_signature(path, sign_payload(path, "secret"), "")
