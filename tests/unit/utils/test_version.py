"""Tests for modweave.utils.version module."""

import pytest

from modweave.core.errors import InvalidConstraintFormat
from modweave.utils.version import (
    SemVer,
    VersionConstraint,
    classify_delta,
    find_best_version,
    is_newer,
    satisfies,
    validate_constraint,
)


class TestSemVerParse:
    """Tests for SemVer.parse()."""

    def test_parse_basic_version(self):
        """Parse a basic semver string."""
        v = SemVer.parse("1.2.3")
        assert (v.major, v.minor, v.patch) == (1, 2, 3)
        assert v.prerelease is None
        assert v.build is None

    def test_parse_version_with_prerelease_and_build(self):
        """Parse a version with both prerelease and build."""
        v = SemVer.parse("2.0.0-beta.1+build.456")
        assert v.prerelease == "beta.1"
        assert v.build == "build.456"
        assert str(v) == "2.0.0-beta.1+build.456"

    def test_parse_invalid_version_raises(self):
        """Invalid version strings raise InvalidConstraintFormat."""
        with pytest.raises(InvalidConstraintFormat, match="Invalid semver"):
            SemVer.parse("invalid")

    def test_parse_incomplete_version_raises(self):
        """Incomplete version strings are rejected by strict parsing."""
        with pytest.raises(ValueError):
            SemVer.parse("1.2")

    def test_coerce_loose_versions(self):
        """coerce() fills in missing components and strips a v prefix."""
        assert SemVer.coerce("v1.2") == SemVer(1, 2, 0)
        assert SemVer.coerce("3") == SemVer(3, 0, 0)
        assert SemVer.coerce("1.4.0-beta") == SemVer(1, 4, 0, "beta")


class TestSemVerOrdering:
    """Tests for SemVer comparison."""

    def test_components_compare_numerically(self):
        """1.10.0 is newer than 1.9.0."""
        assert SemVer.parse("1.10.0") > SemVer.parse("1.9.0")
        assert SemVer.parse("2.0.0") > SemVer.parse("1.99.99")

    def test_prerelease_is_lower_than_release(self):
        """A prerelease sorts before its release."""
        assert SemVer.parse("1.0.0-alpha") < SemVer.parse("1.0.0")

    def test_prerelease_identifiers(self):
        """Numeric prerelease identifiers compare as integers."""
        assert SemVer.parse("1.0.0-alpha.2") < SemVer.parse("1.0.0-alpha.10")
        assert SemVer.parse("1.0.0-alpha") < SemVer.parse("1.0.0-alpha.1")
        assert SemVer.parse("1.0.0-alpha") < SemVer.parse("1.0.0-beta")

    def test_build_metadata_is_ignored(self):
        """Build metadata does not affect equality."""
        assert SemVer.parse("1.0.0+a") == SemVer.parse("1.0.0+b")
        assert hash(SemVer.parse("1.0.0+a")) == hash(SemVer.parse("1.0.0"))


class TestVersionConstraint:
    """Tests for VersionConstraint."""

    @pytest.mark.parametrize(
        "expression,version,expected",
        [
            ("1.2.3", "1.2.3", True),
            ("=1.2.3", "1.2.4", False),
            ("~1.2.0", "1.2.9", True),
            ("~1.2.0", "1.3.0", False),
            ("^1.2.0", "1.9.0", True),
            ("^1.2.0", "2.0.0", False),
            ("^0.2.0", "0.2.5", True),
            ("^0.2.0", "0.3.0", False),
            ("^0.0.3", "0.0.4", False),
            (">=1.0.0,<2.0.0", "1.5.0", True),
            (">=1.0.0,<2.0.0", "2.0.0", False),
            ("!=1.0.0", "1.0.0", False),
            (">1.0.0", "1.0.1", True),
            ("<=1.0.0", "1.0.0", True),
            ("*", "0.0.1", True),
            ("", "5.0.0", True),
            ("latest", "1.0.0", True),
        ],
    )
    def test_matches(self, expression, version, expected):
        """Constraint forms evaluate as documented."""
        assert VersionConstraint(expression).matches(version) is expected

    @pytest.mark.parametrize("expression", [">=abc", ">=1.0.0,", "1.0.0,2.0.0", "~x"])
    def test_malformed_expressions_raise(self, expression):
        """Malformed expressions raise InvalidConstraintFormat."""
        with pytest.raises(InvalidConstraintFormat):
            VersionConstraint(expression)

    def test_validate_constraint_returns_expression(self):
        """validate_constraint() returns a valid expression unchanged."""
        assert validate_constraint("^1.0.0") == "^1.0.0"

    def test_satisfies(self):
        """satisfies() combines parsing and matching."""
        assert satisfies("1.4.0", ">=1.2.0")
        assert not satisfies("1.1.0", ">=1.2.0")


class TestHelpers:
    """Tests for module-level helpers."""

    def test_is_newer(self):
        """is_newer() compares loosely formatted versions."""
        assert is_newer("1.10.0", "1.9.0")
        assert not is_newer("1.0", "1.0.0")

    @pytest.mark.parametrize(
        "current,available,delta",
        [("1.0.0", "1.0.1", "patch"), ("1.0.0", "1.1.0", "minor"), ("1.2.0", "2.0.0", "major")],
    )
    def test_classify_delta(self, current, available, delta):
        """Deltas are classified by the highest changed component."""
        assert classify_delta(current, available) == delta

    def test_find_best_version(self):
        """The highest matching version wins."""
        versions = ["1.0.0", "1.5.0", "2.0.0", "not-a-version"]
        assert find_best_version("^1.0.0", versions) == "1.5.0"
        assert find_best_version("*", versions) == "2.0.0"

    def test_find_best_version_no_match(self):
        """None is returned when nothing matches."""
        assert find_best_version(">=3.0.0", ["1.0.0"]) is None
