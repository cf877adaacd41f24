"""Restore point storage."""
