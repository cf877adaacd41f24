"""Mod lifecycle: resolution, conflicts, staging, merging and orchestration."""
