"""Data models and configuration file handling."""
