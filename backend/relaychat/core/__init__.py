"""Core configuration, errors and database plumbing."""
