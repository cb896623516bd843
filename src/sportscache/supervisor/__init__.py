"""Worker process management."""
