"""Chat API service."""
