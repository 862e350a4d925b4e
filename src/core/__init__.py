"""Shared infrastructure: logging, error taxonomy and redaction."""
