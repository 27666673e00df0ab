"""Core infrastructure: logging, errors, timing policies and user notices."""
