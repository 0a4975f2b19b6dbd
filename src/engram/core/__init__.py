"""Core infrastructure: configuration and structured logging."""
