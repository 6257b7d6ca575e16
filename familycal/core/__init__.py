"""Core infrastructure: configuration, logging, HTTP, persistence and messaging."""
