"""Observability: structured logging and lifecycle events."""
