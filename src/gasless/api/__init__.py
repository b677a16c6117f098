"""HTTP API for the gasless wallet."""

__all__ = []
