"""Command line interface for the gasless wallet."""

__all__ = []
