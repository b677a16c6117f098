"""Passkey credential helpers and wallet session storage."""

__all__ = []
