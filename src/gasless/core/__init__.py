"""
Gasless Core Module

Core functionality for the gasless wallet:
- Deterministic key derivation
- Sponsored transaction assembly, co-signing and serialization
- Sponsor resolution and ledger access
"""

__all__ = []
