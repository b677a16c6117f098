"""
Gasless - Passkey Wallet with Sponsored Transactions

A passkey-controlled Solana wallet whose network fees are paid by a sponsor.

Main Components:
- Key Derivation: Deterministic wallet keypair from a passkey credential public key
- Sponsored Transactions: Memo/transfer envelopes co-signed by subject and sponsor
- Ledger Client: Solana JSON-RPC access (blockhash, submit, confirm, airdrop)
- Wallet: Passkey option builders and session persistence
- Interfaces: Click CLI and Flask API blueprint
"""

__version__ = "0.1.0"
__author__ = "Gasless Wallet Team"

__all__ = []
