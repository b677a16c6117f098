"""
Deterministic wallet derivation from passkey credential public keys.

The same credential public key always yields the same ed25519 keypair and
address, so a passkey can stand in for a seed phrase.

Security Notes:
- The default XOR strategy is a placeholder and NOT a key-derivation
  function: short inputs cycle and the transform is invertible. Anyone who
  sees the credential public key can recompute the wallet.
- The HKDF strategy (HKDF-SHA256 with a domain-separation label) is the
  replacement path. Switching strategies changes every derived address.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum

from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.hkdf import HKDF
from solders.keypair import Keypair
from solders.pubkey import Pubkey

from gasless.core.exceptions import InvalidInputError

logger = logging.getLogger(__name__)

SEED_LENGTH = 32
_XOR_POSITION_MULTIPLIER = 7
HKDF_INFO_LABEL = b"gasless-wallet/ed25519-seed/v1"


class DerivationStrategy(Enum):
    XOR = "xor"
    HKDF = "hkdf"


@dataclass(frozen=True)
class DerivedWallet:
    """A wallet identity derived from a credential public key.

    Attributes:
        seed: 32-byte ed25519 seed
        keypair: Signing keypair expanded from the seed
        public_key: Public identity of the keypair
        address: Base58 address (string form of public_key)
    """
    seed: bytes = field(repr=False)
    keypair: Keypair = field(repr=False)
    public_key: Pubkey
    address: str

    def to_dict(self) -> dict[str, str]:
        """Public fields only; the seed never leaves the process through here."""
        return {"address": self.address, "public_key": str(self.public_key)}


def _coerce_credential_bytes(credential_public_key: object) -> bytes:
    if isinstance(credential_public_key, (bytes, bytearray, memoryview)):
        raw = bytes(credential_public_key)
    else:
        raise InvalidInputError(
            "Credential public key must be bytes",
            details={"type": type(credential_public_key).__name__},
        )
    if not raw:
        raise InvalidInputError("Credential public key cannot be empty")
    return raw


def _xor_seed(raw: bytes) -> bytes:
    length = len(raw)
    return bytes(
        raw[i % length] ^ ((i * _XOR_POSITION_MULTIPLIER) & 0xFF)
        for i in range(SEED_LENGTH)
    )


def _hkdf_seed(raw: bytes) -> bytes:
    return HKDF(
        algorithm=hashes.SHA256(),
        length=SEED_LENGTH,
        salt=None,
        info=HKDF_INFO_LABEL,
    ).derive(raw)


def _resolve_strategy(strategy: DerivationStrategy | str) -> DerivationStrategy:
    if isinstance(strategy, DerivationStrategy):
        return strategy
    try:
        return DerivationStrategy(str(strategy).lower())
    except ValueError as exc:
        raise InvalidInputError(f"Unknown derivation strategy: {strategy}") from exc


def derive_seed(
    credential_public_key: bytes,
    strategy: DerivationStrategy | str = DerivationStrategy.XOR,
) -> bytes:
    """Map a credential public key of any length to a 32-byte seed.

    Raises:
        InvalidInputError: If the input is not bytes or is empty
    """
    raw = _coerce_credential_bytes(credential_public_key)
    if _resolve_strategy(strategy) is DerivationStrategy.HKDF:
        return _hkdf_seed(raw)
    return _xor_seed(raw)


def derive(
    credential_public_key: bytes,
    strategy: DerivationStrategy | str = DerivationStrategy.XOR,
) -> DerivedWallet:
    """Derive the wallet keypair and address for a credential public key.

    Pure function: no randomness, clock or I/O. The seed is expanded with the
    standard ed25519 seed-to-keypair expansion.

    Args:
        credential_public_key: Opaque credential public key bytes (length >= 1)
        strategy: Seed derivation strategy

    Returns:
        DerivedWallet with seed, keypair, public key and address

    Raises:
        InvalidInputError: If the input is not bytes or is empty
    """
    seed = derive_seed(credential_public_key, strategy)
    keypair = Keypair.from_seed(seed)
    public_key = keypair.pubkey()
    address = str(public_key)
    logger.debug(
        "Derived wallet from credential public key",
        extra={
            "event": "wallet.derived",
            "address": address,
            "strategy": _resolve_strategy(strategy).value,
            "input_length": len(credential_public_key),
        },
    )
    return DerivedWallet(seed=seed, keypair=keypair, public_key=public_key, address=address)
