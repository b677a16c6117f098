"""
Sponsor identity resolution for gasless transactions.

The sponsor is the fee payer. A stable sponsor is decoded from a persisted
secret; when none is usable a fresh random sponsor is generated for the
process. That fallback is demo-only: the ephemeral address changes on every
run and anything sent to an old one is unrecoverable through this path.
The fallback is always logged and flagged on the returned value.
"""

from __future__ import annotations

import json
import logging
import threading
from dataclasses import dataclass, field

import base58
from solders.keypair import Keypair
from solders.pubkey import Pubkey

from gasless.core.config import SPONSOR_KEY_PLACEHOLDER, Config, get_sponsor_secret
from gasless.core.exceptions import ConfigurationError, SponsorResolutionWarning

logger = logging.getLogger(__name__)

_SECRET_KEY_LENGTH = 64
_SEED_LENGTH = 32


@dataclass(frozen=True)
class SponsorResolution:
    """Outcome of resolving the sponsor identity.

    Attributes:
        keypair: Sponsor signing keypair
        ephemeral: True when generated for this process instead of decoded
        warning: Why the persisted secret was not used (ephemeral only)
    """
    keypair: Keypair = field(repr=False)
    ephemeral: bool = False
    warning: SponsorResolutionWarning | None = None

    @property
    def pubkey(self) -> Pubkey:
        return self.keypair.pubkey()

    @property
    def address(self) -> str:
        return str(self.keypair.pubkey())

    def to_dict(self) -> dict[str, object]:
        payload: dict[str, object] = {"sponsor": self.address, "is_demo": self.ephemeral}
        if self.warning is not None:
            payload["warning"] = self.warning.message
        return payload


def decode_sponsor_secret(secret: str) -> Keypair:
    """Decode a persisted sponsor secret.

    Accepted encodings:
    - base58 of the 64-byte secret key (seed followed by public key)
    - base58 of a 32-byte seed
    - JSON array of 64 byte values (Solana CLI keypair file)

    Raises:
        ValueError: If the secret cannot be decoded into a keypair
    """
    text = secret.strip()
    if not text:
        raise ValueError("Sponsor secret is empty")

    if text.startswith("["):
        try:
            values = json.loads(text)
            raw = bytes(values)
        except (json.JSONDecodeError, TypeError, ValueError) as exc:
            raise ValueError(f"Invalid JSON keypair: {exc}") from exc
    else:
        raw = base58.b58decode(text)

    if len(raw) == _SECRET_KEY_LENGTH:
        return Keypair.from_bytes(raw)
    if len(raw) == _SEED_LENGTH:
        return Keypair.from_seed(raw)
    raise ValueError(
        f"Sponsor secret must decode to {_SECRET_KEY_LENGTH} or {_SEED_LENGTH} bytes, got {len(raw)}"
    )


def resolve_sponsor(
    secret: str | None,
    *,
    allow_ephemeral: bool = True,
) -> SponsorResolution:
    """Resolve the sponsor identity from an optional persisted secret.

    Args:
        secret: Persisted sponsor secret, or None when not configured
        allow_ephemeral: Whether a random sponsor may replace an unusable secret

    Returns:
        SponsorResolution, with ``ephemeral=True`` on fallback

    Raises:
        ConfigurationError: If the fallback is needed but not allowed
    """
    if secret is not None and secret.strip() and secret.strip() != SPONSOR_KEY_PLACEHOLDER:
        try:
            keypair = decode_sponsor_secret(secret)
        except ValueError as exc:
            warning = SponsorResolutionWarning(
                f"Invalid sponsor key ({exc}); using an ephemeral sponsor",
                reason="invalid",
            )
        else:
            logger.info(
                "Using persisted sponsor identity",
                extra={"event": "sponsor.resolved", "sponsor": str(keypair.pubkey())},
            )
            return SponsorResolution(keypair=keypair)
    elif secret is not None and secret.strip() == SPONSOR_KEY_PLACEHOLDER:
        warning = SponsorResolutionWarning(
            "Sponsor key is still the placeholder value; using an ephemeral sponsor",
            reason="placeholder",
        )
    else:
        warning = SponsorResolutionWarning(
            "No sponsor key configured; using an ephemeral sponsor",
            reason="missing",
        )

    if not allow_ephemeral:
        raise ConfigurationError(
            "A stable, funded sponsor key is required on this network "
            "(set GASLESS_SPONSOR_PRIVATE_KEY)",
            details={"reason": warning.reason},
        )

    keypair = Keypair()
    logger.warning(
        "%s: %s",
        warning.message,
        keypair.pubkey(),
        extra={
            "event": "sponsor.ephemeral",
            "reason": warning.reason,
            "sponsor": str(keypair.pubkey()),
        },
    )
    return SponsorResolution(keypair=keypair, ephemeral=True, warning=warning)


class SponsorProvider:
    """Process-lifetime sponsor cache.

    The first call resolves the sponsor under a lock; later calls read the
    cached value without locking. An ephemeral sponsor therefore stays the
    same for the rest of the process instead of changing per transaction.
    """

    def __init__(self, secret: str | None = None, allow_ephemeral: bool | None = None):
        self._secret = secret
        self._allow_ephemeral = (
            Config.ALLOW_EPHEMERAL_SPONSOR if allow_ephemeral is None else allow_ephemeral
        )
        self._resolution: SponsorResolution | None = None
        self._lock = threading.Lock()

    @classmethod
    def from_env(cls) -> "SponsorProvider":
        return cls(secret=get_sponsor_secret())

    def get(self) -> SponsorResolution:
        resolution = self._resolution
        if resolution is not None:
            return resolution
        with self._lock:
            if self._resolution is None:
                self._resolution = resolve_sponsor(
                    self._secret, allow_ephemeral=self._allow_ephemeral
                )
            return self._resolution


_global_provider: SponsorProvider | None = None
_global_lock = threading.Lock()


def get_sponsor_provider() -> SponsorProvider:
    """
    Get the process-wide sponsor provider configured from the environment.

    Returns:
        SponsorProvider instance
    """
    global _global_provider
    if _global_provider is None:
        with _global_lock:
            if _global_provider is None:
                _global_provider = SponsorProvider.from_env()
    return _global_provider
