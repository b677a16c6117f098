"""
Gasless Wallet Configuration

Supports devnet, testnet and mainnet-beta with separate configurations.

SECURITY NOTICE:
- The sponsor secret MUST be provided via environment variable
- Never commit sponsor secrets to version control
- Mainnet refuses to run with an ephemeral (randomly generated) sponsor
"""

from __future__ import annotations

import logging
import os
from enum import Enum

from gasless.core.exceptions import ConfigurationError

logger = logging.getLogger(__name__)


class NetworkType(Enum):
    DEVNET = "devnet"
    TESTNET = "testnet"
    MAINNET = "mainnet-beta"


# Placeholder shipped in example env files; treated the same as "not set"
SPONSOR_KEY_PLACEHOLDER = "your_base58_encoded_private_key_here"

# SPL Memo program (v2)
MEMO_PROGRAM_ID = "MemoSq4gqABAXKb96qnH8TysNcWxMyWCqXgDLGmfcHr"

LAMPORTS_PER_SOL = 1_000_000_000
# Typical base fee for a transaction with up to two signatures
ESTIMATED_FEE_LAMPORTS = 5000

DEFAULT_RPC_URLS = {
    NetworkType.DEVNET: "https://api.devnet.solana.com",
    NetworkType.TESTNET: "https://api.testnet.solana.com",
    NetworkType.MAINNET: "https://api.mainnet-beta.solana.com",
}


def _parse_network(raw: str) -> NetworkType:
    value = raw.strip().lower()
    if value == "mainnet":
        value = NetworkType.MAINNET.value
    for network in NetworkType:
        if network.value == value:
            return network
    raise ConfigurationError(
        f"Unknown GASLESS_NETWORK '{raw}'. Expected one of: "
        + ", ".join(n.value for n in NetworkType)
    )


def _get_float(env_var: str, default: str) -> float:
    raw = os.getenv(env_var, default).strip()
    try:
        return float(raw)
    except ValueError as exc:
        raise ConfigurationError(f"{env_var} must be a number, got '{raw}'") from exc


def get_sponsor_secret() -> str | None:
    """Read the persisted sponsor secret, or None when unset/placeholder.

    Read at call time so that tests and long-running processes see the
    current environment.
    """
    value = os.getenv("GASLESS_SPONSOR_PRIVATE_KEY", "").strip()
    if not value or value == SPONSOR_KEY_PLACEHOLDER:
        return None
    return value


# Get network type from environment variable
NETWORK = _parse_network(os.getenv("GASLESS_NETWORK", "devnet"))  # Default to devnet for safety

RPC_URL = os.getenv("GASLESS_RPC_URL", "").strip() or DEFAULT_RPC_URLS[NETWORK]
RPC_TIMEOUT = _get_float("GASLESS_RPC_TIMEOUT", "30")
COMMITMENT = os.getenv("GASLESS_COMMITMENT", "confirmed").strip()
DERIVATION_STRATEGY = os.getenv("GASLESS_DERIVATION_STRATEGY", "xor").strip().lower()
SESSION_FILE = os.getenv(
    "GASLESS_SESSION_FILE",
    os.path.join(os.path.expanduser("~"), ".gasless", "session.json"),
)
RP_NAME = os.getenv("GASLESS_RP_NAME", "Gasless Passkey Wallet")
RP_ID = os.getenv("GASLESS_RP_ID", "localhost")
LOG_LEVEL = os.getenv("GASLESS_LOG_LEVEL", "INFO").strip().upper()


class DevnetConfig:
    """Devnet configuration (default, free airdrops)"""

    NETWORK_TYPE = NetworkType.DEVNET
    CLUSTER = NetworkType.DEVNET.value
    RPC_URL = RPC_URL
    RPC_TIMEOUT = RPC_TIMEOUT
    COMMITMENT = COMMITMENT

    # Airdrops are rate limited by the public faucet
    AIRDROP_ENABLED = True
    MAX_AIRDROP_SOL = 2.0

    # Demo fallback allowed: a fresh sponsor is generated when none is configured
    ALLOW_EPHEMERAL_SPONSOR = True

    DERIVATION_STRATEGY = DERIVATION_STRATEGY
    SESSION_FILE = SESSION_FILE
    RP_NAME = RP_NAME
    RP_ID = RP_ID


class TestnetConfig(DevnetConfig):
    """Testnet configuration"""

    NETWORK_TYPE = NetworkType.TESTNET
    CLUSTER = NetworkType.TESTNET.value
    MAX_AIRDROP_SOL = 1.0


class MainnetConfig:
    """Mainnet-beta configuration (real funds)"""

    NETWORK_TYPE = NetworkType.MAINNET
    CLUSTER = NetworkType.MAINNET.value
    RPC_URL = RPC_URL
    RPC_TIMEOUT = RPC_TIMEOUT
    COMMITMENT = COMMITMENT

    AIRDROP_ENABLED = False
    MAX_AIRDROP_SOL = 0.0

    # Funds sent to an ephemeral sponsor are unrecoverable
    ALLOW_EPHEMERAL_SPONSOR = False

    DERIVATION_STRATEGY = DERIVATION_STRATEGY
    SESSION_FILE = SESSION_FILE
    RP_NAME = RP_NAME
    RP_ID = RP_ID


# Select config based on network
if NETWORK is NetworkType.MAINNET:
    Config = MainnetConfig
    if get_sponsor_secret() is None:
        logger.warning(
            "GASLESS_SPONSOR_PRIVATE_KEY not set on mainnet; sponsored transactions will be refused",
            extra={"event": "config.sponsor_missing", "network": NETWORK.value},
        )
elif NETWORK is NetworkType.TESTNET:
    Config = TestnetConfig
else:
    Config = DevnetConfig

if DERIVATION_STRATEGY not in ("xor", "hkdf"):
    raise ConfigurationError(
        f"GASLESS_DERIVATION_STRATEGY must be 'xor' or 'hkdf', got '{DERIVATION_STRATEGY}'"
    )

# Export config
__all__ = [
    "Config",
    "NetworkType",
    "DevnetConfig",
    "TestnetConfig",
    "MainnetConfig",
    "MEMO_PROGRAM_ID",
    "LAMPORTS_PER_SOL",
    "ESTIMATED_FEE_LAMPORTS",
    "SPONSOR_KEY_PLACEHOLDER",
    "get_sponsor_secret",
]
