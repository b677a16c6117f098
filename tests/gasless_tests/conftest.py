import logging
from unittest.mock import MagicMock

import base58
import pytest
from solders.hash import Hash
from solders.keypair import Keypair

from gasless.core.ledger_client import LedgerClient, SignatureStatus
from gasless.core.sponsor import SponsorProvider, SponsorResolution
from gasless.wallet.passkey import PasskeyCredential, StaticAuthenticator
from gasless.wallet.session import SessionStore

CREDENTIAL_KEY = bytes([1, 2, 3])


@pytest.fixture
def credential_key():
    """Short credential public key; exercises cycling of the input."""
    return CREDENTIAL_KEY


@pytest.fixture
def fixed_blockhash():
    """Deterministic, non-default blockhash"""
    return Hash(bytes([7] * 32))


@pytest.fixture
def sponsor_keypair():
    return Keypair.from_seed(bytes([42] * 32))


@pytest.fixture
def sponsor_secret(sponsor_keypair):
    """Base58 of the 64-byte sponsor secret key"""
    return base58.b58encode(bytes(sponsor_keypair)).decode("ascii")


@pytest.fixture
def sponsor_resolution(sponsor_keypair):
    return SponsorResolution(keypair=sponsor_keypair)


@pytest.fixture
def sponsor_provider(sponsor_secret):
    return SponsorProvider(secret=sponsor_secret, allow_ephemeral=False)


@pytest.fixture
def session_store(tmp_path):
    return SessionStore(tmp_path / "gasless" / "session.json")


@pytest.fixture
def passkey_credential(credential_key):
    return PasskeyCredential(credential_id="cred-abc123", public_key=credential_key, raw_id=b"\x01")


@pytest.fixture
def authenticator(passkey_credential):
    return StaticAuthenticator(passkey_credential)


@pytest.fixture
def mock_ledger(fixed_blockhash):
    """Ledger double that serializes envelopes like the real client."""
    ledger = MagicMock(spec=LedgerClient)
    ledger.get_recent_blockhash.return_value = fixed_blockhash

    def _submit_envelope(envelope, timeout=None):
        envelope.serialize()
        return envelope.transaction_id

    ledger.submit_envelope.side_effect = _submit_envelope
    ledger.confirm.side_effect = lambda signature, timeout=None: SignatureStatus(signature, "confirmed", 12)
    return ledger


@pytest.fixture(autouse=True)
def reset_gasless_logger():
    """CLI runs reconfigure the package logger; restore it after each test."""
    yield
    package_logger = logging.getLogger("gasless")
    package_logger.handlers = []
    package_logger.setLevel(logging.NOTSET)
