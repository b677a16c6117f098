"""
Passkey (WebAuthn) credential helpers.

The authentication ceremony itself runs in the browser; this module defines
the capability the wallet consumes, builds the WebAuthn option payloads a
front end hands to ``navigator.credentials``, and decodes the credential
public keys it returns. Authentication proofs are not verified here.
"""

from __future__ import annotations

import base64
import binascii
import logging
import re
import secrets
from dataclasses import dataclass, field
from typing import Any, Protocol

from gasless.core.config import Config
from gasless.core.exceptions import InvalidInputError

logger = logging.getLogger(__name__)

CHALLENGE_SIZE = 32
USER_ID_SIZE = 32
CEREMONY_TIMEOUT_MS = 60000
# COSE algorithm identifiers: ES256 and RS256
SUPPORTED_ALGORITHMS = (-7, -257)

_HEX_PATTERN = re.compile(r"^(0x)?([0-9a-fA-F]{2})+$")


def bytes_to_base64url(data: bytes) -> str:
    """Unpadded base64url encoding used by WebAuthn JSON payloads."""
    return base64.urlsafe_b64encode(data).decode("ascii").rstrip("=")


def base64url_to_bytes(value: str) -> bytes:
    """Decode base64url with or without padding.

    Raises:
        InvalidInputError: If the value is not valid base64url
    """
    text = value.strip()
    padded = text + "=" * (-len(text) % 4)
    try:
        return base64.b64decode(padded.encode("ascii"), altchars=b"-_", validate=True)
    except (binascii.Error, ValueError, UnicodeEncodeError) as exc:
        raise InvalidInputError("Value is not valid base64url", details={"value": value}) from exc


def generate_challenge() -> bytes:
    return secrets.token_bytes(CHALLENGE_SIZE)


def decode_credential_public_key(value: str, encoding: str = "auto") -> bytes:
    """Decode a credential public key supplied as text.

    Args:
        value: Hex (optionally 0x-prefixed) or base64url text
        encoding: "hex", "base64url" or "auto" (hex when the text is valid hex)

    Raises:
        InvalidInputError: If the text is empty or cannot be decoded
    """
    text = value.strip()
    if not text:
        raise InvalidInputError("Credential public key cannot be empty")

    if encoding == "auto":
        encoding = "hex" if _HEX_PATTERN.match(text) else "base64url"

    if encoding == "hex":
        if text.lower().startswith("0x"):
            text = text[2:]
        try:
            raw = bytes.fromhex(text)
        except ValueError as exc:
            raise InvalidInputError("Credential public key is not valid hex") from exc
    elif encoding == "base64url":
        raw = base64url_to_bytes(text)
    else:
        raise InvalidInputError(f"Unknown credential key encoding: {encoding}")

    if not raw:
        raise InvalidInputError("Credential public key cannot be empty")
    return raw


@dataclass(frozen=True)
class PasskeyCredential:
    """A registered passkey credential.

    Attributes:
        credential_id: Credential identifier (base64url)
        public_key: Credential public key bytes
        raw_id: Raw credential id bytes
    """
    credential_id: str
    public_key: bytes = field(repr=False)
    raw_id: bytes = field(default=b"", repr=False)


class Authenticator(Protocol):
    """Authentication capability the wallet consumes."""

    def register(self, username: str) -> PasskeyCredential:
        """Run a registration ceremony and return the new credential."""
        ...

    def authenticate(self) -> str:
        """Run an authentication ceremony and return the credential id."""
        ...


class StaticAuthenticator:
    """Authenticator that replays one known credential.

    Used where the ceremony already happened elsewhere (CLI input, tests).
    """

    def __init__(self, credential: PasskeyCredential):
        self.credential = credential

    def register(self, username: str) -> PasskeyCredential:
        logger.debug(
            "Replaying static passkey credential",
            extra={"event": "passkey.register", "username": username},
        )
        return self.credential

    def authenticate(self) -> str:
        return self.credential.credential_id


def build_registration_options(
    username: str,
    rp_name: str | None = None,
    rp_id: str | None = None,
    challenge: bytes | None = None,
    user_id: bytes | None = None,
) -> dict[str, Any]:
    """WebAuthn ``PublicKeyCredentialCreationOptions`` as JSON.

    Platform authenticator, resident key and user verification are required.
    """
    if not username or not username.strip():
        raise InvalidInputError("Username is required to register a passkey")
    return {
        "challenge": bytes_to_base64url(challenge or generate_challenge()),
        "rp": {"name": rp_name or Config.RP_NAME, "id": rp_id or Config.RP_ID},
        "user": {
            "id": bytes_to_base64url(user_id or secrets.token_bytes(USER_ID_SIZE)),
            "name": username,
            "displayName": username,
        },
        "pubKeyCredParams": [{"alg": alg, "type": "public-key"} for alg in SUPPORTED_ALGORITHMS],
        "timeout": CEREMONY_TIMEOUT_MS,
        "attestation": "none",
        "authenticatorSelection": {
            "authenticatorAttachment": "platform",
            "requireResidentKey": True,
            "residentKey": "required",
            "userVerification": "required",
        },
    }


def build_authentication_options(
    rp_id: str | None = None,
    challenge: bytes | None = None,
) -> dict[str, Any]:
    """WebAuthn ``PublicKeyCredentialRequestOptions`` as JSON."""
    return {
        "challenge": bytes_to_base64url(challenge or generate_challenge()),
        "timeout": CEREMONY_TIMEOUT_MS,
        "rpId": rp_id or Config.RP_ID,
        "userVerification": "required",
    }
