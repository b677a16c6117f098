"""
Wallet session persistence.

Keeps the public half of the current wallet session on disk: credential id,
address and the credential public key needed to re-derive the wallet. No
private material is ever written.
"""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path

from gasless.core.config import Config

logger = logging.getLogger(__name__)


class SessionRecord:
    def __init__(
        self,
        credential_id: str,
        address: str,
        public_key: str,
        credential_public_key: str = "",
    ):
        self.credential_id = credential_id
        self.address = address
        self.public_key = public_key
        self.credential_public_key = credential_public_key

    def to_dict(self) -> dict[str, str]:
        return {
            "credential_id": self.credential_id,
            "address": self.address,
            "public_key": self.public_key,
            "credential_public_key": self.credential_public_key,
        }

    @classmethod
    def from_dict(cls, data: dict[str, str]) -> "SessionRecord":
        return cls(
            credential_id=data["credential_id"],
            address=data["address"],
            public_key=data["public_key"],
            credential_public_key=data.get("credential_public_key", ""),
        )


class SessionStore:
    """JSON-file session store for a single wallet session."""

    def __init__(self, path: str | os.PathLike[str] | None = None):
        self.path = Path(path or Config.SESSION_FILE)

    def save(self, record: SessionRecord) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, "w", encoding="utf-8") as f:
            json.dump(record.to_dict(), f, indent=2)
        logger.debug(
            "Wallet session saved",
            extra={"event": "session.saved", "address": record.address},
        )

    def load(self) -> SessionRecord | None:
        if not self.path.exists():
            return None
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
            return SessionRecord.from_dict(data)
        except (json.JSONDecodeError, KeyError, TypeError) as exc:
            logger.warning(
                "Ignoring unreadable session file %s: %s",
                self.path,
                exc,
                extra={"event": "session.corrupt"},
            )
            return None

    def has_existing_session(self) -> bool:
        record = self.load()
        return bool(record and record.credential_id and record.address)

    def get_session_wallet(self) -> dict[str, str] | None:
        """Address and public key of the stored session, if complete."""
        record = self.load()
        if not record or not record.address or not record.public_key:
            return None
        return {"address": record.address, "public_key": record.public_key}

    def clear(self) -> None:
        if self.path.exists():
            self.path.unlink()
            logger.debug("Wallet session cleared", extra={"event": "session.cleared"})
