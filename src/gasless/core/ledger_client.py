"""
Ledger client for the Solana JSON-RPC API.

Covers the calls the gasless flow needs: recent blockhash, balance, raw
transaction submission, confirmation polling and devnet airdrops. Every
call takes a timeout; expiry raises NetworkTimeoutError (retryable) and is
never retried here, since resubmission safety depends on blockhash expiry.
"""

from __future__ import annotations

import base64
import itertools
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

import requests
from requests.adapters import HTTPAdapter
from solders.hash import Hash, ParseHashError

from gasless.core.config import Config
from gasless.core.exceptions import (
    LedgerError,
    LedgerRPCError,
    NetworkTimeoutError,
    SubmissionError,
)
from gasless.core.transaction import SponsoredEnvelope, to_pubkey

logger = logging.getLogger(__name__)

_COMMITMENT_RANK = {"processed": 0, "confirmed": 1, "finalized": 2}


@dataclass(frozen=True)
class SignatureStatus:
    """Confirmation state of a submitted transaction"""
    signature: str
    confirmation_status: str
    slot: Optional[int] = None


class LedgerClient:
    """
    JSON-RPC client for a Solana cluster.

    Features:
    - Connection pooling through a shared requests.Session
    - Per-call timeout overriding the client default
    - JSON-RPC errors mapped onto the gasless exception hierarchy
    """

    def __init__(
        self,
        rpc_url: Optional[str] = None,
        timeout: Optional[float] = None,
        commitment: Optional[str] = None,
        session: Optional[requests.Session] = None,
        pool_connections: int = 4,
        pool_maxsize: int = 4,
    ) -> None:
        """
        Initialize ledger client.

        Args:
            rpc_url: JSON-RPC endpoint (defaults to the configured cluster)
            timeout: Default request timeout in seconds
            commitment: Commitment level for reads and confirmation
            session: Optional pre-built session (tests, custom transports)
            pool_connections: Number of connection pools
            pool_maxsize: Maximum size of connection pool
        """
        self.rpc_url = rpc_url or Config.RPC_URL
        self.timeout = Config.RPC_TIMEOUT if timeout is None else timeout
        self.commitment = commitment or Config.COMMITMENT
        if self.commitment not in _COMMITMENT_RANK:
            raise ValueError(f"Unsupported commitment level: {self.commitment}")
        self._ids = itertools.count(1)

        if session is None:
            session = requests.Session()
            # No automatic retries: a retried sendTransaction is a resubmission
            adapter = HTTPAdapter(
                pool_connections=pool_connections,
                pool_maxsize=pool_maxsize,
                max_retries=0,
            )
            session.mount("http://", adapter)
            session.mount("https://", adapter)
        self.session = session

    def _rpc(self, method: str, params: List[Any], timeout: Optional[float] = None) -> Any:
        """
        Perform a JSON-RPC call and return its ``result``.

        Raises:
            NetworkTimeoutError: If the request times out
            LedgerRPCError: If the node returns an error object
            LedgerError: For other transport or decoding failures
        """
        effective_timeout = self.timeout if timeout is None else timeout
        payload = {
            "jsonrpc": "2.0",
            "id": next(self._ids),
            "method": method,
            "params": params,
        }
        logger.debug("RPC %s -> %s", method, self.rpc_url)
        try:
            response = self.session.post(
                self.rpc_url,
                json=payload,
                headers={"Content-Type": "application/json"},
                timeout=effective_timeout,
            )
        except requests.Timeout as e:
            logger.warning(
                "RPC timeout: %s",
                method,
                extra={"event": "ledger.timeout", "method": method, "timeout": effective_timeout},
            )
            raise NetworkTimeoutError(
                f"{method} timed out after {effective_timeout}s",
                details={"method": method, "timeout": effective_timeout},
            ) from e
        except requests.RequestException as e:
            logger.error(
                "RPC transport error: %s",
                e,
                extra={"event": "ledger.transport_error", "method": method},
            )
            raise LedgerError(f"{method} failed: {e}", details={"method": method}) from e

        try:
            data = response.json()
        except ValueError as e:
            raise LedgerError(
                f"Invalid JSON from node (status {response.status_code})",
                details={"method": method, "status": response.status_code},
            ) from e

        if not isinstance(data, dict):
            raise LedgerError("Malformed JSON-RPC response", details={"method": method})

        error = data.get("error")
        if error:
            message = error.get("message", "Unknown RPC error") if isinstance(error, dict) else str(error)
            code = error.get("code") if isinstance(error, dict) else None
            raise LedgerRPCError(f"{method}: {message}", code=code, details={"method": method})

        if response.status_code >= 400:
            raise LedgerError(
                f"{method} failed with HTTP {response.status_code}",
                details={"method": method, "status": response.status_code},
            )

        if "result" not in data:
            raise LedgerError("JSON-RPC response has no result", details={"method": method})
        return data["result"]

    def get_recent_blockhash(self, timeout: Optional[float] = None) -> Hash:
        """Fetch the latest blockhash for the configured commitment."""
        result = self._rpc("getLatestBlockhash", [{"commitment": self.commitment}], timeout)
        try:
            return Hash.from_string(result["value"]["blockhash"])
        except (KeyError, TypeError, ValueError, ParseHashError) as e:
            raise LedgerError("Malformed getLatestBlockhash response") from e

    def get_balance(self, address: str, timeout: Optional[float] = None) -> int:
        """Balance of ``address`` in lamports."""
        pubkey = to_pubkey(address, "address")
        result = self._rpc("getBalance", [str(pubkey), {"commitment": self.commitment}], timeout)
        try:
            return int(result["value"])
        except (KeyError, TypeError, ValueError) as e:
            raise LedgerError("Malformed getBalance response") from e

    def submit(self, wire_bytes: bytes, timeout: Optional[float] = None) -> str:
        """
        Submit serialized transaction bytes.

        Returns:
            Transaction signature (base58)

        Raises:
            SubmissionError: If the node rejects the transaction
            NetworkTimeoutError: If the call times out
        """
        if not wire_bytes:
            raise SubmissionError("Refusing to submit empty transaction bytes")
        encoded = base64.b64encode(bytes(wire_bytes)).decode("ascii")
        try:
            signature = self._rpc(
                "sendTransaction",
                [
                    encoded,
                    {
                        "encoding": "base64",
                        "skipPreflight": False,
                        "preflightCommitment": self.commitment,
                    },
                ],
                timeout,
            )
        except LedgerRPCError as e:
            logger.error(
                "Transaction rejected by node: %s",
                e.message,
                extra={"event": "ledger.submit_rejected", "rpc_code": e.code},
            )
            raise SubmissionError(e.message, details={"rpc_code": e.code}) from e
        logger.info(
            "Transaction submitted",
            extra={"event": "ledger.submitted", "signature": signature},
        )
        return signature

    def submit_envelope(self, envelope: SponsoredEnvelope, timeout: Optional[float] = None) -> str:
        """Serialize (enforcing complete signatures) and submit an envelope."""
        return self.submit(envelope.serialize(), timeout)

    def get_signature_status(self, signature: str, timeout: Optional[float] = None) -> Optional[Dict[str, Any]]:
        """Raw status entry for ``signature``, or None if the node has not seen it."""
        result = self._rpc(
            "getSignatureStatuses",
            [[signature], {"searchTransactionHistory": False}],
            timeout,
        )
        try:
            return result["value"][0]
        except (KeyError, TypeError, IndexError) as e:
            raise LedgerError("Malformed getSignatureStatuses response") from e

    def confirm(
        self,
        signature: str,
        timeout: Optional[float] = None,
        poll_interval: float = 0.5,
        sleep: Callable[[float], None] = time.sleep,
    ) -> SignatureStatus:
        """
        Poll until ``signature`` reaches the client's commitment level.

        Raises:
            SubmissionError: If the transaction failed on chain
            NetworkTimeoutError: If the commitment is not reached in time
        """
        budget = self.timeout if timeout is None else timeout
        deadline = time.monotonic() + budget
        target = _COMMITMENT_RANK[self.commitment]

        while True:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise NetworkTimeoutError(
                    f"Transaction {signature} not {self.commitment} within {budget}s",
                    details={"signature": signature, "timeout": budget},
                )
            status = self.get_signature_status(signature, timeout=remaining)
            if status:
                if status.get("err"):
                    raise SubmissionError(
                        f"Transaction {signature} failed: {status['err']}",
                        details={"signature": signature, "err": status["err"]},
                    )
                level = status.get("confirmationStatus") or "processed"
                if _COMMITMENT_RANK.get(level, 0) >= target:
                    logger.info(
                        "Transaction confirmed",
                        extra={"event": "ledger.confirmed", "signature": signature, "status": level},
                    )
                    return SignatureStatus(signature, level, status.get("slot"))
            sleep(poll_interval)

    def request_airdrop(self, address: str, lamports: int, timeout: Optional[float] = None) -> str:
        """Request a faucet airdrop (devnet/testnet only)."""
        pubkey = to_pubkey(address, "address")
        signature = self._rpc(
            "requestAirdrop",
            [str(pubkey), int(lamports), {"commitment": self.commitment}],
            timeout,
        )
        logger.info(
            "Airdrop requested",
            extra={"event": "ledger.airdrop", "address": str(pubkey), "lamports": lamports},
        )
        return signature
