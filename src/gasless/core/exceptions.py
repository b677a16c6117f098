"""
Gasless wallet exception hierarchy.

Provides typed exceptions for wallet derivation, sponsored transaction
assembly and ledger access so callers can handle each failure precisely.
"""

from __future__ import annotations
from typing import Optional, Any, Dict


class GaslessError(Exception):
    """Base exception for all gasless wallet errors.

    Attributes:
        message: Human-readable error description
        details: Additional context about the error
        recoverable: Whether the operation can be retried
    """

    recoverable: bool = False

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        recoverable: Optional[bool] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}
        if recoverable is not None:
            self.recoverable = recoverable


# ==================== Input Errors ====================


class InvalidInputError(GaslessError):
    """Raised when derivation or builder input is malformed or empty."""
    pass


# ==================== Transaction Errors ====================


class TransactionError(GaslessError):
    """Raised when a sponsored transaction cannot be built or signed."""
    pass


class MissingBlockhashError(TransactionError):
    """Raised when an envelope is assembled without a recent blockhash."""
    pass


class SignerMismatchError(TransactionError):
    """Raised when a signer does not match the role it is asked to sign for.

    Examples: subject keypair not listed as an instruction signer, sponsor
    keypair differing from the envelope's fee payer.
    """

    def __init__(
        self,
        message: str,
        expected: Optional[str] = None,
        actual: Optional[str] = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(message, **kwargs)
        self.expected = expected
        self.actual = actual


class IncompleteSignatureError(TransactionError):
    """Raised when serialization is attempted with unsigned signer slots."""

    def __init__(
        self,
        message: str,
        missing: Optional[list[str]] = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(message, **kwargs)
        self.missing = missing or []


class InvalidStateError(TransactionError):
    """Raised when an envelope operation is not allowed in its current state."""
    pass


# ==================== Ledger Errors ====================


class LedgerError(GaslessError):
    """Raised when communication with the ledger node fails."""
    recoverable = True  # Network errors are often transient


class NetworkTimeoutError(LedgerError):
    """Raised when a ledger call exceeds its timeout."""
    pass


class LedgerRPCError(LedgerError):
    """Raised when the node answers with a JSON-RPC error object."""

    def __init__(
        self,
        message: str,
        code: Optional[int] = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(message, **kwargs)
        self.code = code


class SubmissionError(LedgerError):
    """Raised when the node rejects a submitted transaction.

    Not retried automatically: resubmission safety depends on blockhash expiry.
    """
    recoverable = False


# ==================== Configuration & Wallet Errors ====================


class ConfigurationError(GaslessError):
    """Raised when required configuration is missing or invalid."""
    recoverable = False


class WalletRecoveryError(GaslessError):
    """Raised when a wallet cannot be reconstructed from the given credential."""
    pass


# ==================== Warnings ====================


class SponsorResolutionWarning(UserWarning):
    """Non-fatal: the persisted sponsor secret was unusable and an ephemeral
    sponsor was generated instead."""

    def __init__(self, message: str, reason: str = "missing") -> None:
        super().__init__(message)
        self.message = message
        self.reason = reason


# ==================== Utility Functions ====================


def is_recoverable_error(exc: Exception) -> bool:
    """Check if an exception represents a recoverable error.

    Args:
        exc: The exception to check

    Returns:
        True if the error is recoverable and the operation can be retried
    """
    if isinstance(exc, GaslessError):
        return exc.recoverable

    recoverable_types = (
        ConnectionError,
        TimeoutError,
    )
    return isinstance(exc, recoverable_types)


def get_error_context(exc: Exception) -> Dict[str, Any]:
    """Extract error context from an exception for logging.

    Args:
        exc: The exception to extract context from

    Returns:
        Dictionary containing error type, message, and any additional details
    """
    context: Dict[str, Any] = {
        "error_type": type(exc).__name__,
        "error_message": str(exc),
    }

    if isinstance(exc, GaslessError):
        context["recoverable"] = exc.recoverable
        if exc.details:
            context["details"] = exc.details

    if isinstance(exc, SignerMismatchError):
        if exc.expected is not None:
            context["expected_signer"] = exc.expected
        if exc.actual is not None:
            context["actual_signer"] = exc.actual

    if isinstance(exc, IncompleteSignatureError) and exc.missing:
        context["missing_signers"] = exc.missing

    if isinstance(exc, LedgerRPCError) and exc.code is not None:
        context["rpc_code"] = exc.code

    return context
