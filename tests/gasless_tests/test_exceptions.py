"""
Tests for the gasless exception hierarchy and helpers.
"""

from __future__ import annotations

import pytest

from gasless.core.exceptions import (
    ConfigurationError,
    GaslessError,
    IncompleteSignatureError,
    InvalidInputError,
    InvalidStateError,
    LedgerError,
    LedgerRPCError,
    MissingBlockhashError,
    NetworkTimeoutError,
    SignerMismatchError,
    SponsorResolutionWarning,
    SubmissionError,
    TransactionError,
    WalletRecoveryError,
    get_error_context,
    is_recoverable_error,
)


class TestHierarchy:
    @pytest.mark.parametrize(
        "exc_type, parent",
        [
            (MissingBlockhashError, TransactionError),
            (SignerMismatchError, TransactionError),
            (IncompleteSignatureError, TransactionError),
            (InvalidStateError, TransactionError),
            (NetworkTimeoutError, LedgerError),
            (LedgerRPCError, LedgerError),
            (SubmissionError, LedgerError),
            (InvalidInputError, GaslessError),
            (ConfigurationError, GaslessError),
            (WalletRecoveryError, GaslessError),
        ],
    )
    def test_parent(self, exc_type, parent):
        assert issubclass(exc_type, parent)

    def test_warning_is_not_an_error(self):
        warning = SponsorResolutionWarning("using demo sponsor", reason="placeholder")

        assert isinstance(warning, UserWarning)
        assert not isinstance(warning, GaslessError)
        assert warning.reason == "placeholder"


class TestRecoverability:
    """Timeouts are retryable; rejections and input errors are not."""

    def test_defaults(self):
        assert is_recoverable_error(NetworkTimeoutError("slow")) is True
        assert is_recoverable_error(LedgerError("down")) is True
        assert is_recoverable_error(SubmissionError("rejected")) is False
        assert is_recoverable_error(InvalidInputError("bad")) is False
        assert is_recoverable_error(IncompleteSignatureError("missing")) is False

    def test_override(self):
        assert LedgerError("down", recoverable=False).recoverable is False

    def test_builtin_errors(self):
        assert is_recoverable_error(TimeoutError()) is True
        assert is_recoverable_error(KeyError("x")) is False


class TestErrorContext:
    def test_signer_mismatch_context(self):
        exc = SignerMismatchError("wrong sponsor", expected="A", actual="B", details={"role": "sponsor"})
        context = get_error_context(exc)

        assert context["error_type"] == "SignerMismatchError"
        assert context["expected_signer"] == "A"
        assert context["actual_signer"] == "B"
        assert context["details"] == {"role": "sponsor"}
        assert context["recoverable"] is False

    def test_plain_exception(self):
        assert get_error_context(ValueError("x")) == {"error_type": "ValueError", "error_message": "x"}
