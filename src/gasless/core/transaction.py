"""
Gasless Wallet Core - Sponsored Transaction

Builds Solana legacy transactions whose network fee is paid by a sponsor
identity distinct from the transaction's subject, and co-signs them with
exactly two signers in a fixed order.

Envelope lifecycle:
    ASSEMBLED -> PARTIALLY_SIGNED (subject) -> FULLY_SIGNED (sponsor) -> SERIALIZED

Security Notes:
- The message bytes are compiled once per instruction set and both signers
  sign those exact bytes
- Serialization refuses to emit bytes while any required signature is missing
  or invalid, so a half-signed transaction is never handed to the ledger
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import TYPE_CHECKING, Iterable, Sequence, Union

from solders.hash import Hash, ParseHashError
from solders.instruction import AccountMeta, Instruction
from solders.keypair import Keypair
from solders.message import Message
from solders.pubkey import Pubkey
from solders.signature import Signature
from solders.system_program import TransferParams, transfer
from solders.transaction import Transaction

from gasless.core.config import MEMO_PROGRAM_ID
from gasless.core.exceptions import (
    IncompleteSignatureError,
    InvalidInputError,
    InvalidStateError,
    MissingBlockhashError,
    SignerMismatchError,
)

if TYPE_CHECKING:
    from gasless.core.sponsor import SponsorResolution

logger = logging.getLogger(__name__)

MEMO_PROGRAM = Pubkey.from_string(MEMO_PROGRAM_ID)

IdentityLike = Union[Pubkey, Keypair, str]


class EnvelopeState(Enum):
    """Lifecycle state of a sponsored transaction envelope"""
    ASSEMBLED = "assembled"
    PARTIALLY_SIGNED = "partially_signed"
    FULLY_SIGNED = "fully_signed"
    SERIALIZED = "serialized"


def to_pubkey(value: IdentityLike, field_name: str = "identity") -> Pubkey:
    """Normalize a Pubkey, Keypair or base58 address string to a Pubkey.

    Raises:
        InvalidInputError: If the value is not a valid identity
    """
    if isinstance(value, Pubkey):
        return value
    if isinstance(value, Keypair):
        return value.pubkey()
    if isinstance(value, str) and value.strip():
        try:
            return Pubkey.from_string(value.strip())
        except ValueError as exc:
            raise InvalidInputError(
                f"{field_name} is not a valid base58 address",
                details={"value": value},
            ) from exc
    raise InvalidInputError(
        f"{field_name} must be a Pubkey, Keypair or base58 address",
        details={"type": type(value).__name__},
    )


def _to_blockhash(value: Union[Hash, str, None]) -> Hash:
    if value is None or (isinstance(value, str) and not value.strip()):
        raise MissingBlockhashError("A recent blockhash is required to assemble a transaction")
    if isinstance(value, Hash):
        blockhash = value
    elif isinstance(value, str):
        try:
            blockhash = Hash.from_string(value.strip())
        except (ValueError, ParseHashError) as exc:
            raise InvalidInputError(
                "Recent blockhash is not valid base58",
                details={"value": value},
            ) from exc
    else:
        raise InvalidInputError(
            "Recent blockhash must be a Hash or base58 string",
            details={"type": type(value).__name__},
        )
    if blockhash == Hash.default():
        raise MissingBlockhashError("Recent blockhash is unset (all zero)")
    return blockhash


def build_instruction(subject: IdentityLike, payload: Union[str, bytes]) -> Instruction:
    """Build a memo instruction signed by ``subject``.

    The subject is a required signer without write permission; ``payload`` is
    carried as opaque instruction data (UTF-8 for text).

    Raises:
        InvalidInputError: If the subject is invalid or the payload is empty
    """
    subject_key = to_pubkey(subject, "subject")
    if isinstance(payload, str):
        data = payload.encode("utf-8")
    elif isinstance(payload, (bytes, bytearray, memoryview)):
        data = bytes(payload)
    else:
        raise InvalidInputError(
            "Instruction payload must be str or bytes",
            details={"type": type(payload).__name__},
        )
    if not data:
        raise InvalidInputError("Instruction payload cannot be empty")

    return Instruction(
        MEMO_PROGRAM,
        data,
        [AccountMeta(subject_key, is_signer=True, is_writable=False)],
    )


def build_transfer_instruction(
    subject: IdentityLike,
    recipient: IdentityLike,
    lamports: int,
) -> Instruction:
    """Build a system transfer from ``subject`` whose fee a sponsor will pay.

    Raises:
        InvalidInputError: If an address is invalid or lamports is not a positive int
    """
    if isinstance(lamports, bool) or not isinstance(lamports, int) or lamports <= 0:
        raise InvalidInputError(
            "Transfer amount must be a positive integer number of lamports",
            details={"lamports": lamports},
        )
    return transfer(
        TransferParams(
            from_pubkey=to_pubkey(subject, "subject"),
            to_pubkey=to_pubkey(recipient, "recipient"),
            lamports=lamports,
        )
    )


class SponsoredEnvelope:
    """A fee-sponsored transaction moving through its signing lifecycle.

    Exactly two signers are required: the fee payer (sponsor) and the single
    subject named as signer by the instructions. Signature slots follow the
    compiled message order, fee payer first.

    Attributes:
        fee_payer: Sponsor identity paying the network fee
        recent_blockhash: Freshness anchor for the validity window
        state: Current EnvelopeState
        sponsor_resolution: How the sponsor was resolved, when built by the service
    """

    def __init__(
        self,
        instructions: Sequence[Instruction],
        fee_payer: Pubkey,
        recent_blockhash: Hash,
    ) -> None:
        self.fee_payer = fee_payer
        self.recent_blockhash = recent_blockhash
        self.state = EnvelopeState.ASSEMBLED
        self.sponsor_resolution: "SponsorResolution | None" = None
        self._instructions: list[Instruction] = []
        self._signatures: dict[Pubkey, Signature] = {}
        self._wire: bytes | None = None
        self._compile(list(instructions))

    # ------------------------------------------------------------------
    # Assembly
    # ------------------------------------------------------------------

    def _compile(self, instructions: list[Instruction]) -> None:
        if not instructions:
            raise InvalidInputError("At least one instruction is required")
        for instruction in instructions:
            if not isinstance(instruction, Instruction):
                raise InvalidInputError(
                    "Envelope instructions must be Instruction objects",
                    details={"type": type(instruction).__name__},
                )

        message = Message.new_with_blockhash(instructions, self.fee_payer, self.recent_blockhash)
        required = list(message.account_keys[: message.header.num_required_signatures])
        subjects = [key for key in required if key != self.fee_payer]

        instruction_signers = {
            meta.pubkey
            for instruction in instructions
            for meta in instruction.accounts
            if meta.is_signer
        }
        if self.fee_payer in instruction_signers:
            raise SignerMismatchError(
                "Fee payer must be distinct from the transaction subject",
                expected="sponsor distinct from subject",
                actual=str(self.fee_payer),
            )
        if len(subjects) != 1:
            raise InvalidInputError(
                "Sponsored envelopes require exactly one subject signer",
                details={"subjects": [str(key) for key in subjects]},
            )

        self._instructions = instructions
        self._message = message
        self._message_bytes = bytes(message)
        self._required_signers = required
        self._subject = subjects[0]

    def add_instruction(self, instruction: Instruction) -> None:
        """Append an instruction; only allowed before any signature exists.

        Raises:
            InvalidStateError: If the envelope is signed or serialized
        """
        if self.state is not EnvelopeState.ASSEMBLED:
            raise InvalidStateError(
                f"Cannot add instructions to a {self.state.value} envelope",
                details={"state": self.state.value},
            )
        self._compile(self._instructions + [instruction])

    @property
    def instructions(self) -> tuple[Instruction, ...]:
        return tuple(self._instructions)

    @property
    def message(self) -> Message:
        return self._message

    @property
    def message_bytes(self) -> bytes:
        """Canonical message bytes every signer signs."""
        return self._message_bytes

    @property
    def subject(self) -> Pubkey:
        return self._subject

    @property
    def required_signers(self) -> tuple[Pubkey, ...]:
        return tuple(self._required_signers)

    @property
    def signed_by(self) -> tuple[Pubkey, ...]:
        return tuple(key for key in self._required_signers if key in self._signatures)

    @property
    def missing_signers(self) -> tuple[Pubkey, ...]:
        return tuple(key for key in self._required_signers if key not in self._signatures)

    @property
    def ephemeral_sponsor(self) -> bool:
        """True when the fee payer is a throwaway sponsor generated for this process."""
        return bool(self.sponsor_resolution and self.sponsor_resolution.ephemeral)

    @property
    def transaction_id(self) -> str | None:
        """Ledger transaction id (fee payer signature), once fully signed."""
        signature = self._signatures.get(self.fee_payer)
        if signature is None or self.missing_signers:
            return None
        return str(signature)

    # ------------------------------------------------------------------
    # Signing
    # ------------------------------------------------------------------

    def _check_subject(self, signer: Keypair) -> None:
        if signer.pubkey() != self._subject:
            raise SignerMismatchError(
                "Subject signer does not match the envelope's instruction signer",
                expected=str(self._subject),
                actual=str(signer.pubkey()),
            )

    def _check_sponsor(self, signer: Keypair) -> None:
        if signer.pubkey() != self.fee_payer:
            raise SignerMismatchError(
                "Sponsor signer does not match the envelope's fee payer",
                expected=str(self.fee_payer),
                actual=str(signer.pubkey()),
            )

    def sign_as_subject(self, signer: Keypair) -> None:
        """First phase: the subject authorizes the instructions.

        Raises:
            InvalidStateError: If the subject already signed
            SignerMismatchError: If ``signer`` is not the subject
        """
        if self.state is not EnvelopeState.ASSEMBLED:
            raise InvalidStateError(
                f"Subject signature not accepted in {self.state.value} state",
                details={"state": self.state.value},
            )
        self._check_subject(signer)
        self._signatures[self._subject] = signer.sign_message(self._message_bytes)
        self.state = EnvelopeState.PARTIALLY_SIGNED
        logger.debug(
            "Subject signed sponsored envelope",
            extra={"event": "tx.subject_signed", "subject": str(self._subject)},
        )

    def sign_as_sponsor(self, signer: Keypair) -> None:
        """Second phase: the sponsor authorizes fee payment.

        Raises:
            InvalidStateError: If the subject has not signed yet or the sponsor already signed
            SignerMismatchError: If ``signer`` is not the fee payer
        """
        if self.state is EnvelopeState.ASSEMBLED:
            raise InvalidStateError(
                "Subject must sign before the sponsor",
                details={"state": self.state.value},
            )
        if self.state is not EnvelopeState.PARTIALLY_SIGNED:
            raise InvalidStateError(
                f"Sponsor signature not accepted in {self.state.value} state",
                details={"state": self.state.value},
            )
        self._check_sponsor(signer)
        self._signatures[self.fee_payer] = signer.sign_message(self._message_bytes)
        self.state = EnvelopeState.FULLY_SIGNED
        logger.debug(
            "Sponsor signed sponsored envelope",
            extra={"event": "tx.sponsor_signed", "fee_payer": str(self.fee_payer)},
        )

    def co_sign(self, subject_signer: Keypair, sponsor_signer: Keypair) -> "SponsoredEnvelope":
        """Apply subject then sponsor signatures.

        Both identities are checked before either signature is applied, so a
        mismatch leaves the envelope untouched.
        """
        if self.state is not EnvelopeState.ASSEMBLED:
            raise InvalidStateError(
                f"Cannot co-sign a {self.state.value} envelope",
                details={"state": self.state.value},
            )
        self._check_subject(subject_signer)
        self._check_sponsor(sponsor_signer)
        self.sign_as_subject(subject_signer)
        self.sign_as_sponsor(sponsor_signer)
        return self

    # ------------------------------------------------------------------
    # Serialization
    # ------------------------------------------------------------------

    def serialize(self) -> bytes:
        """Produce wire-format bytes ready for submission.

        Raises:
            IncompleteSignatureError: If any required signature is missing or invalid
        """
        if self.state is EnvelopeState.SERIALIZED and self._wire is not None:
            return self._wire

        missing = [str(key) for key in self.missing_signers]
        if missing:
            logger.warning(
                "Refusing to serialize envelope with missing signatures",
                extra={"event": "tx.incomplete_signatures", "missing": missing},
            )
            raise IncompleteSignatureError(
                f"Envelope is missing {len(missing)} required signature(s)",
                missing=missing,
            )

        invalid = [
            str(key)
            for key in self._required_signers
            if not self._signatures[key].verify(key, self._message_bytes)
        ]
        if invalid:
            raise IncompleteSignatureError(
                "Envelope holds signatures that do not verify",
                missing=invalid,
            )

        transaction = Transaction.populate(
            self._message,
            [self._signatures[key] for key in self._required_signers],
        )
        self._wire = bytes(transaction)
        self.state = EnvelopeState.SERIALIZED
        logger.info(
            "Sponsored transaction serialized",
            extra={
                "event": "tx.serialized",
                "signature": self.transaction_id,
                "fee_payer": str(self.fee_payer),
                "subject": str(self._subject),
                "size": len(self._wire),
            },
        )
        return self._wire

    def __repr__(self) -> str:
        return (
            f"SponsoredEnvelope(state={self.state.value}, subject={self._subject}, "
            f"fee_payer={self.fee_payer}, instructions={len(self._instructions)})"
        )


def assemble(
    instructions: Iterable[Instruction],
    fee_payer: IdentityLike,
    recent_blockhash: Union[Hash, str, None],
) -> SponsoredEnvelope:
    """Assemble an unsigned envelope with ``fee_payer`` as the designated sponsor.

    Raises:
        MissingBlockhashError: If the blockhash is empty or unset
        InvalidInputError: If instructions or fee payer are malformed
        SignerMismatchError: If the fee payer is also an instruction signer
    """
    blockhash = _to_blockhash(recent_blockhash)
    envelope = SponsoredEnvelope(list(instructions), to_pubkey(fee_payer, "fee_payer"), blockhash)
    logger.debug(
        "Sponsored envelope assembled",
        extra={
            "event": "tx.assembled",
            "fee_payer": str(envelope.fee_payer),
            "subject": str(envelope.subject),
            "blockhash": str(blockhash),
        },
    )
    return envelope


def co_sign(
    envelope: SponsoredEnvelope,
    subject_signer: Keypair,
    sponsor_signer: Keypair,
) -> SponsoredEnvelope:
    """Subject signs first, sponsor second, over the same message bytes."""
    return envelope.co_sign(subject_signer, sponsor_signer)


def serialize(envelope: SponsoredEnvelope) -> bytes:
    """Wire bytes of a fully signed envelope."""
    return envelope.serialize()
