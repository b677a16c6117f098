"""
Tests for sponsored transaction assembly, co-signing and serialization.

Tests cover:
- Memo and transfer instruction builders
- Envelope assembly validation (blockhash, fee payer, subject)
- Signing order and state guards
- Serialization refusal while signatures are missing
- End-to-end byte identity of the wire format
"""

from __future__ import annotations

import pytest
from solders.hash import Hash
from solders.keypair import Keypair
from solders.transaction import Transaction

from gasless.core.exceptions import (
    IncompleteSignatureError,
    InvalidInputError,
    InvalidStateError,
    MissingBlockhashError,
    SignerMismatchError,
)
from gasless.core.gasless import build_sponsored_note, to_wire_bytes
from gasless.core.key_derivation import derive
from gasless.core.transaction import (
    MEMO_PROGRAM,
    EnvelopeState,
    assemble,
    build_instruction,
    build_transfer_instruction,
    co_sign,
    serialize,
)


@pytest.fixture
def subject(credential_key):
    return derive(credential_key).keypair


@pytest.fixture
def envelope(subject, sponsor_keypair, fixed_blockhash):
    instruction = build_instruction(subject.pubkey(), "hello gasless")
    return assemble([instruction], sponsor_keypair.pubkey(), fixed_blockhash)


class TestInstructionBuilders:
    """Tests for instruction construction."""

    def test_memo_instruction_layout(self, subject):
        instruction = build_instruction(subject.pubkey(), "note")

        assert instruction.program_id == MEMO_PROGRAM
        assert bytes(instruction.data) == b"note"
        assert len(instruction.accounts) == 1
        meta = instruction.accounts[0]
        assert meta.pubkey == subject.pubkey()
        assert meta.is_signer is True
        assert meta.is_writable is False

    def test_memo_accepts_address_string_and_bytes(self, subject):
        instruction = build_instruction(str(subject.pubkey()), b"\x00\x01")
        assert bytes(instruction.data) == b"\x00\x01"

    def test_empty_payload_rejected(self, subject):
        with pytest.raises(InvalidInputError):
            build_instruction(subject.pubkey(), "")

    def test_invalid_subject_rejected(self):
        with pytest.raises(InvalidInputError):
            build_instruction(None, "note")

    @pytest.mark.parametrize("lamports", [0, -1, 1.5, True])
    def test_transfer_rejects_bad_amount(self, subject, sponsor_keypair, lamports):
        with pytest.raises(InvalidInputError):
            build_transfer_instruction(subject, sponsor_keypair.pubkey(), lamports)

    def test_transfer_envelope_has_two_signers(self, subject, sponsor_keypair, fixed_blockhash):
        recipient = Keypair.from_seed(bytes([9] * 32)).pubkey()
        instruction = build_transfer_instruction(subject, recipient, 1_000)
        env = assemble([instruction], sponsor_keypair, fixed_blockhash)

        assert env.required_signers == (sponsor_keypair.pubkey(), subject.pubkey())
        assert env.subject == subject.pubkey()


class TestAssembly:
    """Tests for envelope assembly."""

    def test_fee_payer_is_first_signer(self, envelope, sponsor_keypair, subject):
        assert envelope.state is EnvelopeState.ASSEMBLED
        assert envelope.fee_payer == sponsor_keypair.pubkey()
        assert envelope.message.account_keys[0] == sponsor_keypair.pubkey()
        assert envelope.required_signers == (sponsor_keypair.pubkey(), subject.pubkey())
        assert envelope.missing_signers == envelope.required_signers
        assert envelope.transaction_id is None

    @pytest.mark.parametrize("blockhash", [None, "", "   "])
    def test_blank_blockhash_rejected(self, subject, sponsor_keypair, blockhash):
        with pytest.raises(MissingBlockhashError):
            assemble([build_instruction(subject.pubkey(), "x")], sponsor_keypair.pubkey(), blockhash)

    def test_default_blockhash_rejected(self, subject, sponsor_keypair):
        with pytest.raises(MissingBlockhashError):
            assemble([build_instruction(subject.pubkey(), "x")], sponsor_keypair.pubkey(), Hash.default())

    @pytest.mark.parametrize("blockhash", ["0OIl", "abc", "not-base58-0OIl"])
    def test_unparseable_blockhash_rejected(self, subject, sponsor_keypair, blockhash):
        with pytest.raises(InvalidInputError, match="not valid base58"):
            assemble([build_instruction(subject.pubkey(), "x")], sponsor_keypair.pubkey(), blockhash)

    def test_blockhash_string_accepted(self, subject, sponsor_keypair, fixed_blockhash):
        env = assemble([build_instruction(subject.pubkey(), "x")], sponsor_keypair.pubkey(), str(fixed_blockhash))
        assert env.recent_blockhash == fixed_blockhash

    def test_no_instructions_rejected(self, sponsor_keypair, fixed_blockhash):
        with pytest.raises(InvalidInputError):
            assemble([], sponsor_keypair.pubkey(), fixed_blockhash)

    def test_fee_payer_equal_to_subject_rejected(self, subject, fixed_blockhash):
        with pytest.raises(SignerMismatchError):
            assemble([build_instruction(subject.pubkey(), "x")], subject.pubkey(), fixed_blockhash)

    def test_two_subjects_rejected(self, subject, sponsor_keypair, fixed_blockhash):
        other = Keypair.from_seed(bytes([5] * 32))
        instructions = [build_instruction(subject.pubkey(), "a"), build_instruction(other.pubkey(), "b")]
        with pytest.raises(InvalidInputError, match="exactly one subject"):
            assemble(instructions, sponsor_keypair.pubkey(), fixed_blockhash)

    def test_add_instruction_before_signing(self, envelope, subject):
        envelope.add_instruction(build_instruction(subject.pubkey(), "second"))
        assert len(envelope.instructions) == 2


class TestSigning:
    """Tests for the two-phase signing state machine."""

    def test_co_sign_transitions_to_fully_signed(self, envelope, subject, sponsor_keypair):
        co_sign(envelope, subject, sponsor_keypair)

        assert envelope.state is EnvelopeState.FULLY_SIGNED
        assert envelope.missing_signers == ()
        assert envelope.signed_by == envelope.required_signers
        assert envelope.transaction_id is not None

    def test_subject_then_sponsor(self, envelope, subject, sponsor_keypair):
        envelope.sign_as_subject(subject)
        assert envelope.state is EnvelopeState.PARTIALLY_SIGNED
        assert envelope.signed_by == (subject.pubkey(),)

        envelope.sign_as_sponsor(sponsor_keypair)
        assert envelope.state is EnvelopeState.FULLY_SIGNED

    def test_sponsor_before_subject_rejected(self, envelope, sponsor_keypair):
        with pytest.raises(InvalidStateError, match="Subject must sign"):
            envelope.sign_as_sponsor(sponsor_keypair)

    def test_subject_cannot_sign_twice(self, envelope, subject):
        envelope.sign_as_subject(subject)
        with pytest.raises(InvalidStateError):
            envelope.sign_as_subject(subject)

    def test_wrong_subject_rejected(self, envelope):
        with pytest.raises(SignerMismatchError) as exc_info:
            envelope.sign_as_subject(Keypair.from_seed(bytes([3] * 32)))
        assert exc_info.value.expected == str(envelope.subject)

    def test_mismatched_sponsor_leaves_envelope_untouched(self, envelope, subject):
        impostor = Keypair.from_seed(bytes([4] * 32))
        with pytest.raises(SignerMismatchError):
            envelope.co_sign(subject, impostor)

        assert envelope.state is EnvelopeState.ASSEMBLED
        assert envelope.signed_by == ()

    def test_add_instruction_after_signing_rejected(self, envelope, subject):
        envelope.sign_as_subject(subject)
        with pytest.raises(InvalidStateError):
            envelope.add_instruction(build_instruction(subject.pubkey(), "late"))


class TestSerialization:
    """Tests for wire serialization."""

    def test_unsigned_envelope_rejected(self, envelope):
        with pytest.raises(IncompleteSignatureError) as exc_info:
            serialize(envelope)
        assert len(exc_info.value.missing) == 2

    def test_subject_only_rejected(self, envelope, subject, sponsor_keypair):
        envelope.sign_as_subject(subject)
        with pytest.raises(IncompleteSignatureError) as exc_info:
            envelope.serialize()

        assert exc_info.value.missing == [str(sponsor_keypair.pubkey())]
        assert envelope.state is EnvelopeState.PARTIALLY_SIGNED

    def test_serialized_wire_format(self, envelope, subject, sponsor_keypair, fixed_blockhash):
        envelope.co_sign(subject, sponsor_keypair)
        wire = envelope.serialize()
        transaction = Transaction.from_bytes(wire)

        assert envelope.state is EnvelopeState.SERIALIZED
        assert transaction.message.account_keys[0] == sponsor_keypair.pubkey()
        assert transaction.message.recent_blockhash == fixed_blockhash
        assert len(transaction.signatures) == 2
        assert str(transaction.signatures[0]) == envelope.transaction_id

    def test_serialize_is_idempotent(self, envelope, subject, sponsor_keypair):
        envelope.co_sign(subject, sponsor_keypair)
        assert envelope.serialize() == envelope.serialize()


class TestSponsoredNote:
    """End-to-end tests of the sponsored note build."""

    def test_same_inputs_same_bytes(self, credential_key, sponsor_resolution, fixed_blockhash):
        wallet = derive(credential_key)

        first = to_wire_bytes(build_sponsored_note(wallet, "hi", sponsor_resolution, fixed_blockhash))
        second = to_wire_bytes(build_sponsored_note(wallet, "hi", sponsor_resolution, fixed_blockhash))

        assert first == second

    def test_note_from_persisted_secret(self, credential_key, sponsor_secret, sponsor_keypair, fixed_blockhash):
        wallet = derive(credential_key)
        env = build_sponsored_note(wallet.keypair, "hi", sponsor_secret, fixed_blockhash)

        assert env.state is EnvelopeState.FULLY_SIGNED
        assert env.fee_payer == sponsor_keypair.pubkey()
        assert env.subject == wallet.public_key
        assert env.ephemeral_sponsor is False

    def test_note_without_sponsor_is_flagged_ephemeral(self, credential_key, fixed_blockhash):
        env = build_sponsored_note(derive(credential_key), "hi", None, fixed_blockhash)

        assert env.ephemeral_sponsor is True
        assert env.sponsor_resolution.warning.reason == "missing"
        assert to_wire_bytes(env)

    def test_different_note_different_bytes(self, credential_key, sponsor_resolution, fixed_blockhash):
        wallet = derive(credential_key)
        first = to_wire_bytes(build_sponsored_note(wallet, "a", sponsor_resolution, fixed_blockhash))
        second = to_wire_bytes(build_sponsored_note(wallet, "b", sponsor_resolution, fixed_blockhash))
        assert first != second
