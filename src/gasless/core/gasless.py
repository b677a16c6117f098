"""
Gasless wallet service.

Ties the pieces together:
1. Passkey credential -> deterministic wallet derivation
2. Sponsor resolution (fee payer distinct from the wallet)
3. Sponsored transaction build, dual signature, submission

Gasless Flow:
1. Caller authenticates with a passkey and derives the wallet
2. Service fetches a recent blockhash from the ledger
3. Envelope is assembled with the sponsor as fee payer
4. Wallet signs (authorizes the action), sponsor signs (pays the fee)
5. Serialized bytes are submitted and confirmed
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import Optional, Union

from solders.hash import Hash
from solders.instruction import Instruction
from solders.keypair import Keypair

from gasless.core.config import (
    ESTIMATED_FEE_LAMPORTS,
    LAMPORTS_PER_SOL,
    Config,
    NetworkType,
)
from gasless.core.exceptions import (
    ConfigurationError,
    InvalidInputError,
    WalletRecoveryError,
)
from gasless.core.key_derivation import DerivationStrategy, DerivedWallet, derive
from gasless.core.ledger_client import LedgerClient
from gasless.core.sponsor import SponsorProvider, SponsorResolution, get_sponsor_provider, resolve_sponsor
from gasless.core.transaction import (
    SponsoredEnvelope,
    assemble,
    build_instruction,
    build_transfer_instruction,
)
from gasless.wallet.passkey import Authenticator, bytes_to_base64url, decode_credential_public_key
from gasless.wallet.session import SessionRecord, SessionStore

logger = logging.getLogger(__name__)

EXPLORER_BASE_URL = "https://explorer.solana.com"


@dataclass
class GaslessWallet:
    """A passkey-controlled wallet.

    Attributes:
        address: Base58 wallet address
        public_key: Base58 public key
        credential_id: Passkey credential that controls the wallet
        keypair: Signing keypair derived from the credential public key
    """
    address: str
    public_key: str
    credential_id: str
    keypair: Keypair = field(repr=False)

    @classmethod
    def from_derived(cls, derived: DerivedWallet, credential_id: str) -> "GaslessWallet":
        return cls(
            address=derived.address,
            public_key=str(derived.public_key),
            credential_id=credential_id,
            keypair=derived.keypair,
        )


@dataclass(frozen=True)
class GaslessResult:
    """Outcome of a submitted sponsored transaction"""
    signature: str
    sponsor: str
    fee_saved_lamports: int
    ephemeral_sponsor: bool
    confirmation_status: Optional[str] = None

    @property
    def fee_saved_sol(self) -> float:
        return self.fee_saved_lamports / LAMPORTS_PER_SOL


def _subject_keypair(subject_signer: Union[Keypair, DerivedWallet, GaslessWallet]) -> Keypair:
    if isinstance(subject_signer, Keypair):
        return subject_signer
    if isinstance(subject_signer, (DerivedWallet, GaslessWallet)):
        return subject_signer.keypair
    raise InvalidInputError(
        "Subject signer must be a Keypair or a derived wallet",
        details={"type": type(subject_signer).__name__},
    )


def _sponsor_resolution(
    sponsor: Union[SponsorResolution, Keypair, str, None],
    allow_ephemeral: bool,
) -> SponsorResolution:
    if isinstance(sponsor, SponsorResolution):
        return sponsor
    if isinstance(sponsor, Keypair):
        return SponsorResolution(keypair=sponsor)
    return resolve_sponsor(sponsor, allow_ephemeral=allow_ephemeral)


def build_sponsored_envelope(
    subject_signer: Union[Keypair, DerivedWallet, GaslessWallet],
    instructions: list[Instruction],
    sponsor: Union[SponsorResolution, Keypair, str, None],
    recent_blockhash: Union[Hash, str],
    allow_ephemeral: bool = True,
) -> SponsoredEnvelope:
    """Assemble and co-sign ``instructions`` with the resolved sponsor as fee payer."""
    subject = _subject_keypair(subject_signer)
    resolution = _sponsor_resolution(sponsor, allow_ephemeral)
    envelope = assemble(instructions, resolution.pubkey, recent_blockhash)
    envelope.sponsor_resolution = resolution
    envelope.co_sign(subject, resolution.keypair)
    return envelope


def build_sponsored_note(
    subject_signer: Union[Keypair, DerivedWallet, GaslessWallet],
    note_text: str,
    sponsor: Union[SponsorResolution, Keypair, str, None],
    recent_blockhash: Union[Hash, str],
    allow_ephemeral: bool = True,
) -> SponsoredEnvelope:
    """
    Build a fully co-signed memo transaction paid for by a sponsor.

    Args:
        subject_signer: Wallet keypair authorizing the note
        note_text: Memo text
        sponsor: Resolved sponsor, sponsor keypair, persisted sponsor secret, or None
        recent_blockhash: Freshness anchor from the ledger
        allow_ephemeral: Whether an unusable secret may fall back to a random sponsor

    Returns:
        Fully signed envelope; ``envelope.ephemeral_sponsor`` reports a fallback sponsor
    """
    subject = _subject_keypair(subject_signer)
    return build_sponsored_envelope(
        subject,
        [build_instruction(subject.pubkey(), note_text)],
        sponsor,
        recent_blockhash,
        allow_ephemeral=allow_ephemeral,
    )


def to_wire_bytes(envelope: SponsoredEnvelope) -> bytes:
    """Wire bytes of a fully signed envelope; refuses incomplete ones."""
    return envelope.serialize()


def explorer_url(signature: str, cluster: Optional[str] = None) -> str:
    """Solana explorer link for a transaction signature."""
    cluster = cluster or Config.CLUSTER
    if cluster == NetworkType.MAINNET.value:
        return f"{EXPLORER_BASE_URL}/tx/{signature}"
    return f"{EXPLORER_BASE_URL}/tx/{signature}?cluster={cluster}"


def sol_to_lamports(amount_sol: float) -> int:
    """Convert a SOL amount to whole lamports.

    Raises:
        InvalidInputError: If the amount is not a finite number
    """
    if isinstance(amount_sol, bool) or not isinstance(amount_sol, (int, float)) or not math.isfinite(amount_sol):
        raise InvalidInputError(
            "SOL amount must be a finite number",
            details={"amount": str(amount_sol)},
        )
    return int(round(amount_sol * LAMPORTS_PER_SOL))


class GaslessWalletService:
    """Passkey wallet with sponsor-paid transactions.

    Collaborators are injected so tests and production can supply their own
    ledger, authenticator, sponsor and session storage.
    """

    def __init__(
        self,
        ledger: Optional[LedgerClient] = None,
        authenticator: Optional[Authenticator] = None,
        sponsor_provider: Optional[SponsorProvider] = None,
        session_store: Optional[SessionStore] = None,
        derivation_strategy: Union[DerivationStrategy, str, None] = None,
    ):
        self.ledger = ledger or LedgerClient()
        self.authenticator = authenticator
        self.sponsor_provider = sponsor_provider or get_sponsor_provider()
        self.session_store = session_store or SessionStore()
        self.derivation_strategy = derivation_strategy or Config.DERIVATION_STRATEGY

    def _require_authenticator(self) -> Authenticator:
        if self.authenticator is None:
            raise ConfigurationError("No passkey authenticator configured")
        return self.authenticator

    # ------------------------------------------------------------------
    # Wallet lifecycle
    # ------------------------------------------------------------------

    def create_wallet(self, username: str) -> GaslessWallet:
        """Register a passkey and derive its wallet."""
        credential = self._require_authenticator().register(username)
        derived = derive(credential.public_key, self.derivation_strategy)
        self.session_store.save(
            SessionRecord(
                credential_id=credential.credential_id,
                address=derived.address,
                public_key=str(derived.public_key),
                credential_public_key=bytes_to_base64url(credential.public_key),
            )
        )
        logger.info(
            "Gasless wallet created",
            extra={"event": "wallet.created", "address": derived.address},
        )
        return GaslessWallet.from_derived(derived, credential.credential_id)

    def recover_wallet(self, credential_public_key: Optional[bytes] = None) -> GaslessWallet:
        """
        Authenticate and re-derive the stored wallet.

        The keypair is rebuilt from the credential public key (given, or kept
        in the session); a credential id alone cannot reconstruct it.

        Raises:
            WalletRecoveryError: If no session exists, the key is unavailable,
                or the re-derived address differs from the stored one
        """
        credential_id = self._require_authenticator().authenticate()
        record = self.session_store.load()
        if record is None:
            raise WalletRecoveryError("No wallet found. Please create a new wallet.")
        if record.credential_id and record.credential_id != credential_id:
            raise WalletRecoveryError(
                "Authenticated passkey does not control the stored wallet",
                details={"address": record.address},
            )

        key_bytes = credential_public_key
        if key_bytes is None and record.credential_public_key:
            key_bytes = decode_credential_public_key(record.credential_public_key, "base64url")
        if key_bytes is None:
            raise WalletRecoveryError(
                "Credential public key unavailable; cannot re-derive the wallet keypair",
                details={"address": record.address},
            )

        derived = derive(key_bytes, self.derivation_strategy)
        if derived.address != record.address:
            raise WalletRecoveryError(
                "Re-derived address does not match the stored wallet",
                details={"expected": record.address, "derived": derived.address},
            )
        logger.info(
            "Gasless wallet recovered",
            extra={"event": "wallet.recovered", "address": derived.address},
        )
        return GaslessWallet.from_derived(derived, credential_id)

    def has_existing_session(self) -> bool:
        return self.session_store.has_existing_session()

    def get_session_wallet(self) -> Optional[dict[str, str]]:
        return self.session_store.get_session_wallet()

    def clear_wallet_session(self) -> None:
        self.session_store.clear()

    # ------------------------------------------------------------------
    # Sponsored transactions
    # ------------------------------------------------------------------

    def get_sponsor(self) -> SponsorResolution:
        return self.sponsor_provider.get()

    def _execute(
        self,
        wallet: GaslessWallet,
        instructions: list[Instruction],
        timeout: Optional[float],
        confirm: bool,
    ) -> GaslessResult:
        sponsor = self.sponsor_provider.get()
        blockhash = self.ledger.get_recent_blockhash(timeout=timeout)
        envelope = build_sponsored_envelope(wallet.keypair, instructions, sponsor, blockhash)
        signature = self.ledger.submit_envelope(envelope, timeout=timeout)

        status = None
        if confirm:
            status = self.ledger.confirm(signature, timeout=timeout).confirmation_status

        logger.info(
            "Gasless transaction sent",
            extra={
                "event": "gasless.sent",
                "signature": signature,
                "sponsor": sponsor.address,
                "ephemeral_sponsor": sponsor.ephemeral,
            },
        )
        return GaslessResult(
            signature=signature,
            sponsor=sponsor.address,
            fee_saved_lamports=ESTIMATED_FEE_LAMPORTS,
            ephemeral_sponsor=sponsor.ephemeral,
            confirmation_status=status,
        )

    def execute_gasless_note(
        self,
        wallet: GaslessWallet,
        memo: str,
        timeout: Optional[float] = None,
        confirm: bool = True,
    ) -> GaslessResult:
        """Send a memo from ``wallet`` with the sponsor paying the fee."""
        return self._execute(wallet, [build_instruction(wallet.keypair.pubkey(), memo)], timeout, confirm)

    def execute_gasless_transfer(
        self,
        wallet: GaslessWallet,
        recipient: str,
        amount_sol: float,
        timeout: Optional[float] = None,
        confirm: bool = True,
    ) -> GaslessResult:
        """Transfer SOL from ``wallet`` with the sponsor paying the fee."""
        lamports = sol_to_lamports(amount_sol)
        instruction = build_transfer_instruction(wallet.keypair.pubkey(), recipient, lamports)
        return self._execute(wallet, [instruction], timeout, confirm)

    # ------------------------------------------------------------------
    # Balances and faucet
    # ------------------------------------------------------------------

    def get_wallet_balance(self, address: str, timeout: Optional[float] = None) -> float:
        """Balance in SOL."""
        return self.ledger.get_balance(address, timeout=timeout) / LAMPORTS_PER_SOL

    def request_airdrop(self, address: str, amount_sol: float = 1.0, timeout: Optional[float] = None) -> str:
        """Request faucet funds and wait for confirmation (devnet/testnet only)."""
        if not Config.AIRDROP_ENABLED:
            raise ConfigurationError(f"Airdrops are not available on {Config.CLUSTER}")
        lamports = sol_to_lamports(amount_sol)
        if amount_sol <= 0 or amount_sol > Config.MAX_AIRDROP_SOL:
            raise InvalidInputError(
                f"Airdrop amount must be between 0 and {Config.MAX_AIRDROP_SOL} SOL",
                details={"amount": amount_sol},
            )
        signature = self.ledger.request_airdrop(address, lamports, timeout=timeout)
        self.ledger.confirm(signature, timeout=timeout)
        return signature
