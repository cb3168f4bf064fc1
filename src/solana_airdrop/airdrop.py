"""
The airdrop procedure: validate a recipient, apply the claim policy, and send
a fixed amount of the configured SPL token from the operator wallet.

Every request ends in an AirdropOutcome. Expected rejections (bad address,
repeat claim, low operator balance, missing config) are returned as outcome
kinds; only network / ledger failures are exceptions, and those are converted
to a single UPSTREAM_FAILURE outcome in `AirdropService.claim`.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional

import httpx
from solders.instruction import Instruction
from solders.keypair import Keypair
from solders.message import Message
from solders.pubkey import Pubkey
from solders.transaction import Transaction

from .claims import ClaimStore, InMemoryClaimStore
from .config import ConfigError, Settings
from .project_constants import COMMITMENT, CONFIRM_POLL_INTERVAL_S, MODE_CLAIM_SET
from .rpc import RpcClient, RpcError, TransactionFailedError
from .token_accounts import (
    MintInfo,
    create_associated_token_account_ix,
    find_associated_token_address,
    parse_mint,
    to_raw_amount,
    transfer_checked_ix,
)

log = logging.getLogger(__name__)


class OutcomeKind(str, Enum):
    SENT = "sent"
    TEST_MODE = "test_mode"
    MISSING_ADDRESS = "missing_wallet_address"
    INVALID_ADDRESS = "invalid_wallet_address"
    ALREADY_CLAIMED = "already_claimed"
    INSUFFICIENT_BALANCE = "insufficient_token_balance"
    MISCONFIGURED = "server_misconfigured"
    UPSTREAM_FAILURE = "airdrop_failed"

    @property
    def http_status(self) -> int:
        return _HTTP_STATUS[self]


_HTTP_STATUS = {
    OutcomeKind.SENT: 200,
    OutcomeKind.TEST_MODE: 200,
    OutcomeKind.MISSING_ADDRESS: 400,
    OutcomeKind.INVALID_ADDRESS: 400,
    OutcomeKind.ALREADY_CLAIMED: 400,
    OutcomeKind.INSUFFICIENT_BALANCE: 400,
    OutcomeKind.MISCONFIGURED: 500,
    OutcomeKind.UPSTREAM_FAILURE: 500,
}

# HTTP statuses from the RPC node worth re-submitting the same request for.
_TRANSIENT_HTTP_STATUS = (429, 502, 503, 504)


class UnconfirmedTransferError(RuntimeError):
    """Raised once a transaction may have reached the ledger but was not seen confirmed."""

    def __init__(self, signature: str, cause: Exception) -> None:
        super().__init__(f"Transaction {signature} outcome unknown: {cause}")
        self.signature = signature


def _is_transient(e: Exception) -> bool:
    if isinstance(e, httpx.HTTPStatusError):
        return e.response.status_code in _TRANSIENT_HTTP_STATUS
    return isinstance(e, httpx.TransportError)


@dataclass(frozen=True)
class AirdropOutcome:
    kind: OutcomeKind
    message: str
    wallet_address: Optional[str] = None
    signature: Optional[str] = None
    details: Optional[str] = None
    retryable: Optional[bool] = None

    @property
    def ok(self) -> bool:
        return self.kind in (OutcomeKind.SENT, OutcomeKind.TEST_MODE)


class AirdropService:
    def __init__(
        self,
        settings: Settings,
        rpc: RpcClient | None,
        claims: ClaimStore | None = None,
        poll_interval_s: float = CONFIRM_POLL_INTERVAL_S,
    ) -> None:
        self.settings = settings
        self.rpc = rpc
        self.claims = claims if claims is not None else InMemoryClaimStore()
        self.poll_interval_s = poll_interval_s

        self.keypair: Optional[Keypair] = None
        self.mint: Optional[Pubkey] = None
        self.config_error: Optional[str] = None
        try:
            if settings.operator_key:
                self.keypair = settings.keypair()
            if settings.token_mint:
                self.mint = _parse_pubkey(settings.token_mint, "TOKEN_MINT_ADDRESS")
        except ConfigError as e:
            log.error("Invalid airdrop configuration: %s", e)
            self.config_error = str(e)

    @classmethod
    def from_settings(cls, settings: Settings) -> "AirdropService":
        rpc = None
        if settings.rpc_url:
            rpc = RpcClient(settings.rpc_url, timeout_s=settings.rpc_timeout_s)
        return cls(settings, rpc)

    def close(self) -> None:
        if self.rpc is not None:
            self.rpc.close()

    @property
    def operator(self) -> Optional[Pubkey]:
        return self.keypair.pubkey() if self.keypair else None

    def claim(self, wallet_address: object) -> AirdropOutcome:
        if wallet_address is None or (
            isinstance(wallet_address, str) and not wallet_address.strip()
        ):
            return AirdropOutcome(OutcomeKind.MISSING_ADDRESS, "Wallet address is required")
        if not isinstance(wallet_address, str):
            return AirdropOutcome(
                OutcomeKind.INVALID_ADDRESS, "Invalid wallet address: expected a string"
            )
        address = wallet_address.strip()

        try:
            recipient = Pubkey.from_string(address)
        except ValueError:
            return AirdropOutcome(
                OutcomeKind.INVALID_ADDRESS, "Invalid wallet address", wallet_address=address
            )
        if not recipient.is_on_curve():
            return AirdropOutcome(
                OutcomeKind.INVALID_ADDRESS,
                "Invalid wallet address: not a wallet (program-derived address)",
                wallet_address=address,
            )

        missing = self.settings.missing()
        if missing or self.config_error:
            log.error("Airdrop requested but server is misconfigured: %s",
                      self.config_error or "missing " + ", ".join(missing))
            return AirdropOutcome(
                OutcomeKind.MISCONFIGURED,
                "Server misconfigured",
                details=self.config_error or "Missing " + ", ".join(missing),
            )

        if self.settings.test_mode:
            log.info("Test mode: would send %d %s to %s",
                     self.settings.amount, self.settings.token_symbol, address)
            return AirdropOutcome(
                OutcomeKind.TEST_MODE,
                f"Test mode: {self.settings.amount:,} {self.settings.token_symbol} "
                "would be sent (no signing key configured)",
                wallet_address=address,
            )

        set_based = self.settings.mode == MODE_CLAIM_SET
        if set_based and not self.claims.reserve(address):
            return AirdropOutcome(
                OutcomeKind.ALREADY_CLAIMED, "Airdrop already claimed", wallet_address=address
            )

        keep_claim = False
        try:
            outcome = self._airdrop(recipient, address)
            keep_claim = outcome.kind is OutcomeKind.SENT
        except UnconfirmedTransferError as e:
            # The tokens may have moved; a second attempt could pay twice.
            log.exception("Airdrop to %s submitted but unconfirmed", address)
            keep_claim = True
            outcome = AirdropOutcome(
                OutcomeKind.UPSTREAM_FAILURE,
                "Airdrop submitted but not confirmed",
                wallet_address=address,
                signature=e.signature,
                details=str(e),
                retryable=False,
            )
        except Exception as e:
            log.exception("Airdrop to %s failed", address)
            outcome = AirdropOutcome(
                OutcomeKind.UPSTREAM_FAILURE,
                "Failed to process airdrop",
                wallet_address=address,
                details=str(e),
                retryable=_is_transient(e),
            )

        if set_based and not keep_claim:
            self.claims.release(address)
        return outcome

    def _require(self) -> None:
        if self.keypair is None or self.mint is None or self.rpc is None:
            missing = self.settings.missing()
            raise ConfigError(
                self.config_error or "Missing " + (", ".join(missing) or "configuration")
            )

    def _airdrop(self, recipient: Pubkey, address: str) -> AirdropOutcome:
        self._require()
        operator = self.keypair.pubkey()
        mint_info = self.load_mint()
        amount = to_raw_amount(self.settings.amount, mint_info.decimals)
        program = mint_info.token_program

        if self.settings.mode == MODE_CLAIM_SET:
            signature = self._send_bundled(operator, recipient, mint_info, amount)
        else:
            source = self._ensure_token_account(operator, mint_info)
            balance = self.rpc.get_token_account_balance(source)
            if balance < amount:
                log.warning("Operator balance %d below transfer amount %d", balance, amount)
                return AirdropOutcome(
                    OutcomeKind.INSUFFICIENT_BALANCE,
                    "Operator wallet does not hold enough tokens for this airdrop",
                    wallet_address=address,
                )
            destination = self._ensure_token_account(recipient, mint_info)
            signature = self._submit(
                [transfer_checked_ix(source, self.mint, destination, operator,
                                     amount, mint_info.decimals, program)]
            )

        log.info("Sent %d raw units of %s to %s: %s", amount, self.mint, address, signature)
        return AirdropOutcome(
            OutcomeKind.SENT,
            f"{self.settings.amount:,} {self.settings.token_symbol} tokens sent successfully!",
            wallet_address=address,
            signature=signature,
        )

    def load_mint(self) -> MintInfo:
        """Reads decimals and owning token program from the mint account itself."""
        if self.mint is None or self.rpc is None:
            raise ConfigError("TOKEN_MINT_ADDRESS and RPC_URL are required to read the mint.")
        info = self.rpc.get_account_info(self.mint)
        if info is None:
            raise ValueError(f"Token mint {self.mint} does not exist on this cluster.")
        return parse_mint(info.data, info.owner)

    def _send_bundled(
        self, operator: Pubkey, recipient: Pubkey, mint_info: MintInfo, amount: int
    ) -> str:
        """Recipient account creation (when needed) and transfer in one transaction."""
        program = mint_info.token_program
        source = find_associated_token_address(operator, self.mint, program)
        create_ix, destination = create_associated_token_account_ix(
            operator, recipient, self.mint, program
        )
        instructions: List[Instruction] = []
        if self.rpc.get_account_info(destination) is None:
            log.info("Creating token account %s for %s", destination, recipient)
            instructions.append(create_ix)
        instructions.append(
            transfer_checked_ix(source, self.mint, destination, operator,
                                amount, mint_info.decimals, program)
        )
        return self._submit(instructions)

    def _ensure_token_account(self, owner: Pubkey, mint_info: MintInfo) -> Pubkey:
        """Creates the owner's associated token account in its own transaction if absent."""
        create_ix, ata = create_associated_token_account_ix(
            self.keypair.pubkey(), owner, self.mint, mint_info.token_program, idempotent=True
        )
        if self.rpc.get_account_info(ata) is None:
            log.info("Creating token account %s for %s", ata, owner)
            self._submit([create_ix])
        return ata

    def _submit(self, instructions: List[Instruction]) -> str:
        payer = self.keypair.pubkey()
        blockhash = self.rpc.get_latest_blockhash()
        message = Message.new_with_blockhash(instructions, payer, blockhash)
        tx = Transaction([self.keypair], message, blockhash)
        signature = str(tx.signatures[0])
        try:
            self.rpc.send_transaction(tx)
        except (RpcError, httpx.HTTPStatusError):
            # Refused by the node before reaching the ledger.
            raise
        except httpx.TransportError as e:
            raise UnconfirmedTransferError(signature, e) from e

        try:
            self.rpc.confirm_transaction(
                signature,
                commitment=COMMITMENT,
                timeout_s=self.settings.confirm_timeout_s,
                poll_interval_s=self.poll_interval_s,
            )
        except TransactionFailedError:
            raise
        except Exception as e:
            raise UnconfirmedTransferError(signature, e) from e
        return signature


def _parse_pubkey(value: str, name: str) -> Pubkey:
    try:
        return Pubkey.from_string(value)
    except ValueError:
        raise ConfigError(f"{name} is not a valid Solana address: {value!r}")
