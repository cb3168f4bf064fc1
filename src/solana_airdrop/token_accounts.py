from __future__ import annotations

from dataclasses import dataclass

from solders.instruction import Instruction
from solders.pubkey import Pubkey
from spl.token.instructions import (
    create_associated_token_account,
    create_idempotent_associated_token_account,
    get_associated_token_address,
    transfer_checked,
)
from spl.token.models import TransferCheckedParams

from .project_constants import TOKEN_2022_PROGRAM_ID, TOKEN_PROGRAM_ID

TOKEN_PROGRAMS = (TOKEN_PROGRAM_ID, TOKEN_2022_PROGRAM_ID)

MINT_LEN = 82


@dataclass(frozen=True)
class MintInfo:
    decimals: int
    token_program: str


def parse_mint(account_data: bytes, token_program: str) -> MintInfo:
    """
    Mint layout (classic; Token-2022 keeps the same prefix and appends extensions):
    MintAuthority option(0-36) | Supply(36-44) | Decimals(44) | IsInitialized(45) | Freeze(46-82)
    """
    if token_program not in TOKEN_PROGRAMS:
        raise ValueError(f"Account is owned by {token_program}, not a token program.")
    if len(account_data) < MINT_LEN:
        raise ValueError(f"Mint account data too short ({len(account_data)} bytes).")

    decimals = account_data[44]
    if not account_data[45]:
        raise ValueError("Mint account is not initialized.")
    return MintInfo(decimals=decimals, token_program=token_program)


def to_raw_amount(whole_tokens: int, decimals: int) -> int:
    if whole_tokens <= 0:
        raise ValueError("Transfer amount must be positive.")
    raw = int(whole_tokens) * (10**decimals)
    if raw >= 2**64:
        raise ValueError(f"{whole_tokens} tokens at {decimals} decimals overflows u64.")
    return raw


def find_associated_token_address(
    owner: Pubkey, mint: Pubkey, token_program: str = TOKEN_PROGRAM_ID
) -> Pubkey:
    return get_associated_token_address(
        owner, mint, token_program_id=Pubkey.from_string(token_program)
    )


def create_associated_token_account_ix(
    payer: Pubkey,
    owner: Pubkey,
    mint: Pubkey,
    token_program: str = TOKEN_PROGRAM_ID,
    idempotent: bool = False,
) -> tuple[Instruction, Pubkey]:
    """Returns the instruction together with the account address it creates."""
    program_id = Pubkey.from_string(token_program)
    build = create_idempotent_associated_token_account if idempotent else create_associated_token_account
    ix = build(payer=payer, owner=owner, mint=mint, token_program_id=program_id)
    return ix, find_associated_token_address(owner, mint, token_program)


def transfer_checked_ix(
    source: Pubkey,
    mint: Pubkey,
    destination: Pubkey,
    owner: Pubkey,
    amount: int,
    decimals: int,
    token_program: str = TOKEN_PROGRAM_ID,
) -> Instruction:
    # The program rejects the transfer if `decimals` disagrees with the mint.
    return transfer_checked(
        TransferCheckedParams(
            program_id=Pubkey.from_string(token_program),
            source=source,
            mint=mint,
            dest=destination,
            owner=owner,
            amount=amount,
            decimals=decimals,
        )
    )
