"""
Pytest fixtures for the airdrop tests.

FakeLedger stands in for RpcClient: it keeps accounts in memory and applies
the ATA-create and TransferChecked instructions of submitted transactions, so
tests can assert on balances and on which transactions were sent.
"""

from __future__ import annotations

import struct
from typing import Dict, List, Optional

import pytest
from solders.hash import Hash
from solders.keypair import Keypair
from solders.pubkey import Pubkey
from solders.transaction import Transaction

from solana_airdrop.airdrop import AirdropService
from solana_airdrop.claims import InMemoryClaimStore
from solana_airdrop.config import Settings
from solana_airdrop.project_constants import (
    ASSOCIATED_TOKEN_PROGRAM_ID,
    MODE_CLAIM_SET,
    TOKEN_PROGRAM_ID,
)
from solana_airdrop.rpc import AccountInfo, RpcError
from solana_airdrop.token_accounts import find_associated_token_address

DECIMALS = 6

# SPL Token instruction tag for TransferChecked on the wire
TRANSFER_CHECKED_TAG = 12


def mint_data(decimals: int = DECIMALS, supply: int = 10**15) -> bytes:
    return struct.pack("<I32sQB?I32s", 0, bytes(32), supply, decimals, True, 0, bytes(32))


def token_account_data(mint: Pubkey, owner: Pubkey, amount: int) -> bytes:
    return (bytes(mint) + bytes(owner) + struct.pack("<Q", amount)).ljust(165, b"\0")


class FakeLedger:
    def __init__(self) -> None:
        self.accounts: Dict[str, AccountInfo] = {}
        self.sent: List[Transaction] = []
        self.calls: List[str] = []
        self.fail_send: Optional[Exception] = None
        self.fail_confirm: Optional[Exception] = None
        self.fail_blockhash: Optional[Exception] = None

    def add_mint(self, mint: Pubkey, decimals: int = DECIMALS, program: str = TOKEN_PROGRAM_ID):
        self.accounts[str(mint)] = AccountInfo(owner=program, data=mint_data(decimals))

    def add_token_account(self, ata: Pubkey, mint: Pubkey, owner: Pubkey, amount: int,
                          program: str = TOKEN_PROGRAM_ID):
        self.accounts[str(ata)] = AccountInfo(
            owner=program, data=token_account_data(mint, owner, amount)
        )

    def balance(self, ata: Pubkey) -> int:
        return struct.unpack("<Q", self.accounts[str(ata)].data[64:72])[0]

    # RpcClient interface

    def get_account_info(self, pubkey: Pubkey) -> Optional[AccountInfo]:
        self.calls.append("getAccountInfo")
        return self.accounts.get(str(pubkey))

    def get_token_account_balance(self, pubkey: Pubkey) -> int:
        self.calls.append("getTokenAccountBalance")
        return self.balance(pubkey)

    def get_latest_blockhash(self) -> Hash:
        self.calls.append("getLatestBlockhash")
        if self.fail_blockhash is not None:
            raise self.fail_blockhash
        return Hash.new_unique()

    def send_transaction(self, tx: Transaction) -> str:
        self.calls.append("sendTransaction")
        if self.fail_send is not None:
            raise self.fail_send
        self.sent.append(tx)
        self._apply(tx)
        return str(tx.signatures[0])

    def confirm_transaction(self, signature, commitment=None, timeout_s=0.0, poll_interval_s=0.0):
        self.calls.append("getSignatureStatuses")
        if self.fail_confirm is not None:
            raise self.fail_confirm
        return {"confirmationStatus": "confirmed", "err": None}

    def close(self) -> None:
        pass

    def _apply(self, tx: Transaction) -> None:
        keys = tx.message.account_keys
        for ix in tx.message.instructions:
            program = str(keys[ix.program_id_index])
            accounts = [keys[i] for i in ix.accounts]
            if program == ASSOCIATED_TOKEN_PROGRAM_ID:
                ata, owner, mint = accounts[1], accounts[2], accounts[3]
                if str(ata) not in self.accounts:
                    token_program = self.accounts[str(mint)].owner
                    self.add_token_account(ata, mint, owner, 0, token_program)
            elif bytes(ix.data)[0] == TRANSFER_CHECKED_TAG:
                source, _mint, dest = accounts[0], accounts[1], accounts[2]
                amount = struct.unpack("<Q", bytes(ix.data)[1:9])[0]
                if str(dest) not in self.accounts:
                    raise RpcError("Transaction simulation failed: invalid account data")
                if self.balance(source) < amount:
                    raise RpcError("Transaction simulation failed: insufficient funds")
                self._credit(source, -amount)
                self._credit(dest, amount)

    def _credit(self, ata: Pubkey, delta: int) -> None:
        info = self.accounts[str(ata)]
        data = bytearray(info.data)
        data[64:72] = struct.pack("<Q", self.balance(ata) + delta)
        self.accounts[str(ata)] = AccountInfo(owner=info.owner, data=bytes(data))


@pytest.fixture
def operator() -> Keypair:
    return Keypair()


@pytest.fixture
def mint() -> Pubkey:
    return Keypair().pubkey()


@pytest.fixture
def recipient() -> str:
    return str(Keypair().pubkey())


@pytest.fixture
def ledger(operator, mint) -> FakeLedger:
    """Ledger with the mint and an operator token account holding 1,000,000 tokens."""
    fake = FakeLedger()
    fake.add_mint(mint)
    ata = find_associated_token_address(operator.pubkey(), mint)
    fake.add_token_account(ata, mint, operator.pubkey(), 1_000_000 * 10**DECIMALS)
    return fake


@pytest.fixture
def make_settings(operator, mint):
    def _make(mode: str = MODE_CLAIM_SET, with_key: bool = True, **overrides) -> Settings:
        values = dict(
            operator_key=str(list(bytes(operator))) if with_key else None,
            token_mint=str(mint),
            rpc_url="http://rpc.test",
            mode=mode,
        )
        values.update(overrides)
        return Settings(**values)

    return _make


@pytest.fixture
def make_service(make_settings, ledger):
    def _make(mode: str = MODE_CLAIM_SET, with_key: bool = True, **overrides) -> AirdropService:
        settings = make_settings(mode=mode, with_key=with_key, **overrides)
        return AirdropService(settings, ledger, InMemoryClaimStore(), poll_interval_s=0)

    return _make


@pytest.fixture
def client_for(make_service):
    """FastAPI TestClient over a service backed by the fake ledger."""
    from fastapi.testclient import TestClient

    from solana_airdrop.app import create_app

    def _make(mode: str = MODE_CLAIM_SET, with_key: bool = True, **overrides) -> TestClient:
        return TestClient(create_app(service=make_service(mode, with_key, **overrides)))

    return _make
