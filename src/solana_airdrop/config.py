from __future__ import annotations

import json
import os
from dataclasses import dataclass
from typing import List, Optional

import base58
from dotenv import load_dotenv
from solders.keypair import Keypair

from .project_constants import (
    AIRDROP_MODES,
    CONFIRM_TIMEOUT_S,
    DEFAULT_AIRDROP_AMOUNT,
    DEFAULT_TOKEN_SYMBOL,
    HELIUS_URL_TEMPLATE,
    MODE_BALANCE_CHECK,
    MODE_CLAIM_SET,
    RPC_TIMEOUT_S,
)


class ConfigError(RuntimeError):
    pass


def load_keypair(raw: str) -> Keypair:
    """
    Accepts either form a Solana secret key is usually exported in:
    1) JSON array of ints, as written by `solana-keygen` (64 bytes, or a 32-byte seed)
    2) base58 string, as exported by browser wallets
    """
    raw = raw.strip()
    if not raw:
        raise ConfigError("Empty operator secret key.")

    if raw.startswith("["):
        try:
            secret = bytes(json.loads(raw))
        except (ValueError, TypeError) as e:
            raise ConfigError(f"Operator secret key is not a valid JSON byte array: {e}")
    else:
        try:
            secret = base58.b58decode(raw)
        except ValueError as e:
            raise ConfigError(f"Operator secret key is not valid base58: {e}")

    if len(secret) == 32:
        return Keypair.from_seed(secret)
    if len(secret) != 64:
        raise ConfigError(
            f"Operator secret key must be 64 bytes (or a 32-byte seed), got {len(secret)}."
        )
    try:
        return Keypair.from_bytes(secret)
    except ValueError as e:
        raise ConfigError(f"Operator secret key rejected: {e}")


def _env_number(name: str, default: float, cast=float):
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        value = cast(raw.replace("_", ""))
    except ValueError:
        raise ConfigError(f"{name} must be a number, got {raw!r}.")
    if value <= 0:
        raise ConfigError(f"{name} must be positive, got {raw!r}.")
    return value


@dataclass(frozen=True)
class Settings:
    operator_key: Optional[str]
    token_mint: Optional[str]
    rpc_url: Optional[str]
    amount: int = DEFAULT_AIRDROP_AMOUNT
    mode: str = MODE_CLAIM_SET
    token_symbol: str = DEFAULT_TOKEN_SYMBOL
    confirm_timeout_s: float = CONFIRM_TIMEOUT_S
    rpc_timeout_s: float = RPC_TIMEOUT_S

    @staticmethod
    def from_env(rpc_url_override: str | None = None) -> "Settings":
        load_dotenv()

        mode = os.getenv("AIRDROP_MODE", MODE_CLAIM_SET).strip().lower() or MODE_CLAIM_SET
        if mode not in AIRDROP_MODES:
            raise ConfigError(
                f"AIRDROP_MODE must be one of {', '.join(AIRDROP_MODES)}, got {mode!r}."
            )

        return Settings(
            operator_key=os.getenv("WALLET_PRIVATE_KEY", "").strip() or None,
            token_mint=os.getenv("TOKEN_MINT_ADDRESS", "").strip() or None,
            rpc_url=_resolve_rpc_url(rpc_url_override),
            amount=_env_number("AIRDROP_AMOUNT", DEFAULT_AIRDROP_AMOUNT, cast=int),
            mode=mode,
            token_symbol=os.getenv("TOKEN_SYMBOL", "").strip() or DEFAULT_TOKEN_SYMBOL,
            confirm_timeout_s=_env_number("CONFIRM_TIMEOUT", CONFIRM_TIMEOUT_S),
            rpc_timeout_s=_env_number("RPC_TIMEOUT", RPC_TIMEOUT_S),
        )

    @property
    def test_mode(self) -> bool:
        """Balance-checked deployments without a signing key answer in test mode."""
        return self.mode == MODE_BALANCE_CHECK and not self.operator_key

    def missing(self) -> List[str]:
        out: List[str] = []
        if not self.operator_key and self.mode != MODE_BALANCE_CHECK:
            out.append("WALLET_PRIVATE_KEY")
        if not self.token_mint:
            out.append("TOKEN_MINT_ADDRESS")
        if not self.rpc_url:
            out.append("RPC_URL")
        return out

    def keypair(self) -> Keypair:
        if not self.operator_key:
            raise ConfigError("Missing WALLET_PRIVATE_KEY.")
        return load_keypair(self.operator_key)


def _resolve_rpc_url(override: str | None) -> Optional[str]:
    # If user provides --rpc-url, trust it.
    if override:
        return override

    env_rpc = os.getenv("RPC_URL", "").strip()
    if env_rpc:
        return env_rpc

    helius_key = os.getenv("HELIUS_API_KEY", "").strip()
    if helius_key:
        return HELIUS_URL_TEMPLATE.format(key=helius_key)
    return None
