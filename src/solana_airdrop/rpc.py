from __future__ import annotations

import base64
import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import httpx
from solders.hash import Hash
from solders.pubkey import Pubkey
from solders.transaction import Transaction

from .project_constants import COMMITMENT, CONFIRM_POLL_INTERVAL_S, CONFIRM_TIMEOUT_S

log = logging.getLogger(__name__)

_COMMITMENT_RANK = {"processed": 0, "confirmed": 1, "finalized": 2}


class RpcError(RuntimeError):
    pass


class TransactionFailedError(RuntimeError):
    pass


class ConfirmationTimeoutError(RuntimeError):
    pass


@dataclass(frozen=True)
class AccountInfo:
    owner: str
    data: bytes


class RpcClient:
    def __init__(
        self,
        rpc_url: str,
        timeout_s: float = 60.0,
        commitment: str = COMMITMENT,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.rpc_url = rpc_url
        self.commitment = commitment
        self.client = httpx.Client(timeout=timeout_s, transport=transport)
        self._next_id = 0

    def close(self) -> None:
        self.client.close()

    def _post(self, method: str, params: List[Any]) -> Dict[str, Any]:
        self._next_id += 1
        payload = {"jsonrpc": "2.0", "id": self._next_id, "method": method, "params": params}
        resp = self.client.post(self.rpc_url, json=payload)
        resp.raise_for_status()
        data = resp.json()
        if "error" in data:
            err = data["error"]
            message = err.get("message", err) if isinstance(err, dict) else err
            raise RpcError(f"RPC error in {method}: {message}")
        return data

    def get_account_info(self, pubkey: Pubkey) -> Optional[AccountInfo]:
        """Returns None when the account does not exist."""
        data = self._post(
            "getAccountInfo",
            [str(pubkey), {"encoding": "base64", "commitment": self.commitment}],
        )
        value = data["result"]["value"]
        if value is None:
            return None
        # value['data'] is [base64_str, "base64"]
        return AccountInfo(
            owner=value["owner"],
            data=base64.b64decode(value["data"][0]),
        )

    def get_token_account_balance(self, pubkey: Pubkey) -> int:
        """Raw (minimal unit) balance of a token account."""
        data = self._post(
            "getTokenAccountBalance", [str(pubkey), {"commitment": self.commitment}]
        )
        return int(data["result"]["value"]["amount"])

    def get_latest_blockhash(self) -> Hash:
        data = self._post("getLatestBlockhash", [{"commitment": self.commitment}])
        return Hash.from_string(data["result"]["value"]["blockhash"])

    def send_transaction(self, tx: Transaction) -> str:
        """Submits a signed transaction and returns its signature."""
        encoded = base64.b64encode(bytes(tx)).decode("ascii")
        data = self._post(
            "sendTransaction",
            [encoded, {"encoding": "base64", "preflightCommitment": self.commitment}],
        )
        return str(data["result"])

    def get_signature_status(self, signature: str) -> Optional[Dict[str, Any]]:
        data = self._post(
            "getSignatureStatuses",
            [[signature], {"searchTransactionHistory": False}],
        )
        statuses = data["result"]["value"]
        return statuses[0] if statuses else None

    def confirm_transaction(
        self,
        signature: str,
        commitment: str | None = None,
        timeout_s: float = CONFIRM_TIMEOUT_S,
        poll_interval_s: float = CONFIRM_POLL_INTERVAL_S,
    ) -> Dict[str, Any]:
        """
        Polls getSignatureStatuses until the transaction reaches `commitment`.
        Raises TransactionFailedError if the ledger reports an error for it.
        """
        wanted = _COMMITMENT_RANK[commitment or self.commitment]
        deadline = time.monotonic() + timeout_s
        while True:
            status = self.get_signature_status(signature)
            if status is not None:
                if status.get("err") is not None:
                    raise TransactionFailedError(
                        f"Transaction {signature} failed: {status['err']}"
                    )
                reached = _COMMITMENT_RANK.get(status.get("confirmationStatus") or "", -1)
                if reached >= wanted:
                    return status
            if time.monotonic() >= deadline:
                raise ConfirmationTimeoutError(
                    f"Transaction {signature} not {commitment or self.commitment} "
                    f"after {timeout_s:.0f}s"
                )
            log.debug("Waiting for confirmation of %s", signature)
            time.sleep(poll_interval_s)
