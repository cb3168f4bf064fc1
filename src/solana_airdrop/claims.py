"""
Process-local record of wallets that already received the airdrop.

Best-effort only: the set lives in one process and is lost on restart, so
separate instances (or a restarted one) will pay the same wallet again.
Deployments that need a global guarantee should back ClaimStore with a shared
store offering an atomic insert.
"""

from __future__ import annotations

import threading
from typing import Protocol, Set


class ClaimStore(Protocol):
    def reserve(self, address: str) -> bool: ...

    def release(self, address: str) -> None: ...

    def __len__(self) -> int: ...


class InMemoryClaimStore:
    def __init__(self) -> None:
        self._claimed: Set[str] = set()
        self._lock = threading.Lock()

    def reserve(self, address: str) -> bool:
        """Marks `address` as claimed. False if it was already marked."""
        with self._lock:
            if address in self._claimed:
                return False
            self._claimed.add(address)
            return True

    def release(self, address: str) -> None:
        with self._lock:
            self._claimed.discard(address)

    def __len__(self) -> int:
        return len(self._claimed)
