from __future__ import annotations

import threading
from collections.abc import Iterator
from contextlib import contextmanager

from ..core.errors import TransientStoreError


class _Slot:
    __slots__ = ("lock", "users")

    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.users = 0


class AccountLocks:
    """Per-account mutual exclusion for read-modify-write sequences.

    Locks for several accounts are always taken in ascending account id
    order, so two transfers running in opposite directions cannot deadlock.
    An account's entry lives only while some thread holds or waits on it.
    """

    def __init__(self, timeout: float = 5.0) -> None:
        self._timeout = timeout
        self._guard = threading.Lock()
        self._slots: dict[int, _Slot] = {}

    def __len__(self) -> int:
        with self._guard:
            return len(self._slots)

    def _checkout(self, account_id: int) -> threading.Lock:
        with self._guard:
            slot = self._slots.get(account_id)
            if slot is None:
                slot = self._slots[account_id] = _Slot()
            slot.users += 1
            return slot.lock

    def _checkin(self, account_id: int) -> None:
        with self._guard:
            slot = self._slots[account_id]
            slot.users -= 1
            if slot.users == 0:
                del self._slots[account_id]

    @contextmanager
    def hold(self, *account_ids: int) -> Iterator[None]:
        acquired: list[tuple[int, threading.Lock]] = []
        try:
            for account_id in sorted(set(account_ids)):
                lock = self._checkout(account_id)
                if not lock.acquire(timeout=self._timeout):
                    self._checkin(account_id)
                    raise TransientStoreError(
                        f"Timed out waiting for a lock on account {account_id}"
                    )
                acquired.append((account_id, lock))
            yield
        finally:
            for account_id, lock in reversed(acquired):
                lock.release()
                self._checkin(account_id)
