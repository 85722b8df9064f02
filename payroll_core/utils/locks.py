"""
Payroll Core - Keyed Locks

In-process serialization of mutations that share a key (one payroll
aggregate, one payroll period, one document-number sequence). Cross-process
safety comes from the version column and unique constraints in the database.
"""

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict


class KeyedLockRegistry:
    """Hands out one asyncio.Lock per key and forgets keys nobody is waiting on."""

    def __init__(self):
        self._locks: Dict[str, asyncio.Lock] = {}
        self._waiters: Dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        # No await between lookup and registration, so this is atomic on the loop
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._waiters[key] = self._waiters.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._waiters[key] -= 1
            if self._waiters[key] == 0:
                del self._waiters[key]
                del self._locks[key]

    def is_held(self, key: str) -> bool:
        lock = self._locks.get(key)
        return lock is not None and lock.locked()

    def __len__(self) -> int:
        return len(self._locks)


def payroll_key(payroll_id) -> str:
    return f"payroll:{payroll_id}"


def period_key(month: int, year: int) -> str:
    return f"run:{year:04d}-{month:02d}"


def sequence_key(month: int, year: int) -> str:
    return f"stub-seq:{year:04d}-{month:02d}"


def pay_stub_key(pay_stub_id) -> str:
    return f"pay-stub:{pay_stub_id}"


# Shared by every service instance in this process
payroll_locks = KeyedLockRegistry()
