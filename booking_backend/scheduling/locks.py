"""
Mutual exclusion around the check-then-create critical section.

Two layers are combined:

* an in-process lock keyed by ``(provider_id, date)``, enough on its own for a
  single-instance deployment;
* a ``SELECT ... FOR UPDATE`` on the stylist's user row, which serialises
  writers across processes on databases with row locks (PostgreSQL). SQLite
  ignores ``FOR UPDATE`` and serialises writers itself.

The partial unique index on active bookings stays as the last line of defence.
"""

from collections.abc import Iterator
from contextlib import contextmanager
from datetime import date
from threading import Lock

from sqlalchemy.orm import Session

from booking_backend.models.user import User

LedgerKey = tuple[int, date]


class LedgerLocks:
    """Registry of per ``(provider_id, date)`` locks.

    Entries are reference counted and dropped once nobody holds or waits on
    them, so the registry does not grow with every date ever booked.
    """

    def __init__(self) -> None:
        self._registry_lock = Lock()
        self._locks: dict[LedgerKey, list] = {}

    @contextmanager
    def hold(self, provider_id: int, booking_date: date, timeout: float = -1) -> Iterator[bool]:
        key = (provider_id, booking_date)
        with self._registry_lock:
            entry = self._locks.setdefault(key, [Lock(), 0])
            entry[1] += 1

        lock = entry[0]
        acquired = lock.acquire(timeout=timeout)
        try:
            yield acquired
        finally:
            if acquired:
                lock.release()
            with self._registry_lock:
                entry[1] -= 1
                if entry[1] == 0:
                    self._locks.pop(key, None)

    def __len__(self) -> int:
        with self._registry_lock:
            return len(self._locks)


def lock_provider_row(db: Session, provider_id: int) -> User | None:
    return (
        db.query(User)
        .filter(User.id == provider_id)
        .with_for_update()
        .populate_existing()
        .first()
    )
