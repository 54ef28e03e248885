import hashlib
import threading
from contextlib import contextmanager

from sqlalchemy import text

from models import db

_STRIPES = 64
_local_locks = [threading.Lock() for _ in range(_STRIPES)]


def canonical(a, b):
    """Order an unordered pair of ids: (smaller, larger)"""
    return (a, b) if a < b else (b, a)


def pair_key(a, b) -> int:
    """Signed 64-bit key for an unordered pair, usable as an advisory lock id"""
    low, high = canonical(a, b)
    digest = hashlib.sha256(f"{low}:{high}".encode()).digest()
    return int.from_bytes(digest[:8], "big", signed=True)


@contextmanager
def pair_lock(a, b):
    """Serialize writers on one unordered pair until the enclosing commit.

    Enter this before the unit of work starts. On PostgreSQL the lock is a
    transaction-scoped advisory lock; elsewhere it is a striped process lock.
    Unique constraints stay in place as the backstop either way.
    """
    key = pair_key(a, b)
    if db.session.get_bind().dialect.name == "postgresql":
        db.session.execute(text("SELECT pg_advisory_xact_lock(:key)"), {"key": key})
        yield
        return

    lock = _local_locks[key % _STRIPES]
    with lock:
        yield
