"""Per-user sliding-window rate limiting.

Windows live in a Redis sorted set per bucket and subject (one member per
event, scored by timestamp). When Redis is unavailable the caller supplies a
storage fallback that counts the persisted rows inside the window.
"""
import logging
import math
import time
import uuid
from dataclasses import dataclass
from datetime import timedelta
from typing import Callable, Iterable, List, Optional, Tuple

from sqlalchemy import func

from utils import clock
from utils.cache import CacheManager
from utils.errors import RateLimited

logger = logging.getLogger(__name__)

MINUTE = 60
HOUR = 3600
DAY = 86400

# (count, oldest timestamp) of events since the given datetime
StorageCounter = Callable[[object], Tuple[int, Optional[object]]]


@dataclass
class Decision:
    allowed: bool
    retry_after: Optional[int] = None
    window: Optional[int] = None
    budget: Optional[int] = None
    # Redis slot taken by an allowed attempt, for release()
    key: Optional[str] = None
    member: Optional[str] = None


def _key(bucket, subject):
    return f"ratelimit:{bucket}:{subject}"


def _retry_after(oldest_ts, window, now_ts):
    return max(1, int(math.ceil(oldest_ts + window - now_ts)))


def _check_redis(client, bucket, subject, limits):
    key = _key(bucket, subject)
    now_ts = time.time()
    longest = max(window for _, window in limits)
    member = f"{now_ts}:{uuid.uuid4().hex}"

    pipe = client.pipeline()
    pipe.zremrangebyscore(key, 0, now_ts - longest)
    pipe.zadd(key, {member: now_ts})
    for _, window in limits:
        pipe.zcount(key, now_ts - window, '+inf')
        pipe.zrangebyscore(key, now_ts - window, '+inf', start=0, num=1, withscores=True)
    pipe.expire(key, longest)
    results = pipe.execute()

    for index, (budget, window) in enumerate(limits):
        count = results[2 + index * 2]
        oldest = results[3 + index * 2]
        if count > budget:
            # Over budget: this attempt does not consume the window
            client.zrem(key, member)
            oldest_ts = oldest[0][1] if oldest else now_ts
            return Decision(False, _retry_after(oldest_ts, window, now_ts), window, budget)
    return Decision(True, key=key, member=member)


def _check_storage(counter, limits):
    now = clock.utcnow()
    for budget, window in limits:
        count, oldest = counter(now - timedelta(seconds=window))
        if count >= budget:
            if oldest is None:
                retry = window
            else:
                retry = max(1, int(math.ceil((oldest + timedelta(seconds=window) - now).total_seconds())))
            return Decision(False, retry, window, budget)
    return Decision(True)


def check(bucket: str, subject, limits: Iterable[Tuple[int, int]],
          fallback: Optional[StorageCounter] = None) -> Decision:
    """Check and consume one unit of every (budget, window) pair.

    Budgets of zero or less disable that window.
    """
    limits = [(budget, window) for budget, window in limits if budget and budget > 0]
    if not limits:
        return Decision(True)

    client = CacheManager.client()
    if client is not None:
        try:
            return _check_redis(client, bucket, subject, limits)
        except Exception as e:
            logger.warning(f"Rate limit cache error for {bucket}:{subject}, using storage: {str(e)}")

    if fallback is None:
        logger.warning(f"No storage fallback for {bucket}:{subject}; allowing request")
        return Decision(True)
    return _check_storage(fallback, limits)


def enforce(bucket: str, subject, limits: Iterable[Tuple[int, int]],
            fallback: Optional[StorageCounter] = None):
    """Like check(), but raise RateLimited when any budget is exhausted"""
    decision = check(bucket, subject, limits, fallback)
    if not decision.allowed:
        logger.info(f"Rate limited {bucket} for {subject}: {decision.budget}/{decision.window}s")
        raise RateLimited(
            f"Too many {bucket} requests",
            retry_after=decision.retry_after,
            bucket=bucket,
            window=decision.window,
            budget=decision.budget,
        )
    return decision


def release(*decisions: Decision):
    """Give back the slots of allowed attempts whose operation did not happen"""
    client = CacheManager.client()
    if client is None:
        return
    for decision in decisions:
        if decision is None or decision.member is None:
            continue
        try:
            client.zrem(decision.key, decision.member)
        except Exception as e:
            logger.warning(f"Could not release rate limit slot on {decision.key}: {str(e)}")


class Reservation:
    """Slots taken through enforce() inside a `with` block.

    When the block raises, every slot taken so far is released, so refused
    or failed operations do not count against the caller's budget. The
    storage fallback counts persisted rows and needs no release.
    """

    def __init__(self):
        self.decisions: List[Decision] = []

    def enforce(self, bucket: str, subject, limits: Iterable[Tuple[int, int]],
                fallback: Optional[StorageCounter] = None) -> Decision:
        decision = enforce(bucket, subject, limits, fallback)
        self.decisions.append(decision)
        return decision

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        if exc_type is not None:
            release(*self.decisions)
            self.decisions = []
        return False


def counter_for(query_factory, timestamp_column):
    """Build a storage fallback counting rows of `query_factory()` newer than `since`"""
    def count(since):
        query = query_factory().filter(timestamp_column >= since)
        total, oldest = query.with_entities(func.count(), func.min(timestamp_column)).one()
        return total, oldest
    return count
