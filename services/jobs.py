"""Background sweepers.

Each sweeper is one long-lived thread per role. Every batch runs under a
lease (Redis SET NX EX, or a job_leases row when Redis is down) so replicas
do not process the same batch. Failures back off exponentially.
"""
import logging
import os
import socket
import threading
import uuid
from datetime import timedelta
from typing import Callable, List, Optional

from sqlalchemy.exc import IntegrityError

from models import db, JobLease
from utils import clock
from utils.cache import CacheManager

logger = logging.getLogger(__name__)

_RELEASE_SCRIPT = """
if redis.call('get', KEYS[1]) == ARGV[1] then
    return redis.call('del', KEYS[1])
end
return 0
"""


def holder_id() -> str:
    return f"{socket.gethostname()}:{os.getpid()}:{uuid.uuid4().hex[:8]}"


def _lease_key(name):
    return f"lease:{name}"


def acquire_lease(name: str, holder: str, ttl: int) -> bool:
    client = CacheManager.client()
    if client is not None:
        try:
            return bool(client.set(_lease_key(name), holder, nx=True, ex=ttl))
        except Exception as e:
            logger.warning(f"Lease cache error for {name}, using storage: {str(e)}")

    now = clock.utcnow()
    try:
        lease = JobLease.query.filter_by(name=name).with_for_update().first()
        if lease is None:
            db.session.add(JobLease(name=name, holder=holder, expires_at=now + timedelta(seconds=ttl)))
        elif lease.holder == holder or lease.expires_at <= now:
            lease.holder = holder
            lease.expires_at = now + timedelta(seconds=ttl)
        else:
            db.session.rollback()
            return False
        db.session.commit()
        return True
    except IntegrityError:
        db.session.rollback()
        return False


def release_lease(name: str, holder: str):
    client = CacheManager.client()
    if client is not None:
        try:
            client.eval(_RELEASE_SCRIPT, 1, _lease_key(name), holder)
            return
        except Exception as e:
            logger.warning(f"Lease release cache error for {name}: {str(e)}")

    JobLease.query.filter_by(name=name, holder=holder).delete(synchronize_session=False)
    db.session.commit()


def run_once(name: str, task: Callable[[], int], holder: Optional[str] = None, ttl: int = 60):
    """Run one batch under the lease; returns None when another replica holds it"""
    holder = holder or holder_id()
    if not acquire_lease(name, holder, ttl):
        logger.debug(f"Lease {name} held elsewhere; skipping batch")
        return None
    try:
        return task()
    finally:
        try:
            release_lease(name, holder)
        except Exception as e:
            db.session.rollback()
            logger.warning(f"Could not release lease {name}: {str(e)}")


class Sweeper(threading.Thread):
    def __init__(self, app, name: str, task: Callable[[], int], interval: float):
        super().__init__(name=f"sweeper-{name}", daemon=True)
        self.app = app
        self.job_name = name
        self.task = task
        self.interval = interval
        self.max_backoff = app.config.get('SWEEPER_MAX_BACKOFF', 300)
        self.lease_ttl = app.config.get('SWEEPER_LEASE_TTL', 60)
        self.holder = holder_id()
        self.failures = 0
        self.stop_event = threading.Event()

    def next_delay(self) -> float:
        if self.failures == 0:
            return self.interval
        return min(self.max_backoff, self.interval * (2 ** self.failures))

    def run_batch(self):
        with self.app.app_context():
            try:
                processed = run_once(self.job_name, self.task, self.holder, self.lease_ttl)
                self.failures = 0
                return processed
            except Exception:
                db.session.rollback()
                self.failures += 1
                logger.exception(f"[{self.job_name}] batch failed ({self.failures} in a row)")
                return None
            finally:
                db.session.remove()

    def run(self):
        logger.info(f"[{self.job_name}] sweeper started (interval={self.interval}s)")
        while not self.stop_event.is_set():
            processed = self.run_batch()
            # A full batch likely means more work is waiting
            if processed and processed >= self.app.config.get('EPHEMERAL_JOB_BATCH_SIZE', 100):
                continue
            self.stop_event.wait(self.next_delay())
        logger.info(f"[{self.job_name}] sweeper stopped")

    def stop(self):
        self.stop_event.set()


def build_sweepers(app) -> List[Sweeper]:
    from services import ephemeral_photos, moderation, swipes

    config = app.config
    batch = config['EPHEMERAL_JOB_BATCH_SIZE']
    return [
        Sweeper(app, 'ephemeral_expire', lambda: ephemeral_photos.sweep_expired(batch),
                config['EPHEMERAL_CLEANUP_INTERVAL']),
        Sweeper(app, 'ephemeral_purge', lambda: ephemeral_photos.purge_retained(batch),
                config['EPHEMERAL_CLEANUP_INTERVAL']),
        Sweeper(app, 'sanction_expiry', lambda: moderation.expire_sanctions(batch),
                config['SANCTION_SWEEP_INTERVAL']),
        Sweeper(app, 'appeal_cleanup', lambda: moderation.cleanup_appeals(batch),
                config['SANCTION_SWEEP_INTERVAL']),
        Sweeper(app, 'match_reconcile', lambda: swipes.reconcile_missing_matches(batch),
                config['RECONCILE_INTERVAL']),
    ]


_sweepers: List[Sweeper] = []


def start_sweepers(app) -> List[Sweeper]:
    global _sweepers
    if any(s.is_alive() for s in _sweepers):
        return _sweepers
    _sweepers = build_sweepers(app)
    for sweeper in _sweepers:
        sweeper.start()
    return _sweepers


def stop_sweepers(timeout: float = 5.0):
    for sweeper in _sweepers:
        sweeper.stop()
    for sweeper in _sweepers:
        sweeper.join(timeout)
