"""BlockGraph: directed user-to-user blocks with cached adjacency sets."""
import logging

from flask import current_app
from sqlalchemy import or_, and_
from sqlalchemy.exc import IntegrityError

from models import db, Block
from services import identity, rate_limit
from services.tx import atomic
from utils import clock
from utils.cache import CacheManager, build_blocking_cache_key, build_blocked_cache_key
from utils.errors import InvalidArgument, Conflict, NotFound

logger = logging.getLogger(__name__)


def _block_limits():
    config = current_app.config
    return [
        (config['MODERATION_BLOCKS_PER_MINUTE'], rate_limit.MINUTE),
        (config['MODERATION_BLOCKS_PER_HOUR'], rate_limit.HOUR),
        (config['MODERATION_BLOCKS_PER_DAY'], rate_limit.DAY),
    ]


def _invalidate(a, b):
    CacheManager.delete(
        build_blocking_cache_key(a),
        build_blocked_cache_key(a),
        build_blocking_cache_key(b),
        build_blocked_cache_key(b),
    )


def block(blocker_id, blocked_id, reason=None) -> Block:
    if blocker_id == blocked_id:
        raise InvalidArgument("Cannot block yourself")

    identity.load_user(blocker_id)
    # Any user may be the target of a block, banned or not
    identity.load_user(blocked_id)

    with rate_limit.Reservation() as slots:
        slots.enforce(
            'blocks', blocker_id, _block_limits(),
            rate_limit.counter_for(lambda: Block.query.filter_by(blocker_id=blocker_id), Block.created_at),
        )

        with atomic('block', blocker_id=blocker_id, blocked_id=blocked_id):
            if Block.query.filter_by(blocker_id=blocker_id, blocked_id=blocked_id).first():
                raise Conflict("User already blocked", code="already_blocked")
            edge = Block(
                blocker_id=blocker_id,
                blocked_id=blocked_id,
                reason=reason,
                created_at=clock.utcnow(),
            )
            try:
                with db.session.begin_nested():
                    db.session.add(edge)
            except IntegrityError:
                # Concurrent insert of the same edge won
                raise Conflict("User already blocked", code="already_blocked")

    _invalidate(blocker_id, blocked_id)
    logger.info(f"User {blocker_id} blocked {blocked_id}")
    return edge


def unblock(blocker_id, blocked_id):
    with atomic('unblock', blocker_id=blocker_id, blocked_id=blocked_id):
        edge = Block.query.filter_by(blocker_id=blocker_id, blocked_id=blocked_id).first()
        if edge is None:
            raise NotFound("Block not found")
        db.session.delete(edge)

    _invalidate(blocker_id, blocked_id)
    logger.info(f"User {blocker_id} unblocked {blocked_id}")


def _blocking_set(user_id):
    """Ids `user_id` has blocked, through the cache"""
    key = build_blocking_cache_key(user_id)
    cached = CacheManager.get(key)
    if cached is not None:
        return set(cached)
    ids = {str(row.blocked_id) for row in Block.query.filter_by(blocker_id=user_id).all()}
    CacheManager.set(key, sorted(ids), current_app.config['BLOCK_CACHE_TTL'])
    return ids


def blocked_by(user_id):
    """Ids that have blocked `user_id`, through the cache"""
    key = build_blocked_cache_key(user_id)
    cached = CacheManager.get(key)
    if cached is not None:
        return set(cached)
    ids = {str(row.blocker_id) for row in Block.query.filter_by(blocked_id=user_id).all()}
    CacheManager.set(key, sorted(ids), current_app.config['BLOCK_CACHE_TTL'])
    return ids


def is_blocked(a, b) -> bool:
    """True if `a` has blocked `b`"""
    return str(b) in _blocking_set(a)


def is_either_blocked(a, b) -> bool:
    return is_blocked(a, b) or is_blocked(b, a)


def is_either_blocked_in_storage(a, b) -> bool:
    """Uncached check, for use inside a unit of work"""
    return db.session.query(
        Block.query.filter(or_(
            and_(Block.blocker_id == a, Block.blocked_id == b),
            and_(Block.blocker_id == b, Block.blocked_id == a),
        )).exists()
    ).scalar()


def is_mutual(a, b) -> bool:
    return is_blocked(a, b) and is_blocked(b, a)


def list_blocked(user_id):
    return (
        Block.query.filter_by(blocker_id=user_id)
        .order_by(Block.created_at.desc())
        .all()
    )


def excluded_ids(user_id):
    """Everyone a candidate feed must hide from `user_id` (both directions)"""
    return _blocking_set(user_id) | blocked_by(user_id)
