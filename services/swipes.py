"""SwipeMatch: swipe recording and reciprocal-like match detection.

A match is keyed by the canonical pair (smaller id, larger id). Writers on the
same pair are serialized by utils.locks.pair_lock, and the unique constraint
on (user1_id, user2_id) stays as the backstop: whichever transaction wins the
insert emits MatchCreated, the loser loads the existing row and emits nothing.
"""
import logging
from dataclasses import dataclass
from typing import Optional

from flask import current_app
from sqlalchemy import or_, and_, exists, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import aliased

from models import db, Swipe, Match, Sanction
from models.swipes import LIKE_DIRECTIONS
from services import identity, blocks, events, rate_limit
from services.tx import atomic
from utils import clock
from utils.errors import InvalidArgument, NotFound, Forbidden, Blocked, Conflict, AlreadySwiped
from utils.locks import canonical, pair_lock

logger = logging.getLogger(__name__)

DIRECTIONS = ('like', 'pass', 'super_like')


@dataclass
class SwipeResult:
    swipe: Swipe
    match: Optional[Match] = None
    match_created: bool = False

    def to_dict(self):
        return {
            'swipe_id': str(self.swipe.id),
            'direction': self.swipe.direction,
            'match': serialize_match(self.match) if self.match is not None else None,
        }


def serialize_match(match: Match):
    return {
        'id': str(match.id),
        'u1': str(match.user1_id),
        'u2': str(match.user2_id),
        'is_active': match.is_active,
        'matched_at': match.matched_at.isoformat() if match.matched_at else None,
        'deactivated_at': match.deactivated_at.isoformat() if match.deactivated_at else None,
        'deactivation_reason': match.deactivation_reason,
    }


def _swipe_counter(swiper_id, directions=None):
    def query():
        q = Swipe.query.filter(Swipe.swiper_id == swiper_id)
        if directions:
            q = q.filter(Swipe.direction.in_(directions))
        return q
    return rate_limit.counter_for(query, Swipe.created_at)


def _enforce_budgets(slots, swiper_id, direction):
    config = current_app.config
    slots.enforce(
        'swipes', swiper_id,
        [(config['SWIPES_PER_HOUR'], rate_limit.HOUR), (config['SWIPES_PER_DAY'], rate_limit.DAY)],
        _swipe_counter(swiper_id),
    )
    if direction == 'super_like':
        slots.enforce(
            'super_likes', swiper_id,
            [(config['SUPER_LIKES_PER_DAY'], rate_limit.DAY)],
            _swipe_counter(swiper_id, ('super_like',)),
        )


def record_swipe(swiper_id, swiped_id, direction) -> SwipeResult:
    """Persist a swipe and, for likes, detect a reciprocal like in the same transaction"""
    if direction not in DIRECTIONS:
        raise InvalidArgument("Invalid swipe direction", allowed=list(DIRECTIONS))
    if swiper_id == swiped_id:
        raise InvalidArgument("Cannot swipe on yourself")

    identity.ensure_active(swiper_id, "swipe")
    target = identity.load_user(swiped_id)
    if not identity.is_in_good_standing(target):
        raise Forbidden("User is not available", code="target_unavailable")
    if blocks.is_either_blocked(swiper_id, swiped_id):
        raise Blocked()
    if Swipe.query.filter_by(swiper_id=swiper_id, swiped_id=swiped_id).first():
        raise AlreadySwiped()

    with rate_limit.Reservation() as slots:
        _enforce_budgets(slots, swiper_id, direction)
        result = _store_swipe(swiper_id, swiped_id, direction)

    if result.match_created:
        logger.info(f"Match {result.match.id} created for {result.match.user1_id}/{result.match.user2_id}")
    return result


def _store_swipe(swiper_id, swiped_id, direction) -> SwipeResult:
    with pair_lock(swiper_id, swiped_id):
        with atomic('record_swipe', swiper_id=swiper_id, swiped_id=swiped_id, direction=direction):
            # The cache may lag a block that landed since the check in record_swipe
            if blocks.is_either_blocked_in_storage(swiper_id, swiped_id):
                raise Blocked()

            now = clock.utcnow()
            swipe = Swipe(swiper_id=swiper_id, swiped_id=swiped_id, direction=direction, created_at=now)
            try:
                with db.session.begin_nested():
                    db.session.add(swipe)
            except IntegrityError:
                raise AlreadySwiped()

            result = SwipeResult(swipe=swipe)
            if direction in LIKE_DIRECTIONS:
                reciprocal = Swipe.query.filter(
                    Swipe.swiper_id == swiped_id,
                    Swipe.swiped_id == swiper_id,
                    Swipe.direction.in_(LIKE_DIRECTIONS),
                ).first()
                if reciprocal is None:
                    events.record(
                        events.SWIPE_RECORDED, [swiper_id],
                        swipe_id=str(swipe.id), swiped_id=str(swiped_id), direction=direction,
                    )
                else:
                    result.match, result.match_created = _insert_match(swiper_id, swiped_id, now)
                    if result.match_created:
                        events.record(
                            events.MATCH_CREATED, result.match.participants(),
                            match_id=str(result.match.id),
                            u1=str(result.match.user1_id),
                            u2=str(result.match.user2_id),
                        )
    return result


def _insert_match(a, b, now):
    """Insert the canonical match row; on a unique violation return the existing one"""
    u1, u2 = canonical(a, b)
    match = Match(user1_id=u1, user2_id=u2, is_active=True, matched_at=now)
    try:
        with db.session.begin_nested():
            db.session.add(match)
        return match, True
    except IntegrityError:
        existing = Match.query.filter_by(user1_id=u1, user2_id=u2).first()
        if existing is None:
            raise
        logger.info(f"Match for {u1}/{u2} already created by a concurrent swipe")
        return existing, False


def find_match(a, b) -> Optional[Match]:
    """Look up the match for an unordered pair, in either argument order"""
    u1, u2 = canonical(a, b)
    return Match.query.filter_by(user1_id=u1, user2_id=u2).first()


def get_match(user_id, match_id) -> Match:
    match = db.session.get(Match, match_id)
    if match is None:
        raise NotFound("Match not found")
    if not match.has_participant(user_id):
        raise Forbidden("Not a participant of this match")
    return match


def list_matches(user_id, active_only=True):
    query = Match.query.filter(or_(Match.user1_id == user_id, Match.user2_id == user_id))
    if active_only:
        query = query.filter(Match.is_active.is_(True))
    return query.order_by(Match.matched_at.desc()).all()


def _deactivate(match, reason, actor_id=None, sanction_id=None, now=None):
    match.is_active = False
    match.deactivated_at = now or clock.utcnow()
    match.deactivated_by = actor_id
    match.deactivation_reason = reason
    match.sanction_id = sanction_id
    match.user1_rematch = False
    match.user2_rematch = False
    events.record(
        events.MATCH_DEACTIVATED, match.participants(),
        match_id=str(match.id), reason=reason,
    )


def unmatch(user_id, match_id) -> Match:
    with atomic('unmatch', user_id=user_id, match_id=match_id):
        identity.ensure_active(user_id, "unmatch")
        match = get_match(user_id, match_id)
        if not match.is_active:
            raise Conflict("Match is not active", code="match_inactive")
        _deactivate(match, 'unmatch', actor_id=user_id)
    logger.info(f"User {user_id} unmatched {match_id}")
    return match


def deactivate_user_matches(user_id, reason, actor_id=None, sanction_id=None):
    """Deactivate every active match of `user_id`; runs inside the caller's transaction"""
    now = clock.utcnow()
    matches = (
        Match.query.filter(or_(Match.user1_id == user_id, Match.user2_id == user_id))
        .filter(Match.is_active.is_(True))
        .with_for_update()
        .all()
    )
    for match in matches:
        _deactivate(match, reason, actor_id=actor_id, sanction_id=sanction_id, now=now)
    return matches


def can_reactivate(match) -> bool:
    users = [identity.load_user(uid) for uid in match.participants()]
    if not all(identity.is_in_good_standing(u) for u in users):
        return False
    return not blocks.is_either_blocked_in_storage(match.user1_id, match.user2_id)


def reactivate(match) -> bool:
    """Reactivate a deactivated match if both parties may interact again"""
    if match.is_active or not can_reactivate(match):
        return False
    match.is_active = True
    match.deactivated_at = None
    match.deactivated_by = None
    match.deactivation_reason = None
    match.sanction_id = None
    match.user1_rematch = False
    match.user2_rematch = False
    events.record(events.MATCH_REACTIVATED, match.participants(), match_id=str(match.id))
    return True


def reactivate_for_sanction(sanction_id):
    matches = Match.query.filter_by(sanction_id=sanction_id, is_active=False).all()
    return [m for m in matches if reactivate(m)]


def request_rematch(user_id, match_id) -> Match:
    """Record one participant's consent to restore a match lost to a sanction.

    The match comes back once both participants have consented, the sanction
    is no longer active, and neither side is banned or has blocked the other.
    """
    with atomic('request_rematch', user_id=user_id, match_id=match_id):
        identity.ensure_active(user_id, "rematch")
        match = get_match(user_id, match_id)
        if match.is_active:
            raise Conflict("Match is already active", code="match_active")
        if match.deactivation_reason != 'sanction':
            raise Conflict("Only matches ended by a sanction can be restored", code="not_rematchable")
        sanction = db.session.get(Sanction, match.sanction_id) if match.sanction_id else None
        if sanction is not None and sanction.is_active:
            raise Conflict("Sanction is still active", code="sanction_active")

        if user_id == match.user1_id:
            match.user1_rematch = True
        else:
            match.user2_rematch = True

        if match.user1_rematch and match.user2_rematch:
            if not reactivate(match):
                raise Blocked("Match cannot be restored between these users")
            logger.info(f"Match {match.id} restored by mutual consent")
    return match


def swipe_stats(user_id):
    def by_direction(column):
        rows = (
            db.session.query(Swipe.direction, func.count(Swipe.id))
            .filter(column == user_id)
            .group_by(Swipe.direction)
            .all()
        )
        counts = {direction: 0 for direction in DIRECTIONS}
        counts.update({direction: total for direction, total in rows})
        return counts

    given = by_direction(Swipe.swiper_id)
    received = by_direction(Swipe.swiped_id)
    active_matches = Match.query.filter(
        or_(Match.user1_id == user_id, Match.user2_id == user_id),
        Match.is_active.is_(True),
    ).count()
    return {
        'likes_given': given['like'],
        'passes_given': given['pass'],
        'super_likes_given': given['super_like'],
        'likes_received': received['like'],
        'passes_received': received['pass'],
        'super_likes_received': received['super_like'],
        'active_matches': active_matches,
    }


def reconcile_missing_matches(batch_size=100) -> int:
    """Create matches for reciprocal likes that have no match row.

    Repairs are logged and emit no MatchCreated event.
    """
    forward = aliased(Swipe)
    backward = aliased(Swipe)
    pairs = (
        db.session.query(forward.swiper_id, forward.swiped_id)
        .join(backward, and_(
            backward.swiper_id == forward.swiped_id,
            backward.swiped_id == forward.swiper_id,
        ))
        .filter(
            forward.swiper_id < forward.swiped_id,
            forward.direction.in_(LIKE_DIRECTIONS),
            backward.direction.in_(LIKE_DIRECTIONS),
            ~exists().where(and_(
                Match.user1_id == forward.swiper_id,
                Match.user2_id == forward.swiped_id,
            )),
        )
        .limit(batch_size)
        .all()
    )

    repaired = 0
    for a, b in pairs:
        with pair_lock(a, b):
            with atomic('reconcile_match', user1_id=a, user2_id=b):
                match, created = _insert_match(a, b, clock.utcnow())
        if created:
            repaired += 1
            logger.warning(f"Reconciled missing match {match.id} for {a}/{b}")
    return repaired
