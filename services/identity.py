"""IdentityView: account state and admin roles as seen by the core."""
import logging
import uuid
from dataclasses import dataclass
from typing import FrozenSet, Optional

from flask import current_app

from models import db, User, AdminUser, Sanction
from utils import clock
from utils.errors import NotFound, Forbidden

logger = logging.getLogger(__name__)

# Author of system messages and rule-triggered sanctions
SYSTEM_PRINCIPAL = uuid.UUID(int=0)

CAN_MANAGE_REPORTS = 'can_manage_reports'
CAN_BAN_USERS = 'can_ban_users'
CAN_ESCALATE = 'can_escalate'

ROLE_CAPABILITIES = {
    'moderator': frozenset({CAN_MANAGE_REPORTS}),
    'senior_moderator': frozenset({CAN_MANAGE_REPORTS, CAN_BAN_USERS}),
    'super_admin': frozenset({CAN_MANAGE_REPORTS, CAN_BAN_USERS, CAN_ESCALATE}),
}


@dataclass(frozen=True)
class UserState:
    id: uuid.UUID
    active: bool
    banned: bool
    suspended: bool
    reputation: int

    def to_dict(self):
        return {
            'id': str(self.id),
            'active': self.active,
            'banned': self.banned,
            'suspended': self.suspended,
            'reputation': self.reputation,
        }


def load_user(user_id, for_update=False) -> User:
    query = User.query.filter_by(id=user_id)
    if for_update:
        query = query.with_for_update()
    user = query.first()
    if user is None:
        raise NotFound("User not found", user_id=str(user_id))
    return user


def get_user(user_id) -> UserState:
    user = load_user(user_id)
    return UserState(
        id=user.id,
        active=bool(user.is_active),
        banned=bool(user.is_banned),
        suspended=bool(user.is_suspended),
        reputation=user.reputation,
    )


def ensure_active(user_id, action="perform this action") -> User:
    """Load a user and refuse banned, suspended or deactivated accounts"""
    user = load_user(user_id)
    if user.is_banned:
        raise Forbidden(f"Banned accounts cannot {action}", code="banned")
    if user.is_suspended:
        raise Forbidden(f"Suspended accounts cannot {action}", code="suspended")
    if not user.is_active:
        raise Forbidden(f"Inactive accounts cannot {action}", code="inactive")
    return user


def is_in_good_standing(user: Optional[User]) -> bool:
    return user is not None and user.is_active and not user.is_banned and not user.is_suspended


def get_role(user_id) -> Optional[str]:
    admin = AdminUser.query.filter_by(user_id=user_id, is_active=True).first()
    return admin.role if admin else None


def capabilities(user_id) -> FrozenSet[str]:
    return ROLE_CAPABILITIES.get(get_role(user_id), frozenset())


def require_capability(user_id, capability):
    caps = capabilities(user_id)
    if capability not in caps:
        raise Forbidden("Missing admin capability", code="missing_capability", capability=capability)
    return caps


def _active_exclusive_sanction(user_id, kind, exclude_id=None):
    query = Sanction.query.filter_by(target_user_id=user_id, kind=kind, is_active=True)
    if exclude_id is not None:
        query = query.filter(Sanction.id != exclude_id)
    return query.first()


def apply_ban(user_id) -> User:
    user = load_user(user_id, for_update=True)
    user.is_banned = True
    user.is_active = False
    logger.info(f"User {user_id} banned")
    return user


def lift_ban(user_id, exclude_sanction_id=None) -> User:
    """Clear the ban flag unless another active ban still applies"""
    user = load_user(user_id, for_update=True)
    if _active_exclusive_sanction(user_id, 'ban', exclude_sanction_id) is not None:
        logger.info(f"Ban on {user_id} kept: another active ban exists")
        return user
    user.is_banned = False
    user.is_active = not user.is_suspended
    logger.info(f"Ban lifted for user {user_id}")
    return user


def apply_suspension(user_id, until=None) -> User:
    user = load_user(user_id, for_update=True)
    user.is_suspended = True
    user.suspended_until = until
    user.is_active = False
    logger.info(f"User {user_id} suspended until {until or 'further notice'}")
    return user


def lift_suspension(user_id, exclude_sanction_id=None) -> User:
    user = load_user(user_id, for_update=True)
    if _active_exclusive_sanction(user_id, 'suspend', exclude_sanction_id) is not None:
        return user
    user.is_suspended = False
    user.suspended_until = None
    user.is_active = not user.is_banned
    logger.info(f"Suspension lifted for user {user_id}")
    return user


def adjust_reputation(user_id, delta: int) -> int:
    """Add `delta` to the user's reputation, clamped to the configured range"""
    user = load_user(user_id, for_update=True)
    low = current_app.config['MODERATION_MIN_REPUTATION']
    high = current_app.config['MODERATION_MAX_REPUTATION']
    current = user.reputation if user.reputation is not None else current_app.config['MODERATION_INITIAL_REPUTATION']
    user.reputation = max(low, min(high, current + delta))
    user.updated_at = clock.utcnow()
    return user.reputation


def create_user(name, external_id=None, email=None, avatar_url=None) -> User:
    """Insert a projection row; used by the Clerk webhook and fixtures"""
    user = User(
        name=name,
        external_id=external_id,
        email=email,
        avatar_url=avatar_url,
        reputation=current_app.config['MODERATION_INITIAL_REPUTATION'],
    )
    db.session.add(user)
    db.session.flush()
    return user


def resolve_external(external_id) -> Optional[User]:
    if not external_id:
        return None
    return User.query.filter_by(external_id=external_id).first()
