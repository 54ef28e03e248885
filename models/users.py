# models/users.py
import uuid
from sqlalchemy import Column, String, Integer, Boolean, DateTime, Index, Uuid, ForeignKey, func
from sqlalchemy_serializer import SerializerMixin
from .base import db


class User(db.Model, SerializerMixin):
    """IdentityView projection of an account, fed by Clerk webhooks and moderation"""
    __tablename__ = "users"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)

    # Clerk subject (`sub` claim); null for users created outside Clerk
    external_id = Column(String(255), unique=True, nullable=True, index=True)

    # Basic Info
    name = Column(String(150), nullable=False)
    email = Column(String(150), nullable=True)
    avatar_url = Column(String(500), nullable=True)

    # Account state
    is_active = Column(Boolean, nullable=False, default=True)
    is_banned = Column(Boolean, nullable=False, default=False)
    is_suspended = Column(Boolean, nullable=False, default=False)
    suspended_until = Column(DateTime, nullable=True)
    reputation = Column(Integer, nullable=False, default=100)

    # Timestamps
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        Index("ix_users_state", "is_active", "is_banned"),
    )

    serialize_only = (
        'id', 'name', 'avatar_url', 'is_active', 'is_banned', 'is_suspended',
        'suspended_until', 'reputation', 'created_at',
    )

    def __repr__(self):
        return f'<User {self.id}>'


class AdminUser(db.Model, SerializerMixin):
    __tablename__ = "admin_users"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid, ForeignKey('users.id', ondelete='CASCADE'), nullable=False, unique=True)
    role = Column(db.Enum('moderator', 'senior_moderator', 'super_admin', name='admin_role'), nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    serialize_only = ('id', 'user_id', 'role', 'is_active', 'created_at')
