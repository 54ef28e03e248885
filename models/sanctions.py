import uuid
from sqlalchemy import Uuid
from .base import db
from sqlalchemy_serializer import SerializerMixin

SANCTION_KINDS = ('warn', 'suspend', 'ban')
# Kinds with at most one active row per target
EXCLUSIVE_KINDS = ('suspend', 'ban')
APPEAL_STATUSES = ('pending', 'reviewed', 'approved', 'rejected')


class Sanction(db.Model, SerializerMixin):
    __tablename__ = "sanctions"

    id = db.Column(Uuid, primary_key=True, default=uuid.uuid4)
    target_user_id = db.Column(Uuid, db.ForeignKey('users.id', ondelete='CASCADE'), nullable=False)
    issuer_id = db.Column(Uuid, nullable=False)
    kind = db.Column(db.Enum(*SANCTION_KINDS, name='sanction_kind'), nullable=False)
    reason = db.Column(db.Text, nullable=False)
    duration_token = db.Column(db.String(20), nullable=True)
    expires_at = db.Column(db.DateTime, nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    is_automated = db.Column(db.Boolean, nullable=False, default=False)
    report_id = db.Column(Uuid, nullable=True)
    lifted_at = db.Column(db.DateTime, nullable=True)
    lifted_by = db.Column(Uuid, nullable=True)
    lift_reason = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime, nullable=False)
    updated_at = db.Column(db.DateTime, nullable=False)

    __table_args__ = (
        db.Index('idx_sanctions_target_active', 'target_user_id', 'is_active', 'kind'),
        db.Index('idx_sanctions_expiry', 'is_active', 'expires_at'),
        # One active ban and one active suspension per user at most
        db.Index(
            'uq_sanctions_one_active', 'target_user_id', 'kind', unique=True,
            postgresql_where=db.text("is_active AND kind IN ('ban', 'suspend')"),
            sqlite_where=db.text("is_active AND kind IN ('ban', 'suspend')"),
        ),
    )

    serialize_only = (
        'id', 'target_user_id', 'issuer_id', 'kind', 'reason', 'duration_token',
        'expires_at', 'is_active', 'is_automated', 'report_id', 'lifted_at', 'lifted_by',
        'created_at',
    )

    @property
    def is_permanent(self):
        return self.kind != 'warn' and self.expires_at is None


class Appeal(db.Model, SerializerMixin):
    __tablename__ = "appeals"

    id = db.Column(Uuid, primary_key=True, default=uuid.uuid4)
    appellant_id = db.Column(Uuid, db.ForeignKey('users.id', ondelete='CASCADE'), nullable=False)
    sanction_id = db.Column(Uuid, db.ForeignKey('sanctions.id', ondelete='CASCADE'), nullable=False)
    reason = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=False)
    status = db.Column(db.Enum(*APPEAL_STATUSES, name='appeal_status'), nullable=False, default='pending')
    reviewer_id = db.Column(Uuid, nullable=True)
    reviewed_at = db.Column(db.DateTime, nullable=True)
    review_notes = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime, nullable=False)
    updated_at = db.Column(db.DateTime, nullable=False)

    __table_args__ = (
        db.Index('idx_appeals_appellant_status', 'appellant_id', 'status'),
        db.Index('idx_appeals_status_created', 'status', 'created_at'),
        db.Index(
            'uq_appeals_one_pending', 'appellant_id', unique=True,
            postgresql_where=db.text("status = 'pending'"),
            sqlite_where=db.text("status = 'pending'"),
        ),
    )

    serialize_only = (
        'id', 'appellant_id', 'sanction_id', 'reason', 'description', 'status',
        'reviewer_id', 'reviewed_at', 'review_notes', 'created_at',
    )
