import uuid
from sqlalchemy import Uuid
from .base import db
from sqlalchemy_serializer import SerializerMixin
from sqlalchemy import CheckConstraint


class Match(db.Model, SerializerMixin):
    __tablename__ = "matches"

    id = db.Column(Uuid, primary_key=True, default=uuid.uuid4)
    user1_id = db.Column(Uuid, db.ForeignKey('users.id', ondelete='CASCADE'), nullable=False)
    user2_id = db.Column(Uuid, db.ForeignKey('users.id', ondelete='CASCADE'), nullable=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    matched_at = db.Column(db.DateTime, nullable=False)
    deactivated_at = db.Column(db.DateTime, nullable=True)
    deactivated_by = db.Column(Uuid, nullable=True)
    deactivation_reason = db.Column(
        db.Enum('unmatch', 'sanction', 'moderation', name='match_deactivation_reason'),
        nullable=True,
    )
    # Set while the match is down because of a sanction; consents drive re-matching
    sanction_id = db.Column(Uuid, db.ForeignKey('sanctions.id', ondelete='SET NULL'), nullable=True)
    user1_rematch = db.Column(db.Boolean, nullable=False, default=False)
    user2_rematch = db.Column(db.Boolean, nullable=False, default=False)
    created_at = db.Column(db.DateTime, server_default=db.func.now())
    updated_at = db.Column(db.DateTime, server_default=db.func.now(), onupdate=db.func.now())

    # user1_id is always the smaller id so the pair has exactly one row
    __table_args__ = (
        db.UniqueConstraint('user1_id', 'user2_id', name='uq_match_pair'),
        CheckConstraint('user1_id < user2_id', name='check_user_order'),
        db.Index('idx_matches_user2', 'user2_id'),
        db.Index('idx_matches_active', 'is_active'),
    )

    serialize_only = (
        'id', 'user1_id', 'user2_id', 'is_active', 'matched_at',
        'deactivated_at', 'deactivation_reason',
    )

    def participants(self):
        return (self.user1_id, self.user2_id)

    def has_participant(self, user_id):
        return user_id in (self.user1_id, self.user2_id)

    def other_participant(self, user_id):
        return self.user2_id if self.user1_id == user_id else self.user1_id
