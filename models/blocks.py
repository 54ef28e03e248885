import uuid
from sqlalchemy import Uuid
from .base import db
from sqlalchemy_serializer import SerializerMixin


class Block(db.Model, SerializerMixin):
    __tablename__ = "blocks"

    id = db.Column(Uuid, primary_key=True, default=uuid.uuid4)
    blocker_id = db.Column(Uuid, db.ForeignKey('users.id', ondelete='CASCADE'), nullable=False)
    blocked_id = db.Column(Uuid, db.ForeignKey('users.id', ondelete='CASCADE'), nullable=False)
    reason = db.Column(db.String(500), nullable=True)
    created_at = db.Column(db.DateTime, server_default=db.func.now())

    __table_args__ = (
        db.UniqueConstraint('blocker_id', 'blocked_id', name='uq_block_pair'),
        db.CheckConstraint('blocker_id != blocked_id', name='check_no_self_block'),
        db.Index('idx_blocks_blocked', 'blocked_id'),
    )
