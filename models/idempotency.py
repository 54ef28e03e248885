import uuid
from sqlalchemy import Uuid
from .base import db


class IdempotencyKey(db.Model):
    __tablename__ = "idempotency_keys"

    id = db.Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = db.Column(Uuid, db.ForeignKey('users.id', ondelete='CASCADE'), nullable=False)
    key = db.Column(db.String(255), nullable=False)
    operation = db.Column(db.String(50), nullable=False)
    status_code = db.Column(db.Integer, nullable=False)
    response = db.Column(db.JSON, nullable=False)
    created_at = db.Column(db.DateTime, nullable=False)

    __table_args__ = (
        db.UniqueConstraint('user_id', 'key', name='uq_idempotency_user_key'),
    )
