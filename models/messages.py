import uuid
from sqlalchemy import Uuid
from .base import db
from sqlalchemy_serializer import SerializerMixin

MESSAGE_TYPES = ('text', 'photo', 'photo_ephemeral', 'location', 'system', 'gift')


class Message(db.Model, SerializerMixin):
    __tablename__ = "messages"

    id = db.Column(Uuid, primary_key=True, default=uuid.uuid4)
    conversation_id = db.Column(Uuid, db.ForeignKey('conversations.id', ondelete='CASCADE'), nullable=False)
    # Position within the conversation; breaks created_at ties
    seq = db.Column(db.Integer, nullable=False)
    # No FK: system messages carry the system principal id
    sender_id = db.Column(Uuid, nullable=False)
    type = db.Column(db.Enum(*MESSAGE_TYPES, name='message_type'), nullable=False)
    content = db.Column(db.JSON, nullable=False)
    # Searchable text (message text, caption or description)
    body = db.Column(db.Text, nullable=True)
    attachment_ref = db.Column(Uuid, nullable=True)
    is_read = db.Column(db.Boolean, nullable=False, default=False)
    read_at = db.Column(db.DateTime, nullable=True)
    is_unverified = db.Column(db.Boolean, nullable=False, default=False)
    created_at = db.Column(db.DateTime, nullable=False)

    __table_args__ = (
        db.UniqueConstraint('conversation_id', 'seq', name='uq_message_seq'),
        db.Index('idx_conversation_created', 'conversation_id', 'created_at', 'seq'),
        db.Index('idx_conversation_unread', 'conversation_id', 'is_read'),
        db.Index('idx_sender_created', 'sender_id', 'created_at'),
    )

    # Full precision so created_at can be sent back as a paging cursor
    datetime_format = '%Y-%m-%dT%H:%M:%S.%f'

    serialize_only = (
        'id', 'conversation_id', 'seq', 'sender_id', 'type', 'content',
        'attachment_ref', 'is_read', 'read_at', 'is_unverified', 'created_at',
    )
