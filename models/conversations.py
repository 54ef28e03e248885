import uuid
from sqlalchemy import Uuid
from .base import db
from sqlalchemy_serializer import SerializerMixin


class Conversation(db.Model, SerializerMixin):
    __tablename__ = "conversations"

    id = db.Column(Uuid, primary_key=True, default=uuid.uuid4)
    match_id = db.Column(Uuid, db.ForeignKey('matches.id', ondelete='CASCADE'), nullable=False, unique=True)

    # Denormalized from the match for read paths; same canonical order
    user1_id = db.Column(Uuid, db.ForeignKey('users.id', ondelete='CASCADE'), nullable=False)
    user2_id = db.Column(Uuid, db.ForeignKey('users.id', ondelete='CASCADE'), nullable=False)

    initiated_by = db.Column(Uuid, nullable=False)

    last_message_id = db.Column(Uuid, nullable=True)
    last_seq = db.Column(db.Integer, nullable=False, default=0)
    last_message_at = db.Column(db.DateTime, nullable=True)

    # Per-participant soft delete
    user1_hidden_at = db.Column(db.DateTime, nullable=True)
    user2_hidden_at = db.Column(db.DateTime, nullable=True)

    created_at = db.Column(db.DateTime, nullable=False)
    updated_at = db.Column(db.DateTime, nullable=False)

    __table_args__ = (
        db.CheckConstraint('user1_id < user2_id', name='check_conversation_user_order'),
        db.Index('idx_conversations_user1', 'user1_id'),
        db.Index('idx_conversations_user2', 'user2_id'),
    )

    serialize_only = (
        'id', 'match_id', 'user1_id', 'user2_id', 'last_message_id',
        'created_at', 'updated_at',
    )

    def has_participant(self, user_id):
        return user_id in (self.user1_id, self.user2_id)

    def other_participant(self, user_id):
        return self.user2_id if self.user1_id == user_id else self.user1_id

    def hidden_at(self, user_id):
        return self.user1_hidden_at if user_id == self.user1_id else self.user2_hidden_at

    def set_hidden(self, user_id, value):
        if user_id == self.user1_id:
            self.user1_hidden_at = value
        else:
            self.user2_hidden_at = value
