import uuid
from sqlalchemy import Uuid
from .base import db
from sqlalchemy_serializer import SerializerMixin


class Photo(db.Model, SerializerMixin):
    """Profile photo projection; written by the upload pipeline"""
    __tablename__ = "photos"

    id = db.Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = db.Column(Uuid, db.ForeignKey('users.id', ondelete='CASCADE'), nullable=False, index=True)
    file_key = db.Column(db.String(500), nullable=False)
    is_approved = db.Column(db.Boolean, nullable=False, default=False)
    created_at = db.Column(db.DateTime, server_default=db.func.now())

    serialize_only = ('id', 'user_id', 'file_key', 'is_approved')
