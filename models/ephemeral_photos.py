import uuid
from sqlalchemy import Uuid
from .base import db
from sqlalchemy_serializer import SerializerMixin


class EphemeralPhoto(db.Model, SerializerMixin):
    __tablename__ = "ephemeral_photos"

    id = db.Column(Uuid, primary_key=True, default=uuid.uuid4)
    owner_id = db.Column(Uuid, db.ForeignKey('users.id', ondelete='CASCADE'), nullable=False)
    file_key = db.Column(db.String(500), nullable=False)
    thumbnail_key = db.Column(db.String(500), nullable=True)
    content_type = db.Column(db.String(50), nullable=True)
    file_size = db.Column(db.Integer, nullable=True)
    access_key = db.Column(db.String(128), nullable=False, unique=True)

    expires_at = db.Column(db.DateTime, nullable=False)
    max_views = db.Column(db.Integer, nullable=False, default=1)
    view_count = db.Column(db.Integer, nullable=False, default=0)

    is_viewed = db.Column(db.Boolean, nullable=False, default=False)
    is_expired = db.Column(db.Boolean, nullable=False, default=False)
    is_deleted = db.Column(db.Boolean, nullable=False, default=False)
    viewed_at = db.Column(db.DateTime, nullable=True)
    expired_at = db.Column(db.DateTime, nullable=True)
    deleted_at = db.Column(db.DateTime, nullable=True)

    created_at = db.Column(db.DateTime, nullable=False)
    updated_at = db.Column(db.DateTime, nullable=False)

    __table_args__ = (
        db.CheckConstraint('max_views >= 1', name='check_max_views_positive'),
        db.CheckConstraint('view_count <= max_views', name='check_view_count_bounded'),
        db.Index('idx_ephemeral_owner_created', 'owner_id', 'created_at'),
        db.Index('idx_ephemeral_expiry', 'is_expired', 'expires_at'),
    )

    # access_key is a bearer capability and never leaves through to_dict()
    serialize_only = (
        'id', 'owner_id', 'thumbnail_key', 'expires_at', 'max_views', 'view_count',
        'is_viewed', 'is_expired', 'is_deleted', 'viewed_at', 'expired_at', 'created_at',
    )

    def is_readable(self, now):
        return not (
            self.is_expired
            or self.is_deleted
            or now >= self.expires_at
            or self.view_count >= self.max_views
        )


class PhotoView(db.Model, SerializerMixin):
    __tablename__ = "photo_views"

    id = db.Column(Uuid, primary_key=True, default=uuid.uuid4)
    photo_id = db.Column(Uuid, db.ForeignKey('ephemeral_photos.id', ondelete='CASCADE'), nullable=False)
    viewer_id = db.Column(Uuid, db.ForeignKey('users.id', ondelete='SET NULL'), nullable=True)
    ip = db.Column(db.String(64), nullable=True)
    user_agent = db.Column(db.String(500), nullable=True)
    viewed_at = db.Column(db.DateTime, nullable=False)
    duration_ms = db.Column(db.Integer, nullable=True)

    __table_args__ = (
        db.Index('idx_photo_views_photo', 'photo_id', 'viewed_at'),
    )

    serialize_only = ('id', 'photo_id', 'viewer_id', 'viewed_at', 'duration_ms')
