import uuid
from sqlalchemy import Uuid
from .base import db
from sqlalchemy_serializer import SerializerMixin

LIKE_DIRECTIONS = ('like', 'super_like')


class Swipe(db.Model, SerializerMixin):
    __tablename__ = "swipes"

    id = db.Column(Uuid, primary_key=True, default=uuid.uuid4)
    swiper_id = db.Column(Uuid, db.ForeignKey('users.id', ondelete='CASCADE'), nullable=False)
    swiped_id = db.Column(Uuid, db.ForeignKey('users.id', ondelete='CASCADE'), nullable=False)
    direction = db.Column(db.Enum('like', 'pass', 'super_like', name='swipe_direction'), nullable=False)
    created_at = db.Column(db.DateTime, nullable=False)

    # Prevent duplicate swipes and ensure users can't swipe themselves
    __table_args__ = (
        db.UniqueConstraint('swiper_id', 'swiped_id', name='uq_swipe_pair'),
        db.CheckConstraint('swiper_id != swiped_id', name='check_no_self_swipe'),
        db.Index('idx_swipes_swiper_created', 'swiper_id', 'created_at'),
        db.Index('idx_swipes_swiped', 'swiped_id'),
    )

    @property
    def is_like(self):
        return self.direction in LIKE_DIRECTIONS
