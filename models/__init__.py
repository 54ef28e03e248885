from .base import db, metadata
from .users import User, AdminUser
from .blocks import Block
from .swipes import Swipe
from .matches import Match
from .conversations import Conversation
from .messages import Message
from .photos import Photo
from .ephemeral_photos import EphemeralPhoto, PhotoView
from .reports import Report
from .sanctions import Sanction, Appeal
from .jobs import JobLease
from .idempotency import IdempotencyKey

__all__ = [
    'db',
    'metadata',
    'User',
    'AdminUser',
    'Block',
    'Swipe',
    'Match',
    'Conversation',
    'Message',
    'Photo',
    'EphemeralPhoto',
    'PhotoView',
    'Report',
    'Sanction',
    'Appeal',
    'JobLease',
    'IdempotencyKey',
]
