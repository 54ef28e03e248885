"""Caller-provided idempotency keys, scoped per user."""
import json
import logging

from sqlalchemy.exc import IntegrityError

from models import db, IdempotencyKey
from utils import clock
from utils.errors import Conflict, InvalidArgument

logger = logging.getLogger(__name__)

MAX_KEY_LENGTH = 255


def lookup(user_id, key, operation):
    """Return the stored (body, status) for a replay, or None on first use"""
    if len(key) > MAX_KEY_LENGTH:
        raise InvalidArgument("Idempotency key too long", max_length=MAX_KEY_LENGTH)
    record = IdempotencyKey.query.filter_by(user_id=user_id, key=key).first()
    if record is None:
        return None
    if record.operation != operation:
        raise Conflict("Idempotency key was used for a different operation", code="idempotency_key_reused")
    logger.info(f"Replaying {operation} for {user_id} with key {key}")
    return record.response, record.status_code


def store(user_id, key, operation, body, status_code):
    """Remember a successful response; the first writer wins a race"""
    record = IdempotencyKey(
        user_id=user_id,
        key=key,
        operation=operation,
        status_code=status_code,
        response=json.loads(json.dumps(body, default=str)),
        created_at=clock.utcnow(),
    )
    try:
        with db.session.begin_nested():
            db.session.add(record)
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        logger.info(f"Idempotency key {key} for {user_id} already stored")
