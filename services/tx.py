import logging
from contextlib import contextmanager

from models import db
from services import events
from utils.errors import CoreError

logger = logging.getLogger(__name__)


@contextmanager
def atomic(operation: str, **context):
    """Run a unit of work: commit on success, roll back on any failure.

    Events queued inside the block are published after the commit. Errors
    that are not CoreError are logged with the operation name and ids.
    """
    try:
        yield db.session
        db.session.commit()
    except CoreError:
        db.session.rollback()
        raise
    except Exception:
        db.session.rollback()
        logger.exception(f"{operation} failed: {context}")
        raise
    events.publish_pending()
