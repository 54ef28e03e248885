"""In-process event bus for domain events.

Services queue events on the current session while the transaction is open;
they are handed to subscribers only once the transaction has committed, and
dropped if it rolls back. Delivery to clients is at-least-once, so every event
carries an id clients can deduplicate on.
"""
import json
import logging
import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List

from sqlalchemy import event as sa_event
from sqlalchemy.orm import Session

from models import db
from utils import clock
from utils.cache import CacheManager

logger = logging.getLogger(__name__)

SWIPE_RECORDED = 'SwipeRecorded'
MATCH_CREATED = 'MatchCreated'
MATCH_DEACTIVATED = 'MatchDeactivated'
MATCH_REACTIVATED = 'MatchReactivated'
MESSAGE_APPENDED = 'MessageAppended'
MESSAGES_READ = 'MessagesRead'
EPHEMERAL_PHOTO_VIEWED = 'EphemeralPhotoViewed'
REPORT_SUBMITTED = 'ReportSubmitted'
REPORT_RESOLVED = 'ReportResolved'
SANCTION_APPLIED = 'SanctionApplied'
SANCTION_LIFTED = 'SanctionLifted'
APPEAL_SUBMITTED = 'AppealSubmitted'
APPEAL_REVIEWED = 'AppealReviewed'

# Reviewer-queue events also go to the moderation channel
MODERATION_KINDS = {REPORT_SUBMITTED, APPEAL_SUBMITTED}

_PENDING_KEY = 'pending_events'


@dataclass
class Event:
    kind: str
    recipients: List[Any]
    payload: Dict[str, Any]
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    occurred_at: datetime = field(default_factory=lambda: clock.utcnow())

    def to_dict(self):
        return {
            'id': self.id,
            'kind': self.kind,
            'recipients': [str(r) for r in self.recipients],
            'payload': self.payload,
            'occurred_at': self.occurred_at.isoformat(),
        }


class EventBus:
    def __init__(self):
        self._subscribers: List[Callable[[Event], None]] = []
        self._lock = threading.Lock()

    def subscribe(self, handler: Callable[[Event], None]):
        with self._lock:
            self._subscribers.append(handler)

        def unsubscribe():
            with self._lock:
                if handler in self._subscribers:
                    self._subscribers.remove(handler)
        return unsubscribe

    def publish(self, evt: Event):
        with self._lock:
            handlers = list(self._subscribers)
        for handler in handlers:
            # A failing subscriber must not fail the committed write
            try:
                handler(evt)
            except Exception:
                logger.exception(f"Event handler {handler!r} failed for {evt.kind} {evt.id}")


bus = EventBus()


def record(event_kind: str, recipients, **payload) -> Event:
    """Queue an event on the current transaction"""
    evt = Event(kind=event_kind, recipients=list(recipients), payload=payload)
    db.session.info.setdefault(_PENDING_KEY, []).append(evt)
    return evt


def publish_pending() -> List[Event]:
    pending = db.session.info.pop(_PENDING_KEY, [])
    for evt in pending:
        bus.publish(evt)
    return pending


def discard_pending():
    db.session.info.pop(_PENDING_KEY, None)


@sa_event.listens_for(Session, "after_rollback")
def _drop_on_rollback(session):
    session.info.pop(_PENDING_KEY, None)


def redis_publisher(evt: Event):
    """Hand events to the push transport through Redis pub/sub"""
    client = CacheManager.client()
    if client is None:
        return
    message = json.dumps(evt.to_dict(), default=str)
    try:
        for recipient in evt.recipients:
            client.publish(f"events:user:{recipient}", message)
        if evt.kind in MODERATION_KINDS:
            client.publish("events:moderation", message)
    except Exception as e:
        logger.warning(f"Push handoff failed for {evt.kind} {evt.id}: {str(e)}")
