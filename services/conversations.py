"""ConversationLog: one append-only message log per match."""
import logging
import math

from flask import current_app
from sqlalchemy import or_, and_, func
from sqlalchemy.exc import IntegrityError

from models import db, Match, Conversation, Message, Photo, EphemeralPhoto
from models.messages import MESSAGE_TYPES
from services import identity, blocks, content, events, rate_limit
from services.tx import atomic
from utils import clock
from utils.cache import CacheManager, build_unread_cache_key
from utils.errors import InvalidArgument, InvalidContent, NotFound, Forbidden, Blocked, Expired

logger = logging.getLogger(__name__)

PHOTO_TYPES = ('photo', 'photo_ephemeral')


# --- per-type validation -------------------------------------------------

def _text_of(raw):
    if isinstance(raw, dict):
        raw = raw.get('text')
    if not isinstance(raw, str):
        raise InvalidArgument("Text content is required")
    return raw


def _check_length(text, limit, what):
    if len(text) > limit:
        raise InvalidContent(f"{what} exceeds {limit} characters", max_length=limit)


def _optional_text(raw, key):
    value = raw.get(key) if isinstance(raw, dict) else None
    if value is None:
        return None
    if not isinstance(value, str):
        raise InvalidArgument(f"{key} must be a string")
    return value


def _validate_text(sender_id, raw, attachment_ref):
    text = _text_of(raw)
    if not text.strip():
        raise InvalidArgument("Message text cannot be empty")
    _check_length(text, current_app.config['MESSAGES_MAX_TEXT_LENGTH'], "Message")
    verdict = content.screen_text(text)
    return {'text': text}, text, verdict.unverified


def _screen_caption(caption):
    if not caption:
        return False
    _check_length(caption, current_app.config['MESSAGES_MAX_CAPTION_LENGTH'], "Caption")
    return content.screen_text(caption).unverified


def _validate_photo(sender_id, raw, attachment_ref):
    if attachment_ref is None:
        raise InvalidArgument("Photo messages need an attachment")
    photo = db.session.get(Photo, attachment_ref)
    if photo is None or photo.user_id != sender_id:
        raise InvalidArgument("Photo not found for sender", code="photo_not_owned")
    if not photo.is_approved:
        raise InvalidArgument("Photo is not approved", code="photo_not_approved")
    caption = _optional_text(raw, 'caption')
    unverified = _screen_caption(caption)
    return {'caption': caption}, caption, unverified


def _validate_ephemeral(sender_id, raw, attachment_ref):
    if attachment_ref is None:
        raise InvalidArgument("Ephemeral photo messages need an attachment")
    photo = db.session.get(EphemeralPhoto, attachment_ref)
    if photo is None or photo.owner_id != sender_id:
        raise InvalidArgument("Ephemeral photo not found for sender", code="photo_not_owned")
    if photo.is_deleted or photo.is_expired or photo.is_viewed or clock.utcnow() >= photo.expires_at:
        raise Expired("Ephemeral photo is no longer available")
    caption = _optional_text(raw, 'caption')
    unverified = _screen_caption(caption)
    body = {
        'caption': caption,
        'max_views': photo.max_views,
        'expires_at': photo.expires_at.isoformat(),
    }
    return body, caption, unverified


def _number(raw, key, required=True):
    value = raw.get(key)
    if value is None:
        if required:
            raise InvalidArgument(f"{key} is required")
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float)) or not math.isfinite(value):
        raise InvalidArgument(f"{key} must be a number")
    return float(value)


def _validate_location(sender_id, raw, attachment_ref):
    if not isinstance(raw, dict):
        raise InvalidArgument("Location content must be an object")
    lat = _number(raw, 'lat')
    lng = _number(raw, 'lng')
    accuracy = _number(raw, 'accuracy_m', required=False) or 0.0
    if not -90.0 <= lat <= 90.0:
        raise InvalidArgument("Latitude must be between -90 and 90")
    if not -180.0 <= lng <= 180.0:
        raise InvalidArgument("Longitude must be between -180 and 180")
    if accuracy < 0:
        raise InvalidArgument("Accuracy must not be negative")
    description = _optional_text(raw, 'description')
    if description:
        _check_length(description, current_app.config['MESSAGES_MAX_LOCATION_DESCRIPTION'], "Location description")
    body = {'lat': lat, 'lng': lng, 'accuracy_m': accuracy, 'description': description}
    return body, description, False


def _validate_gift(sender_id, raw, attachment_ref):
    if not isinstance(raw, dict) or not raw.get('gift_id'):
        raise InvalidArgument("gift_id is required")
    note = _optional_text(raw, 'message')
    unverified = _screen_caption(note)
    return {'gift_id': str(raw['gift_id']), 'message': note}, note, unverified


def _validate_system(sender_id, raw, attachment_ref):
    text = _text_of(raw)
    _check_length(text, current_app.config['MESSAGES_MAX_SYSTEM_LENGTH'], "System message")
    return {'text': text}, text, False


VALIDATORS = {
    'text': _validate_text,
    'photo': _validate_photo,
    'photo_ephemeral': _validate_ephemeral,
    'location': _validate_location,
    'gift': _validate_gift,
    'system': _validate_system,
}


# --- helpers -------------------------------------------------------------

def _message_limits():
    config = current_app.config
    return [
        (config['CHAT_MESSAGES_PER_MINUTE'], rate_limit.MINUTE),
        (config['CHAT_MESSAGES_PER_HOUR'], rate_limit.HOUR),
        (config['CHAT_MESSAGES_PER_DAY'], rate_limit.DAY),
    ]


def _enforce_budgets(slots, sender_id, message_type, opening):
    config = current_app.config
    slots.enforce(
        'messages', sender_id, _message_limits(),
        rate_limit.counter_for(lambda: Message.query.filter_by(sender_id=sender_id), Message.created_at),
    )
    if message_type in PHOTO_TYPES:
        slots.enforce(
            'chat_photos', sender_id, [(config['CHAT_PHOTOS_PER_DAY'], rate_limit.DAY)],
            rate_limit.counter_for(
                lambda: Message.query.filter(Message.sender_id == sender_id, Message.type.in_(PHOTO_TYPES)),
                Message.created_at,
            ),
        )
    if opening:
        slots.enforce(
            'conversations', sender_id, [(config['CHAT_CONVERSATIONS_PER_DAY'], rate_limit.DAY)],
            rate_limit.counter_for(lambda: Conversation.query.filter_by(initiated_by=sender_id), Conversation.created_at),
        )


def _invalidate_unread(user_id, conversation_id=None):
    keys = [build_unread_cache_key(user_id)]
    if conversation_id is not None:
        keys.append(build_unread_cache_key(user_id, conversation_id))
    CacheManager.delete(*keys)


def _open_conversation(match, initiator_id, now):
    """Get the match's conversation, creating it on first use"""
    conversation = Conversation.query.filter_by(match_id=match.id).first()
    if conversation is not None:
        return conversation
    conversation = Conversation(
        match_id=match.id,
        user1_id=match.user1_id,
        user2_id=match.user2_id,
        initiated_by=initiator_id,
        last_seq=0,
        created_at=now,
        updated_at=now,
    )
    try:
        with db.session.begin_nested():
            db.session.add(conversation)
        logger.info(f"Opened conversation {conversation.id} for match {match.id}")
        return conversation
    except IntegrityError:
        return Conversation.query.filter_by(match_id=match.id).one()


def _load_conversation(conversation_id, user_id):
    conversation = db.session.get(Conversation, conversation_id)
    if conversation is None:
        raise NotFound("Conversation not found")
    if not conversation.has_participant(user_id):
        raise Forbidden("Not a participant of this conversation")
    return conversation


def _check_match_writable(match, sender_id):
    if not match.is_active:
        raise Forbidden("Match is no longer active", code="match_inactive")
    other = identity.load_user(match.other_participant(sender_id))
    if not identity.is_in_good_standing(other):
        raise Forbidden("Recipient is not available", code="recipient_unavailable")
    if blocks.is_either_blocked_in_storage(match.user1_id, match.user2_id):
        raise Blocked()


# --- operations ----------------------------------------------------------

def send(sender_id, match_id, message_type, raw_content, attachment_ref=None) -> Message:
    """Append a message to the match's conversation"""
    if message_type not in MESSAGE_TYPES:
        raise InvalidArgument("Invalid message type", allowed=list(MESSAGE_TYPES))

    system = sender_id == identity.SYSTEM_PRINCIPAL
    if message_type == 'system' and not system:
        raise Forbidden("System messages cannot be sent by users", code="system_only")

    match = db.session.get(Match, match_id)
    if match is None:
        raise NotFound("Match not found")

    if not system:
        identity.ensure_active(sender_id, "send messages")
        if not match.has_participant(sender_id):
            raise Forbidden("Not a participant of this match")
        _check_match_writable(match, sender_id)
        if blocks.is_either_blocked(match.user1_id, match.user2_id):
            raise Blocked()

    body, searchable, unverified = VALIDATORS[message_type](sender_id, raw_content, attachment_ref)

    with rate_limit.Reservation() as slots:
        if not system:
            opening = Conversation.query.filter_by(match_id=match.id).first() is None
            _enforce_budgets(slots, sender_id, message_type, opening)

        with atomic('send_message', sender_id=sender_id, match_id=match_id, type=message_type):
            now = clock.utcnow()
            conversation = _open_conversation(match, sender_id, now)
            # Serialize appenders on the conversation row
            conversation = (
                Conversation.query.filter_by(id=conversation.id)
                .with_for_update()
                .populate_existing()
                .one()
            )
            created_at = now
            if conversation.last_message_at is not None and conversation.last_message_at > created_at:
                created_at = conversation.last_message_at

            message = Message(
                conversation_id=conversation.id,
                seq=conversation.last_seq + 1,
                sender_id=sender_id,
                type=message_type,
                content=body,
                body=searchable,
                attachment_ref=attachment_ref,
                is_read=False,
                is_unverified=unverified,
                created_at=created_at,
            )
            db.session.add(message)
            db.session.flush()

            conversation.last_seq = message.seq
            conversation.last_message_id = message.id
            conversation.last_message_at = created_at
            conversation.updated_at = now
            # A new message re-opens the conversation for anyone who hid it
            conversation.user1_hidden_at = None
            conversation.user2_hidden_at = None

            events.record(
                events.MESSAGE_APPENDED, [conversation.user1_id, conversation.user2_id],
                conversation_id=str(conversation.id),
                message_id=str(message.id),
                sender=str(sender_id),
                type=message_type,
            )

    for participant in (conversation.user1_id, conversation.user2_id):
        if participant != sender_id:
            _invalidate_unread(participant, conversation.id)
    return message


def post_system_message(match_id, text) -> Message:
    return send(identity.SYSTEM_PRINCIPAL, match_id, 'system', {'text': text})


def mark_read(conversation_id, reader_id) -> int:
    """Mark every message from the other side as read; returns the rows flipped"""
    with atomic('mark_read', conversation_id=conversation_id, reader_id=reader_id):
        identity.ensure_active(reader_id, "mark messages read")
        conversation = _load_conversation(conversation_id, reader_id)
        now = clock.utcnow()
        count = (
            Message.query.filter(
                Message.conversation_id == conversation.id,
                Message.sender_id != reader_id,
                Message.is_read.is_(False),
            )
            .update({'is_read': True, 'read_at': now}, synchronize_session=False)
        )
        if count:
            events.record(
                events.MESSAGES_READ, [conversation.other_participant(reader_id)],
                conversation_id=str(conversation.id), reader=str(reader_id), count=count,
            )

    if count:
        _invalidate_unread(reader_id, conversation.id)
    return count


def _unread_query(user_id):
    return (
        db.session.query(func.count(Message.id))
        .join(Conversation, Conversation.id == Message.conversation_id)
        .filter(
            or_(Conversation.user1_id == user_id, Conversation.user2_id == user_id),
            Message.sender_id != user_id,
            Message.is_read.is_(False),
        )
    )


def unread(user_id, conversation_id=None) -> int:
    """Unread messages addressed to `user_id`, overall or in one conversation"""
    if conversation_id is not None:
        _load_conversation(conversation_id, user_id)

    key = build_unread_cache_key(user_id, conversation_id)
    cached = CacheManager.get(key)
    if cached is not None:
        return int(cached)

    query = _unread_query(user_id)
    if conversation_id is not None:
        query = query.filter(Message.conversation_id == conversation_id)
    count = query.scalar() or 0
    CacheManager.set(key, count, current_app.config['UNREAD_CACHE_TTL'])
    return count


def list_messages(user_id, match_id, before=None, after=None, limit=None, q=None, before_seq=None, after_seq=None):
    """
    Page through a match's messages.

    `before` pages backwards (newest first); `after` catches up forwards
    (oldest first). Without a cursor the newest page is returned. Pass the
    boundary message's seq as `before_seq`/`after_seq` so messages sharing
    its timestamp are not skipped.
    """
    config = current_app.config
    match = db.session.get(Match, match_id)
    if match is None:
        raise NotFound("Match not found")
    if not match.has_participant(user_id):
        raise Forbidden("Not a participant of this match")
    if before is not None and after is not None:
        raise InvalidArgument("Use either before or after, not both")
    if (before_seq is not None and before is None) or (after_seq is not None and after is None):
        raise InvalidArgument("A seq cursor needs its timestamp")

    limit = limit or config['MESSAGES_PAGE_SIZE']
    if limit < 1:
        raise InvalidArgument("limit must be positive")
    limit = min(limit, config['MESSAGES_MAX_PAGE_SIZE'])

    conversation = Conversation.query.filter_by(match_id=match.id).first()
    if conversation is None:
        return []

    query = Message.query.filter(Message.conversation_id == conversation.id)
    if q:
        query = query.filter(func.lower(Message.body).contains(q.lower(), autoescape=True))

    if after is not None:
        if after_seq is not None:
            query = query.filter(or_(
                Message.created_at > after,
                and_(Message.created_at == after, Message.seq > after_seq),
            ))
        else:
            query = query.filter(Message.created_at > after)
        query = query.order_by(Message.created_at.asc(), Message.seq.asc())
    else:
        if before is not None and before_seq is not None:
            query = query.filter(or_(
                Message.created_at < before,
                and_(Message.created_at == before, Message.seq < before_seq),
            ))
        elif before is not None:
            query = query.filter(Message.created_at < before)
        query = query.order_by(Message.created_at.desc(), Message.seq.desc())
    return query.limit(limit).all()


def list_conversations(user_id):
    """Visible conversations of `user_id`, most recently active first"""
    conversations = (
        Conversation.query.filter(or_(
            and_(Conversation.user1_id == user_id, Conversation.user1_hidden_at.is_(None)),
            and_(Conversation.user2_id == user_id, Conversation.user2_hidden_at.is_(None)),
        ))
        .order_by(Conversation.updated_at.desc())
        .all()
    )
    if not conversations:
        return []

    ids = [c.id for c in conversations]
    unread_rows = (
        db.session.query(Message.conversation_id, func.count(Message.id))
        .filter(
            Message.conversation_id.in_(ids),
            Message.sender_id != user_id,
            Message.is_read.is_(False),
        )
        .group_by(Message.conversation_id)
        .all()
    )
    unread_by_id = dict(unread_rows)
    last_ids = [c.last_message_id for c in conversations if c.last_message_id]
    last_by_id = {m.id: m for m in Message.query.filter(Message.id.in_(last_ids)).all()} if last_ids else {}
    match_state = dict(
        db.session.query(Match.id, Match.is_active).filter(Match.id.in_([c.match_id for c in conversations])).all()
    )

    result = []
    for conversation in conversations:
        last = last_by_id.get(conversation.last_message_id)
        data = conversation.to_dict()
        data['other_user_id'] = str(conversation.other_participant(user_id))
        data['match_active'] = bool(match_state.get(conversation.match_id))
        data['last_message'] = last.to_dict() if last else None
        data['unread_count'] = unread_by_id.get(conversation.id, 0)
        result.append(data)
    return result


def hide_conversation(user_id, conversation_id) -> bool:
    """Hide a conversation for one participant.

    Returns True when the log itself was removed because both sides hid it.
    """
    with atomic('hide_conversation', user_id=user_id, conversation_id=conversation_id):
        identity.ensure_active(user_id, "hide conversations")
        conversation = _load_conversation(conversation_id, user_id)
        participants = (conversation.user1_id, conversation.user2_id)
        conversation.set_hidden(user_id, clock.utcnow())
        removed = conversation.user1_hidden_at is not None and conversation.user2_hidden_at is not None
        if removed:
            Message.query.filter_by(conversation_id=conversation.id).delete(synchronize_session=False)
            db.session.delete(conversation)

    # Removal drops the other side's unread messages too
    for participant in (participants if removed else (user_id,)):
        _invalidate_unread(participant, conversation_id)
    if removed:
        logger.info(f"Conversation {conversation_id} removed after both participants hid it")
    return removed
