"""EphemeralPhoto: time- and view-bounded photos reached through an access key.

A view is granted by one conditional UPDATE that only succeeds while the
photo is still readable, so concurrent viewers can never push view_count past
max_views: exactly min(requests, max_views) of them win.
"""
import logging
import secrets
import uuid
from dataclasses import dataclass
from datetime import timedelta

from flask import current_app
from sqlalchemy import func

from models import db, EphemeralPhoto, PhotoView
from services import identity, blocks, events, rate_limit
from services.tx import atomic
from utils import clock, storage
from utils.cache import CacheManager, build_access_key_cache_key
from utils.errors import InvalidArgument, NotFound, Forbidden, Blocked, Expired, Internal, CoreError

logger = logging.getLogger(__name__)

MIN_ACCESS_KEY_BYTES = 32


@dataclass
class ViewResult:
    url: str
    expires_in: int
    photo: EphemeralPhoto

    def to_dict(self):
        return {
            'url': self.url,
            'expires_in': self.expires_in,
            'photo_id': str(self.photo.id),
            'view_count': self.photo.view_count,
            'max_views': self.photo.max_views,
            'is_viewed': self.photo.is_viewed,
        }


def _seconds(duration):
    if duration is None:
        return current_app.config['EPHEMERAL_DEFAULT_DURATION']
    if isinstance(duration, timedelta):
        return int(duration.total_seconds())
    try:
        return int(duration)
    except (TypeError, ValueError):
        raise InvalidArgument("duration must be a number of seconds")


def _new_access_key():
    length = max(MIN_ACCESS_KEY_BYTES, current_app.config['EPHEMERAL_ACCESS_KEY_LENGTH'])
    return secrets.token_urlsafe(length)


def _mark_expired(photo, now):
    if not photo.is_expired:
        photo.is_expired = True
        photo.expired_at = now
        photo.updated_at = now
    if photo.view_count >= photo.max_views:
        photo.is_viewed = True


def _forget_key(access_key):
    CacheManager.delete(build_access_key_cache_key(access_key))


def prepare_upload(owner_id, content_type=None):
    """Reserve an object key and hand back a signed PUT URL for it"""
    config = current_app.config
    identity.ensure_active(owner_id, "upload photos")
    if content_type is not None and content_type not in config['EPHEMERAL_ALLOWED_TYPES']:
        raise InvalidArgument("Unsupported content type", allowed=config['EPHEMERAL_ALLOWED_TYPES'])
    file_key = f"ephemeral/{owner_id}/{uuid.uuid4().hex}"
    expires_in = config['EPHEMERAL_VIEW_DURATION']
    return {
        'file_key': file_key,
        'upload_url': storage.sign_upload(file_key, expires_in, content_type),
        'expires_in': expires_in,
    }


def upload(owner_id, file_key, thumbnail_key=None, max_views=1, duration=None,
           content_type=None, file_size=None) -> EphemeralPhoto:
    config = current_app.config
    identity.ensure_active(owner_id, "upload photos")

    if not file_key:
        raise InvalidArgument("file_key is required")
    try:
        max_views = int(max_views)
    except (TypeError, ValueError):
        raise InvalidArgument("max_views must be an integer")
    if max_views < 1:
        raise InvalidArgument("max_views must be at least 1")

    seconds = _seconds(duration)
    if seconds < 1 or seconds > config['EPHEMERAL_MAX_DURATION']:
        raise InvalidArgument(
            f"duration must be between 1 and {config['EPHEMERAL_MAX_DURATION']} seconds",
            max_duration=config['EPHEMERAL_MAX_DURATION'],
        )
    if content_type is not None and content_type not in config['EPHEMERAL_ALLOWED_TYPES']:
        raise InvalidArgument("Unsupported content type", allowed=config['EPHEMERAL_ALLOWED_TYPES'])
    if file_size is not None and (file_size <= 0 or file_size > config['EPHEMERAL_MAX_FILE_SIZE']):
        raise InvalidArgument("File too large", max_file_size=config['EPHEMERAL_MAX_FILE_SIZE'])

    with rate_limit.Reservation() as slots:
        slots.enforce(
            'ephemeral_uploads', owner_id, [(config['EPHEMERAL_UPLOADS_PER_HOUR'], rate_limit.HOUR)],
            rate_limit.counter_for(lambda: EphemeralPhoto.query.filter_by(owner_id=owner_id), EphemeralPhoto.created_at),
        )

        with atomic('ephemeral_upload', owner_id=owner_id):
            now = clock.utcnow()
            photo = EphemeralPhoto(
                owner_id=owner_id,
                file_key=file_key,
                thumbnail_key=thumbnail_key,
                content_type=content_type,
                file_size=file_size,
                access_key=_new_access_key(),
                expires_at=now + timedelta(seconds=seconds),
                max_views=max_views,
                view_count=0,
                created_at=now,
                updated_at=now,
            )
            db.session.add(photo)

    logger.info(f"Ephemeral photo {photo.id} uploaded by {owner_id}, expires {photo.expires_at}")
    return photo


def _find_by_key(access_key) -> EphemeralPhoto:
    if not access_key:
        raise NotFound("Photo not found")
    cache_key = build_access_key_cache_key(access_key)
    cached_id = CacheManager.get(cache_key)
    photo = None
    if cached_id is not None:
        photo = EphemeralPhoto.query.filter_by(id=cached_id, access_key=access_key).first()
    if photo is None:
        photo = EphemeralPhoto.query.filter_by(access_key=access_key).first()
        if photo is None:
            raise NotFound("Photo not found")
        CacheManager.set(cache_key, str(photo.id), current_app.config['EPHEMERAL_KEY_CACHE_TTL'])
    return photo


def _expire_and_refuse(photo_id, access_key):
    with atomic('ephemeral_expire', photo_id=photo_id):
        photo = EphemeralPhoto.query.filter_by(id=photo_id).with_for_update().one()
        _mark_expired(photo, clock.utcnow())
    _forget_key(access_key)
    raise Expired("Photo has expired")


def view(access_key, viewer_id, ip=None, user_agent=None) -> ViewResult:
    """Consume one view and return a short-lived signed URL"""
    config = current_app.config
    photo = _find_by_key(access_key)
    photo_id = photo.id

    if not photo.is_readable(clock.utcnow()):
        _expire_and_refuse(photo_id, access_key)
    slots = rate_limit.Reservation()
    if viewer_id is not None:
        if viewer_id == photo.owner_id:
            raise Forbidden("Owners cannot view their photo through the access key", code="owner_view")
        identity.ensure_active(viewer_id, "view photos")
        if blocks.is_either_blocked(photo.owner_id, viewer_id):
            raise Blocked()
        slots.enforce(
            'ephemeral_views', viewer_id, [(config['EPHEMERAL_VIEWS_PER_HOUR'], rate_limit.HOUR)],
            rate_limit.counter_for(lambda: PhotoView.query.filter_by(viewer_id=viewer_id), PhotoView.viewed_at),
        )

    with slots:
        granted = False
        with atomic('ephemeral_view', photo_id=photo_id, viewer_id=viewer_id):
            now = clock.utcnow()
            granted = EphemeralPhoto.query.filter(
                EphemeralPhoto.id == photo_id,
                EphemeralPhoto.view_count < EphemeralPhoto.max_views,
                EphemeralPhoto.is_expired.is_(False),
                EphemeralPhoto.is_deleted.is_(False),
                EphemeralPhoto.expires_at > now,
            ).update({
                EphemeralPhoto.view_count: EphemeralPhoto.view_count + 1,
                EphemeralPhoto.viewed_at: func.coalesce(EphemeralPhoto.viewed_at, now),
                EphemeralPhoto.updated_at: now,
            }, synchronize_session=False) == 1

            if granted:
                photo = EphemeralPhoto.query.filter_by(id=photo_id).populate_existing().one()
                if photo.view_count >= photo.max_views:
                    _mark_expired(photo, now)
                db.session.add(PhotoView(
                    photo_id=photo_id,
                    viewer_id=viewer_id,
                    ip=ip,
                    user_agent=(user_agent or '')[:500] or None,
                    viewed_at=now,
                ))
                events.record(
                    events.EPHEMERAL_PHOTO_VIEWED, [photo.owner_id],
                    photo_id=str(photo_id), viewer_id=str(viewer_id) if viewer_id else None,
                    view_count=photo.view_count, max_views=photo.max_views,
                )

        if not granted:
            # Lost the race for the last view, or expiry landed in between
            _expire_and_refuse(photo_id, access_key)

    if photo.is_expired:
        _forget_key(access_key)
    ttl = config['EPHEMERAL_VIEW_DURATION']
    return ViewResult(url=storage.sign_download(photo.file_key, ttl), expires_in=ttl, photo=photo)


def _owned(owner_id, photo_id, for_update=False) -> EphemeralPhoto:
    query = EphemeralPhoto.query.filter_by(id=photo_id)
    if for_update:
        query = query.with_for_update()
    photo = query.first()
    if photo is None:
        raise NotFound("Photo not found")
    if photo.owner_id != owner_id:
        raise Forbidden("Not the owner of this photo")
    return photo


def expire(owner_id, photo_id) -> EphemeralPhoto:
    with atomic('ephemeral_expire', owner_id=owner_id, photo_id=photo_id):
        identity.ensure_active(owner_id, "expire photos")
        photo = _owned(owner_id, photo_id, for_update=True)
        _mark_expired(photo, clock.utcnow())
    _forget_key(photo.access_key)
    return photo


def delete(owner_id, photo_id) -> EphemeralPhoto:
    """Remove the stored objects now and keep the record as deleted"""
    identity.ensure_active(owner_id, "delete photos")
    photo = _owned(owner_id, photo_id)
    if photo.is_deleted:
        return photo
    for key in (photo.file_key, photo.thumbnail_key):
        if key and not storage.delete_object(key):
            raise Internal("Could not delete stored photo", key=key)

    with atomic('ephemeral_delete', owner_id=owner_id, photo_id=photo_id):
        photo = _owned(owner_id, photo_id, for_update=True)
        now = clock.utcnow()
        _mark_expired(photo, now)
        photo.is_deleted = True
        photo.deleted_at = now
    _forget_key(photo.access_key)
    logger.info(f"Ephemeral photo {photo_id} deleted by owner")
    return photo


def get_status(owner_id, photo_id):
    photo = _owned(owner_id, photo_id)
    now = clock.utcnow()
    data = photo.to_dict()
    data['is_active'] = photo.is_readable(now)
    data['views_remaining'] = max(0, photo.max_views - photo.view_count)
    data['seconds_remaining'] = max(0, int((photo.expires_at - now).total_seconds())) if data['is_active'] else 0
    return data


def list_photos(owner_id, active_only=False, limit=50):
    query = EphemeralPhoto.query.filter_by(owner_id=owner_id)
    if active_only:
        now = clock.utcnow()
        query = query.filter(
            EphemeralPhoto.is_expired.is_(False),
            EphemeralPhoto.is_deleted.is_(False),
            EphemeralPhoto.expires_at > now,
        )
    return query.order_by(EphemeralPhoto.created_at.desc()).limit(limit).all()


def view_stats(owner_id, photo_id):
    photo = _owned(owner_id, photo_id)
    total, unique_viewers, average = (
        db.session.query(
            func.count(PhotoView.id),
            func.count(func.distinct(PhotoView.viewer_id)),
            func.avg(PhotoView.duration_ms),
        )
        .filter(PhotoView.photo_id == photo.id)
        .one()
    )
    return {
        'photo_id': str(photo.id),
        'total_views': total,
        'unique_viewers': unique_viewers,
        'average_duration_ms': float(average) if average is not None else None,
        'max_views': photo.max_views,
    }


def record_view_duration(access_key, viewer_id, duration_ms) -> PhotoView:
    """Attach the client-reported display time to the viewer's latest view"""
    try:
        duration_ms = int(duration_ms)
    except (TypeError, ValueError):
        raise InvalidArgument("duration_ms must be an integer")
    if duration_ms < 0:
        raise InvalidArgument("duration_ms must not be negative")

    identity.ensure_active(viewer_id, "report view durations")
    photo = _find_by_key(access_key)
    with atomic('ephemeral_view_duration', photo_id=photo.id, viewer_id=viewer_id):
        view_row = (
            PhotoView.query.filter_by(photo_id=photo.id, viewer_id=viewer_id)
            .filter(PhotoView.duration_ms.is_(None))
            .order_by(PhotoView.viewed_at.desc())
            .with_for_update()
            .first()
        )
        if view_row is None:
            raise NotFound("No view to update")
        view_row.duration_ms = duration_ms
    return view_row


# --- sweepers ------------------------------------------------------------

def sweep_expired(batch_size=None) -> int:
    """Mark photos past expires_at as expired; returns how many moved"""
    batch_size = batch_size or current_app.config['EPHEMERAL_JOB_BATCH_SIZE']
    with atomic('ephemeral_sweep_expired'):
        now = clock.utcnow()
        photos = (
            EphemeralPhoto.query.filter(
                EphemeralPhoto.is_expired.is_(False),
                EphemeralPhoto.expires_at < now,
            )
            .order_by(EphemeralPhoto.expires_at.asc())
            .limit(batch_size)
            .with_for_update(skip_locked=True)
            .all()
        )
        for photo in photos:
            _mark_expired(photo, now)
    for photo in photos:
        _forget_key(photo.access_key)
    if photos:
        logger.info(f"Expired {len(photos)} ephemeral photos")
    return len(photos)


class PurgeIncomplete(CoreError):
    default_message = "Some photos could not be purged"


def purge_retained(batch_size=None) -> int:
    """Delete storage objects of photos expired longer than the retention period.

    Successful entries are committed even when others fail; failures are then
    raised so the sweeper backs off and retries them.
    """
    config = current_app.config
    batch_size = batch_size or config['EPHEMERAL_JOB_BATCH_SIZE']
    cutoff = clock.utcnow() - timedelta(seconds=config['EPHEMERAL_RETENTION_PERIOD'])
    candidates = (
        EphemeralPhoto.query.filter(
            EphemeralPhoto.is_expired.is_(True),
            EphemeralPhoto.is_deleted.is_(False),
            EphemeralPhoto.expired_at < cutoff,
        )
        .order_by(EphemeralPhoto.expired_at.asc())
        .limit(batch_size)
        .all()
    )

    purged, failed = [], []
    for photo in candidates:
        try:
            ok = all(storage.delete_object(key) for key in (photo.file_key, photo.thumbnail_key) if key)
        except CoreError as e:
            logger.warning(f"Purge of photo {photo.id} failed: {e.message}")
            ok = False
        (purged if ok else failed).append(photo.id)

    if purged:
        with atomic('ephemeral_purge', count=len(purged)):
            now = clock.utcnow()
            EphemeralPhoto.query.filter(EphemeralPhoto.id.in_(purged)).update(
                {EphemeralPhoto.is_deleted: True, EphemeralPhoto.deleted_at: now, EphemeralPhoto.updated_at: now},
                synchronize_session=False,
            )
        logger.info(f"Purged {len(purged)} ephemeral photos past retention")
    if failed:
        raise PurgeIncomplete(failed=[str(pid) for pid in failed])
    return len(purged)
