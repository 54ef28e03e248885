"""Object storage signer.

URLs are signed with HMAC-SHA256 over method, key and expiry so the storage
edge can verify them without calling back into the API.
"""
import calendar
import hashlib
import hmac
import logging
from urllib.parse import quote, urlencode

import requests
from flask import current_app

from utils import clock
from utils.errors import Timeout, Internal

logger = logging.getLogger(__name__)


def _secret():
    secret = current_app.config.get('STORAGE_SIGNING_SECRET')
    if not secret:
        raise Internal("Storage signing secret is not configured")
    return secret.encode()


def _now_ts():
    return calendar.timegm(clock.utcnow().timetuple())


def signature(method: str, key: str, expires: int) -> str:
    message = f"{method.upper()}\n{key}\n{expires}".encode()
    return hmac.new(_secret(), message, hashlib.sha256).hexdigest()


def _signed_url(method, key, expiry_seconds, **extra):
    expires = _now_ts() + int(expiry_seconds)
    params = {'expires': expires, 'signature': signature(method, key, expires)}
    params.update({k: v for k, v in extra.items() if v is not None})
    base = current_app.config['STORAGE_BASE_URL'].rstrip('/')
    return f"{base}/{quote(key)}?{urlencode(params)}"


def sign_upload(key: str, expiry_seconds: int, content_type=None) -> str:
    return _signed_url('PUT', key, expiry_seconds, content_type=content_type)


def sign_download(key: str, expiry_seconds: int) -> str:
    return _signed_url('GET', key, expiry_seconds)


def verify(method: str, key: str, expires: int, provided: str) -> bool:
    if int(expires) < _now_ts():
        return False
    return hmac.compare_digest(signature(method, key, int(expires)), provided)


def delete_object(key: str) -> bool:
    """Remove an object; a missing object counts as deleted"""
    url = _signed_url('DELETE', key, 60)
    try:
        resp = requests.delete(url, timeout=current_app.config['STORAGE_TIMEOUT'])
    except requests.Timeout:
        raise Timeout("Storage did not respond in time", key=key)
    except requests.RequestException as e:
        raise Internal(f"Storage request failed: {e}", key=key)
    if resp.status_code in (200, 202, 204, 404):
        logger.debug(f"Deleted storage object {key}")
        return True
    logger.error(f"Storage delete failed ({resp.status_code}) for {key}: {resp.text}")
    return False
