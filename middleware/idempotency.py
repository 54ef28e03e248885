import logging
from functools import wraps
from flask import request, g
from services import idempotency
from utils.errors import CoreError
from utils.response import core_error_response

logger = logging.getLogger(__name__)

HEADER = "Idempotency-Key"


def idempotent(operation):
    """
    Replay the stored response when the caller repeats an Idempotency-Key
    Must be used after @clerk_required
    """
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            key = request.headers.get(HEADER)
            if not key:
                return f(*args, **kwargs)

            try:
                stored = idempotency.lookup(g.user_id, key, operation)
            except CoreError as e:
                return core_error_response(e)
            if stored is not None:
                body, status = stored
                return body, status, {"Idempotent-Replayed": "true"}

            result = f(*args, **kwargs)
            body, status = result[0], result[1]
            if 200 <= status < 300:
                idempotency.store(g.user_id, key, operation, body, status)
            return result

        return decorated_function
    return decorator
