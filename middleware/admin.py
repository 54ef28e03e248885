import logging
from functools import wraps
from flask import g
from services.identity import capabilities
from utils.response import error_response

logger = logging.getLogger(__name__)


def admin_required(capability):
    """
    Decorator to require an admin capability for accessing routes
    Must be used after @clerk_required
    """
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            user_id = getattr(g, 'user_id', None)
            if user_id is None:
                return error_response("Authentication required", 401)

            if capability not in capabilities(user_id):
                logger.warning(f"User {user_id} lacks {capability}")
                return error_response(
                    "Admin capability required",
                    403,
                    {'kind': 'forbidden', 'code': 'missing_capability', 'capability': capability}
                )

            return f(*args, **kwargs)

        return decorated_function
    return decorator
