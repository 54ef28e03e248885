import logging
from functools import wraps
from flask import request, current_app, g
import jwt
from jwt import PyJWKClient
from services.identity import resolve_external
from utils.response import error_response

logger = logging.getLogger(__name__)


class AuthMiddleware:
    def __init__(self):
        self._jwks_clients = {}

    def _jwks_client(self):
        url = f"https://{current_app.config['CLERK_FRONTEND_API']}/.well-known/jwks.json"
        client = self._jwks_clients.get(url)
        if client is None:
            client = PyJWKClient(url)
            self._jwks_clients[url] = client
        return client

    def _decode_token(self, token):
        signing_key = self._jwks_client().get_signing_key_from_jwt(token).key
        return jwt.decode(
            token,
            key=signing_key,
            algorithms=["RS256"],
            audience=current_app.config.get('CLERK_JWT_AUDIENCE'),
            options={"verify_exp": True},
            leeway=60  # Allow 60 seconds of clock skew
        )

    def clerk_required(self, f):
        @wraps(f)
        def decorated(*args, **kwargs):
            auth_header = request.headers.get("Authorization", "")

            if not auth_header.startswith("Bearer "):
                logger.warning("Missing or malformed Authorization header")
                return error_response("Unauthorized - No Bearer token", 401)

            token = auth_header.split("Bearer ")[1]

            try:
                payload = self._decode_token(token)
            except jwt.ExpiredSignatureError:
                logger.warning("JWT token expired")
                return error_response("Token expired", 401)
            except jwt.InvalidTokenError as e:
                logger.warning("Invalid JWT token: %s", str(e))
                return error_response("Invalid token", 401)
            except Exception as e:
                logger.error("JWT validation error: %s", str(e))
                return error_response("Authentication failed", 500)

            user = resolve_external(payload.get("sub"))
            if user is None:
                logger.warning("No local user for subject %s", payload.get("sub"))
                return error_response("User not provisioned", 403)

            request.user = payload
            g.user_id = user.id
            logger.debug("JWT validated for user: %s", user.id)

            return f(*args, **kwargs)

        return decorated


# Global instance
auth_middleware = AuthMiddleware()


def clerk_required(f):
    return auth_middleware.clerk_required(f)


def current_user_id():
    return g.user_id
