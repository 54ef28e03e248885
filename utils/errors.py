from typing import Any, Dict, Optional


class CoreError(Exception):
    """Base class for caller-visible failures raised by the services layer"""

    kind = "internal"
    status_code = 500
    default_message = "Internal error"

    def __init__(self, message: Optional[str] = None, code: Optional[str] = None, **details: Any):
        self.message = message or self.default_message
        self.code = code or self.kind
        self.details = details
        super().__init__(self.message)

    def to_details(self) -> Dict[str, Any]:
        data = {"kind": self.kind, "code": self.code}
        data.update({k: v for k, v in self.details.items() if v is not None})
        return data


class InvalidArgument(CoreError):
    kind = "invalid_argument"
    status_code = 400
    default_message = "Invalid argument"


class NotFound(CoreError):
    kind = "not_found"
    status_code = 404
    default_message = "Not found"


class Forbidden(CoreError):
    kind = "forbidden"
    status_code = 403
    default_message = "Forbidden"


class Blocked(Forbidden):
    default_message = "Interaction blocked between these users"

    def __init__(self, message: Optional[str] = None, **details: Any):
        super().__init__(message, code="blocked", **details)


class Conflict(CoreError):
    kind = "conflict"
    status_code = 409
    default_message = "Conflict"


class AlreadySwiped(Conflict):
    default_message = "Already swiped this user"

    def __init__(self, message: Optional[str] = None, **details: Any):
        super().__init__(message, code="already_swiped", **details)


class RateLimited(CoreError):
    kind = "rate_limited"
    status_code = 429
    default_message = "Rate limit exceeded"

    def __init__(self, message: Optional[str] = None, retry_after: Optional[int] = None, **details: Any):
        self.retry_after = retry_after
        super().__init__(message, retry_after=retry_after, **details)


class Expired(CoreError):
    kind = "expired"
    status_code = 410
    default_message = "Resource expired"


class InvalidContent(CoreError):
    kind = "invalid_content"
    status_code = 422
    default_message = "Content rejected"


class Timeout(CoreError):
    kind = "timeout"
    status_code = 504
    default_message = "Downstream timed out"


class Internal(CoreError):
    pass
