"""Typed request errors shared by the HTTP routes."""

from fastapi import HTTPException

# Error type -> HTTP status
_STATUS_CODES: dict[str, int] = {
    "bad_request": 400,
    "unauthorized": 401,
    "forbidden": 403,
    "not_found": 404,
    "conflict": 409,
    "rate_limit": 429,
    "offline": 503,
}

_MESSAGES: dict[str, str] = {
    "bad_request": "The request couldn't be processed. Please check your input and try again.",
    "unauthorized": "You need to sign in before continuing.",
    "forbidden": "You don't have access to this resource.",
    "not_found": "The requested resource was not found.",
    "conflict": "This conversation was changed by another request. Please reload and try again.",
    "rate_limit": "You have exceeded your maximum number of requests. Please try again later.",
    "offline": "We're having trouble reaching the server. Please try again shortly.",
}


class ChatError(Exception):
    """An error that aborts a request before any generation starts.

    Codes look like ``"not_found:chat"``: an error type and the surface it
    happened on.
    """

    def __init__(self, code: str, message: str | None = None):
        error_type, _, surface = code.partition(":")
        if error_type not in _STATUS_CODES:
            raise ValueError(f"Unknown error type: {error_type}")
        self.code = code
        self.type = error_type
        self.surface = surface or "api"
        self.message = message or _MESSAGES[error_type]
        super().__init__(f"{code}: {self.message}")

    @property
    def status_code(self) -> int:
        return _STATUS_CODES[self.type]

    def to_http(self) -> HTTPException:
        return HTTPException(
            status_code=self.status_code,
            detail={"code": self.code, "message": self.message},
        )
