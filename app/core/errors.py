from typing import Any

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse


class APIError(Exception):
    def __init__(self, code: str, message: str, status_code: int = 400, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.code = code
        self.message = message
        self.status_code = status_code
        self.details = details or {}


class SourceError(Exception):
    """Raised by source adapters. Adapters never retry, the scheduler decides."""

    def __init__(self, source: str, message: str, status_code: int | None = None):
        super().__init__(message)
        self.source = source
        self.message = message
        self.status_code = status_code


class TransientSourceError(SourceError):
    def __init__(
        self,
        source: str,
        message: str,
        status_code: int | None = None,
        rate_limited: bool = False,
        retry_after: float | None = None,
    ):
        super().__init__(source, message, status_code)
        self.rate_limited = rate_limited
        self.retry_after = retry_after


class PermanentSourceError(SourceError):
    @property
    def not_found(self) -> bool:
        return self.status_code == 404


class SourceParseError(SourceError):
    pass


class ExtractionError(Exception):
    MISSING_IDENTITY = "missing_identity"
    MISSING_TITLE = "missing_title"
    MALFORMED_PAYLOAD = "malformed_payload"

    def __init__(self, reason: str, message: str | None = None):
        super().__init__(message or reason)
        self.reason = reason

    @property
    def missing_identity(self) -> bool:
        return self.reason == self.MISSING_IDENTITY


class PersistenceError(Exception):
    def __init__(self, message: str, identity_key: str | None = None):
        super().__init__(message)
        self.identity_key = identity_key


def _error_payload(code: str, message: str, details: dict[str, Any] | None = None) -> dict[str, Any]:
    return {"error": {"code": code, "message": message, "details": details or {}}}


async def api_error_handler(_: Request, exc: APIError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content=_error_payload(exc.code, exc.message, exc.details))


async def unhandled_error_handler(_: Request, exc: Exception) -> JSONResponse:
    return JSONResponse(
        status_code=500,
        content=_error_payload("internal_error", "Unexpected server error", {"type": exc.__class__.__name__}),
    )


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(APIError, api_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)
