# tendermatch/errors.py
"""
Error taxonomy shared by the API layer and the background workers.

User-correctable problems (ValidationError and friends) are raised at the
boundary and mapped to 4xx responses. ExternalServiceError subclasses are
captured into persisted state by background jobs instead of propagating.
"""
import asyncio
from typing import Optional

import httpx

RETRY_LATER = "later"
RETRY_NOW = "now"


class TenderMatchError(Exception):
    status_code = 500
    code = "InternalError"

    def __init__(self, message: str = "", *, detail: Optional[str] = None):
        super().__init__(message or self.code)
        self.message = message or self.code
        self.detail = detail


class ValidationError(TenderMatchError):
    status_code = 400
    code = "ValidationError"


class UnsupportedType(ValidationError):
    status_code = 415
    code = "UnsupportedType"


class TooLarge(ValidationError):
    status_code = 413
    code = "TooLarge"


class InvalidState(ValidationError):
    status_code = 409
    code = "InvalidState"


class Unauthenticated(TenderMatchError):
    status_code = 401
    code = "Unauthenticated"


class PermissionDenied(TenderMatchError):
    status_code = 403
    code = "PermissionDenied"


class NotFoundError(TenderMatchError):
    status_code = 404
    code = "NotFound"


class ConflictError(TenderMatchError):
    """Duplicate on a natural key. Callers treat it as a skip."""
    status_code = 409
    code = "Conflict"


class InternalError(TenderMatchError):
    status_code = 500
    code = "InternalError"


class ExternalServiceError(TenderMatchError):
    status_code = 502
    code = "Unknown"
    retry_hint = RETRY_NOW

    def __init__(self, message: str = "", *, detail: Optional[str] = None, status: Optional[int] = None):
        super().__init__(message, detail=detail)
        self.status = status

    def record(self) -> str:
        """Text stored verbatim in a document's error_message."""
        return f"{self.code}: {self.message}"


class TransientError(ExternalServiceError):
    code = "Transient"


class RateLimited(ExternalServiceError):
    status_code = 503
    code = "RateLimited"
    retry_hint = RETRY_LATER


class QuotaExceeded(ExternalServiceError):
    status_code = 503
    code = "QuotaExceeded"
    retry_hint = RETRY_LATER


class ServiceTimeout(ExternalServiceError):
    status_code = 504
    code = "Timeout"


class MalformedResponse(ExternalServiceError):
    code = "MalformedResponse"


class ExternalProcessingError(ExternalServiceError):
    code = "ExternalProcessingError"


class UnknownServiceError(ExternalServiceError):
    code = "Unknown"


_BY_CODE = {
    cls.code: cls
    for cls in (TransientError, RateLimited, QuotaExceeded, ServiceTimeout,
                MalformedResponse, ExternalProcessingError, UnknownServiceError)
}


def retry_hint_for(error_message: Optional[str]) -> Optional[str]:
    """Recover the retry hint from a persisted "<Code>: <detail>" message."""
    if not error_message:
        return None
    code = error_message.split(":", 1)[0].strip()
    cls = _BY_CODE.get(code)
    return cls.retry_hint if cls is not None else RETRY_NOW


def classify_response(resp: httpx.Response, service: str) -> ExternalServiceError:
    """Map a non-2xx response from an external service onto the taxonomy."""
    try:
        body = resp.text
    except Exception:
        body = ""
    snippet = (body or "")[:300]
    message = f"{service} returned HTTP {resp.status_code}"
    if resp.status_code == 429:
        return RateLimited(message, detail=snippet, status=resp.status_code)
    if resp.status_code == 402 or "quota" in snippet.lower():
        return QuotaExceeded(message, detail=snippet, status=resp.status_code)
    if resp.status_code >= 500 or resp.status_code == 408:
        return TransientError(message, detail=snippet, status=resp.status_code)
    return UnknownServiceError(message, detail=snippet, status=resp.status_code)


def classify_exception(exc: BaseException, service: str) -> ExternalServiceError:
    if isinstance(exc, ExternalServiceError):
        return exc
    if isinstance(exc, httpx.HTTPStatusError):
        return classify_response(exc.response, service)
    if isinstance(exc, (httpx.TimeoutException, asyncio.TimeoutError, TimeoutError)):
        return TransientError(f"{service} timed out")
    if isinstance(exc, httpx.TransportError):
        return TransientError(f"{service} unreachable: {exc!r}")
    return UnknownServiceError(f"{service} call failed: {exc!r}")
