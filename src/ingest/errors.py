"""
Error taxonomy shared by every component.

ProviderError is produced exactly once, at the HTTP boundary (ingest.http),
and pattern-matched on `kind` everywhere else. IngestError and its
subclasses are what callers (HTTP routes, CLI, scheduler) see: a coarse
FailureCode plus a human-readable message that never contains tokens.
"""
from enum import Enum
from typing import Any, Dict, Optional


# ── Provider boundary ─────────────────────────────────────────────────────────

class ErrorKind(str, Enum):
    BAD_REQUEST = "bad_request"
    UNAUTHORIZED = "unauthorized"
    FORBIDDEN = "forbidden"
    NOT_FOUND = "not_found"
    CONFLICT = "conflict"
    RATE_LIMITED = "rate_limited"
    SERVER_ERROR = "server_error"
    TIMEOUT = "timeout"
    NETWORK = "network"
    INVALID_RESPONSE = "invalid_response"


_STATUS_KINDS = {
    400: ErrorKind.BAD_REQUEST,
    401: ErrorKind.UNAUTHORIZED,
    403: ErrorKind.FORBIDDEN,
    404: ErrorKind.NOT_FOUND,
    409: ErrorKind.CONFLICT,
    429: ErrorKind.RATE_LIMITED,
}


def kind_for_status(status_code: int) -> ErrorKind:
    """Map an HTTP status code to an ErrorKind."""
    if status_code >= 500:
        return ErrorKind.SERVER_ERROR
    return _STATUS_KINDS.get(status_code, ErrorKind.BAD_REQUEST)


class ProviderError(Exception):
    """A failed call to a provider endpoint, normalised at the HTTP boundary."""

    def __init__(
        self,
        kind: ErrorKind,
        message: str,
        *,
        http_status: Optional[int] = None,
        provider_message: Optional[str] = None,
        provider: Optional[str] = None,
    ):
        super().__init__(message)
        self.kind = kind
        self.http_status = http_status
        self.provider_message = provider_message
        self.provider = provider

    @property
    def code(self) -> str:
        """Short machine-parseable code, e.g. HTTP_403 or TIMEOUT."""
        if self.http_status is not None:
            return f"HTTP_{self.http_status}"
        return self.kind.name

    @property
    def is_transient(self) -> bool:
        return self.kind in (
            ErrorKind.SERVER_ERROR,
            ErrorKind.TIMEOUT,
            ErrorKind.NETWORK,
            ErrorKind.RATE_LIMITED,
        )


# ── Caller-facing taxonomy ────────────────────────────────────────────────────

class CallerCategory(str, Enum):
    UNAUTHENTICATED = "unauthenticated"
    PERMISSION_DENIED = "permission-denied"
    ALREADY_EXISTS = "already-exists"
    INVALID_ARGUMENT = "invalid-argument"
    INTERNAL = "internal"

    @property
    def http_status(self) -> int:
        return _CATEGORY_STATUS[self]


_CATEGORY_STATUS = {
    CallerCategory.INVALID_ARGUMENT: 400,
    CallerCategory.UNAUTHENTICATED: 401,
    CallerCategory.PERMISSION_DENIED: 403,
    CallerCategory.ALREADY_EXISTS: 409,
    CallerCategory.INTERNAL: 500,
}


class FailureCode(str, Enum):
    NO_TOKEN_FOUND = "NO_TOKEN_FOUND"
    MAX_RETRY_REACHED = "MAX_RETRY_REACHED"
    TOKEN_REFRESH_FAILED = "TOKEN_REFRESH_FAILED"
    MISSING_PERMISSIONS = "MISSING_PERMISSIONS"
    COOLDOWN_ACTIVE = "COOLDOWN_ACTIVE"
    INVALID_RANGE = "INVALID_RANGE"
    DUPLICATE_BACKFILL = "DUPLICATE_BACKFILL"
    PROVIDER_ERROR = "PROVIDER_ERROR"

    @property
    def category(self) -> CallerCategory:
        return _CODE_CATEGORY[self]


_CODE_CATEGORY = {
    FailureCode.NO_TOKEN_FOUND: CallerCategory.UNAUTHENTICATED,
    FailureCode.TOKEN_REFRESH_FAILED: CallerCategory.UNAUTHENTICATED,
    FailureCode.MISSING_PERMISSIONS: CallerCategory.PERMISSION_DENIED,
    FailureCode.COOLDOWN_ACTIVE: CallerCategory.PERMISSION_DENIED,
    FailureCode.INVALID_RANGE: CallerCategory.INVALID_ARGUMENT,
    FailureCode.DUPLICATE_BACKFILL: CallerCategory.ALREADY_EXISTS,
    FailureCode.PROVIDER_ERROR: CallerCategory.INTERNAL,
    FailureCode.MAX_RETRY_REACHED: CallerCategory.INTERNAL,
}


class IngestError(Exception):
    """Base class for typed failures surfaced to callers."""

    def __init__(
        self,
        code: FailureCode,
        message: str,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.code = code
        self.message = message
        self.details = details or {}

    @property
    def category(self) -> CallerCategory:
        return self.code.category

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code.value,
            "category": self.category.value,
            "message": self.message,
            "details": self.details,
        }


class NoTokenFoundError(IngestError):
    """Raised when a user has no stored credential for a provider."""

    def __init__(self, message: str = "No tokens found", details: Optional[Dict[str, Any]] = None):
        super().__init__(FailureCode.NO_TOKEN_FOUND, message, details)


class TokenRefreshError(IngestError):
    """
    Raised when a credential could not be refreshed.

    `credential` is the last-known-good stored credential, so a caller that
    has other candidates can move on and one that doesn't can report it.
    """

    def __init__(self, message: str, credential=None, cause: Optional[Exception] = None):
        super().__init__(FailureCode.TOKEN_REFRESH_FAILED, message)
        self.credential = credential
        self.cause = cause


class BackfillError(IngestError):
    """Raised by the backfill orchestrator; mapped to HTTP/RPC status by category."""
