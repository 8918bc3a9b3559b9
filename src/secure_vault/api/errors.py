"""Map vault exceptions onto HTTP responses."""

from fastapi import HTTPException, status

from ..vault.exceptions import (
    AlreadyInitialized,
    CorruptConfig,
    DecryptionError,
    InvalidPassword,
    NotInitialized,
    OtpauthParseError,
    PersistentCorruption,
    RateLimited,
    UnsupportedFormat,
    ValidationError,
    VaultCorrupted,
    VaultError,
    VaultLocked,
)

STATUS_CODES = (
    (VaultLocked, status.HTTP_403_FORBIDDEN),
    (InvalidPassword, status.HTTP_401_UNAUTHORIZED),
    (RateLimited, status.HTTP_429_TOO_MANY_REQUESTS),
    (AlreadyInitialized, status.HTTP_409_CONFLICT),
    (NotInitialized, status.HTTP_409_CONFLICT),
    (ValidationError, status.HTTP_400_BAD_REQUEST),
    (UnsupportedFormat, status.HTTP_400_BAD_REQUEST),
    (DecryptionError, status.HTTP_400_BAD_REQUEST),
    (OtpauthParseError, status.HTTP_400_BAD_REQUEST),
    (CorruptConfig, status.HTTP_500_INTERNAL_SERVER_ERROR),
    (VaultCorrupted, status.HTTP_500_INTERNAL_SERVER_ERROR),
    (PersistentCorruption, status.HTTP_500_INTERNAL_SERVER_ERROR),
)


def to_http_exception(exc: VaultError) -> HTTPException:
    """Build the HTTPException for a vault error (body carries the error code)."""
    code = next(
        (http_status for exc_type, http_status in STATUS_CODES if isinstance(exc, exc_type)),
        status.HTTP_500_INTERNAL_SERVER_ERROR,
    )
    detail = {"success": False, "error": exc.code, "message": str(exc)}
    headers = None
    if isinstance(exc, RateLimited):
        detail["rate_limited_seconds"] = exc.remaining_seconds
        headers = {"Retry-After": str(exc.remaining_seconds)}
    return HTTPException(status_code=code, detail=detail, headers=headers)
