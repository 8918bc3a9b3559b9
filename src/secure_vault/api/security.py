# API Security - per-process session token
#
# A random token is generated when the backend starts. Every vault
# endpoint requires it in the X-Session-Token header, so other local
# processes cannot talk to the unlocked vault without it.

import secrets
from typing import Optional

from fastapi import Header, HTTPException, status

_SESSION_TOKEN: Optional[str] = None


def initialize_session_token() -> str:
    """Generate the 256-bit token for this backend instance."""
    global _SESSION_TOKEN
    _SESSION_TOKEN = secrets.token_urlsafe(32)
    return _SESSION_TOKEN


def get_session_token() -> str:
    if _SESSION_TOKEN is None:
        raise RuntimeError("Session token not initialized. Call initialize_session_token() first.")
    return _SESSION_TOKEN


def token_matches(candidate: Optional[str]) -> bool:
    """Constant-time comparison against the current token."""
    if _SESSION_TOKEN is None or candidate is None:
        return False
    return secrets.compare_digest(candidate, _SESSION_TOKEN)


async def verify_session_token(x_session_token: str = Header(None)) -> str:
    """
    FastAPI dependency guarding the vault routes.

    Raises:
        HTTPException: 503 before startup, 401 for a missing or wrong token
    """
    if _SESSION_TOKEN is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Session token not initialized",
        )
    if x_session_token is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing X-Session-Token header",
        )
    if not token_matches(x_session_token):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid session token",
        )
    return x_session_token
