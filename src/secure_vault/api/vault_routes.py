# Vault API - endpoints for the desktop UI
#
# - setup / unlock / lock / change master password
# - CRUD for password entries, TOTP entries and categories
# - password audit, search, generator, settings
#
# Slow calls (bcrypt, PBKDF2, vault writes) run in a worker thread; the
# SessionManager's lock keeps them mutually exclusive.

import asyncio
from typing import Any, Callable, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field

from ..core.config import AppSettings
from ..vault import totp
from ..vault.exceptions import VaultError
from ..vault.generator import DEFAULT_LENGTH, MAX_LENGTH, MIN_LENGTH, generate_password
from ..vault.models import Category, PasswordEntry, TotpEntry
from ..vault.password_audit import SearchCriteria
from ..vault.session import SessionManager, get_session_manager
from .errors import to_http_exception
from .security import verify_session_token

router = APIRouter(prefix="/api/vault", tags=["vault"])


def get_session() -> SessionManager:
    return get_session_manager()


async def run_vault_call(func: Callable[..., Any], *args: Any) -> Any:
    """Run a session call off the event loop, mapping VaultError to HTTP."""
    try:
        return await asyncio.to_thread(func, *args)
    except VaultError as exc:
        raise to_http_exception(exc) from exc


# Request Models
class MasterPasswordRequest(BaseModel):
    master_password: str = Field(..., min_length=1)


class ChangePasswordRequest(BaseModel):
    current_password: str = Field(..., min_length=1)
    new_password: str = Field(..., min_length=1)


class PasswordEntryRequest(BaseModel):
    id: Optional[str] = None
    name: str = Field(..., min_length=1, max_length=1000)
    password: str = Field(..., min_length=1)
    username: str = ""
    url: str = ""
    category: str = ""
    notes: str = ""
    tags: List[str] = []


class TotpEntryRequest(BaseModel):
    id: Optional[str] = None
    name: str = Field(..., min_length=1, max_length=1000)
    secret: str = Field(..., min_length=1)
    issuer: str = ""
    digits: int = 6
    period: int = 30
    category: str = ""
    tags: List[str] = []


class CategoryRequest(BaseModel):
    id: Optional[str] = None
    name: str = Field(..., min_length=1, max_length=200)
    color: str = "#6366f1"
    icon: str = "folder"


class ParseUriRequest(BaseModel):
    uri: str = Field(..., min_length=1)


class SearchRequest(BaseModel):
    name: str = ""
    username: str = ""
    url: str = ""
    category: str = ""
    tags: List[str] = []
    weak_only: bool = False
    old_only: bool = False


class SettingsRequest(BaseModel):
    auto_lock_enabled: bool = True
    auto_lock_timeout: int = Field(1800, ge=0)
    clipboard_timeout: int = Field(30, ge=0)


# ── Session ──────────────────────────────────────────────────────────

@router.get("/status")
async def get_vault_status(
    token: str = Depends(verify_session_token),
    session: SessionManager = Depends(get_session),
):
    """Whether a master password exists and whether the vault is locked."""
    result = await run_vault_call(session.status)
    result["state"] = session.state.value
    return result


@router.post("/setup")
async def setup_vault(
    request: MasterPasswordRequest,
    token: str = Depends(verify_session_token),
    session: SessionManager = Depends(get_session),
):
    """First-time setup. Leaves the vault unlocked."""
    result = await run_vault_call(session.setup, request.master_password)
    return result.to_dict()


@router.post("/unlock")
async def unlock_vault(
    request: MasterPasswordRequest,
    token: str = Depends(verify_session_token),
    session: SessionManager = Depends(get_session),
):
    """
    Unlock with the master password.

    429 with Retry-After while rate limited. A ``data_lost`` flag in the
    response means the vault was unreadable and has been reset.
    """
    result = await run_vault_call(session.verify, request.master_password)
    return result.to_dict()


@router.post("/lock")
async def lock_vault(
    token: str = Depends(verify_session_token),
    session: SessionManager = Depends(get_session),
):
    await run_vault_call(session.lock)
    return {"success": True, "message": "Vault locked"}


@router.post("/change-password")
async def change_master_password(
    request: ChangePasswordRequest,
    token: str = Depends(verify_session_token),
    session: SessionManager = Depends(get_session),
):
    result = await run_vault_call(
        session.change_password, request.current_password, request.new_password
    )
    return {**result.to_dict(), "message": "Master password changed"}


# ── Password entries ─────────────────────────────────────────────────

@router.get("/passwords")
async def list_passwords(
    token: str = Depends(verify_session_token),
    session: SessionManager = Depends(get_session),
):
    entries = await run_vault_call(session.get_password_entries)
    return {"success": True, "entries": [e.to_dict() for e in entries]}


@router.post("/passwords")
async def save_password(
    request: PasswordEntryRequest,
    token: str = Depends(verify_session_token),
    session: SessionManager = Depends(get_session),
):
    """Create (no id / unknown id) or update (existing id) a password entry."""
    entry = PasswordEntry(**request.model_dump())
    saved = await run_vault_call(session.save_password_entry, entry)
    return {"success": True, "entry": saved.to_dict()}


@router.delete("/passwords/{entry_id}")
async def delete_password(
    entry_id: str,
    token: str = Depends(verify_session_token),
    session: SessionManager = Depends(get_session),
):
    deleted = await run_vault_call(session.delete_password_entry, entry_id)
    return {"success": True, "deleted": deleted}


# ── TOTP entries ─────────────────────────────────────────────────────

@router.get("/totp")
async def list_totp(
    token: str = Depends(verify_session_token),
    session: SessionManager = Depends(get_session),
):
    entries = await run_vault_call(session.get_totp_entries)
    return {"success": True, "entries": [e.to_dict() for e in entries]}


@router.post("/totp")
async def save_totp(
    request: TotpEntryRequest,
    token: str = Depends(verify_session_token),
    session: SessionManager = Depends(get_session),
):
    data = request.model_dump()
    data["secret"] = data["secret"].replace(" ", "").upper()
    saved = await run_vault_call(session.save_totp_entry, TotpEntry(**data))
    return {"success": True, "entry": saved.to_dict()}


@router.delete("/totp/{entry_id}")
async def delete_totp(
    entry_id: str,
    token: str = Depends(verify_session_token),
    session: SessionManager = Depends(get_session),
):
    deleted = await run_vault_call(session.delete_totp_entry, entry_id)
    return {"success": True, "deleted": deleted}


@router.get("/totp/{entry_id}/code")
async def get_totp_code(
    entry_id: str,
    token: str = Depends(verify_session_token),
    session: SessionManager = Depends(get_session),
):
    """Current code plus seconds until it rolls over."""
    result = await run_vault_call(session.totp_code, entry_id)
    if result is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="TOTP entry not found")
    return {"success": True, **result}


@router.post("/totp/parse-uri")
async def parse_totp_uri(
    request: ParseUriRequest,
    token: str = Depends(verify_session_token),
):
    """Turn a scanned otpauth:// URI into an (unsaved) TOTP entry."""
    entry = await run_vault_call(totp.parse_otpauth_uri, request.uri)
    return {"success": True, "entry": entry.to_dict()}


# ── Categories ───────────────────────────────────────────────────────

@router.get("/categories")
async def list_categories(
    token: str = Depends(verify_session_token),
    session: SessionManager = Depends(get_session),
):
    categories = await run_vault_call(session.get_categories)
    return {"success": True, "categories": [c.to_dict() for c in categories]}


@router.post("/categories")
async def save_category(
    request: CategoryRequest,
    token: str = Depends(verify_session_token),
    session: SessionManager = Depends(get_session),
):
    saved = await run_vault_call(session.save_category, Category(**request.model_dump()))
    return {"success": True, "category": saved.to_dict()}


@router.delete("/categories/{category_id}")
async def delete_category(
    category_id: str,
    token: str = Depends(verify_session_token),
    session: SessionManager = Depends(get_session),
):
    deleted = await run_vault_call(session.delete_category, category_id)
    return {"success": True, "deleted": deleted}


# ── Audit / search / generator ───────────────────────────────────────

@router.get("/audit")
async def audit_passwords(
    token: str = Depends(verify_session_token),
    session: SessionManager = Depends(get_session),
):
    report = await run_vault_call(session.audit_passwords)
    return {"success": True, **report.to_dict()}


@router.post("/search")
async def search_passwords(
    request: SearchRequest,
    token: str = Depends(verify_session_token),
    session: SessionManager = Depends(get_session),
):
    criteria = SearchCriteria.from_dict(request.model_dump())
    entries = await run_vault_call(session.search_passwords, criteria)
    return {"success": True, "entries": [e.to_dict() for e in entries]}


@router.get("/generate-password")
async def generate(
    length: int = Query(DEFAULT_LENGTH, ge=MIN_LENGTH, le=MAX_LENGTH),
    token: str = Depends(verify_session_token),
):
    return {"success": True, "password": generate_password(length)}


# ── Settings ─────────────────────────────────────────────────────────

@router.get("/settings")
async def get_settings(
    token: str = Depends(verify_session_token),
    session: SessionManager = Depends(get_session),
):
    settings = await run_vault_call(session.get_settings)
    return {"success": True, "settings": settings.to_dict()}


@router.put("/settings")
async def save_settings(
    request: SettingsRequest,
    token: str = Depends(verify_session_token),
    session: SessionManager = Depends(get_session),
):
    """Readable and writable while locked; a new auto-lock timeout applies at once."""
    settings = await run_vault_call(session.save_settings, AppSettings(**request.model_dump()))
    return {"success": True, "settings": settings.to_dict()}
