"""
Validation and sanitization of parsed import candidates.

Applied to every format the same way:
- free text is trimmed and cut to VaultConfig.MAX_FIELD_LENGTH
- URLs without a scheme get ``https://``
- TOTP needs name + secret, passwords need name + password
- accepted records get a fresh id and created/modified = import time

Rejected candidates are reported, never raised: a bad row does not stop
the rest of the batch.
"""

import logging
import re
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Iterable, List, Optional, Union

from ..core.config import VaultConfig
from ..vault.exceptions import ValidationError
from ..vault.models import PasswordEntry, RecordKind, TotpEntry, normalize_tags, utcnow
from .importers import DEFAULT_CATEGORY, ImportCandidate

logger = logging.getLogger(__name__)

_SCHEME_RE = re.compile(r"^[a-z][a-z0-9+.\-]*://", re.IGNORECASE)


def sanitize_string(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()[:VaultConfig.MAX_FIELD_LENGTH]


def sanitize_url(value: Any) -> str:
    url = sanitize_string(value)
    if not url:
        return ""
    if not _SCHEME_RE.match(url):
        return f"https://{url}"
    return url


def _int_field(value: Any, default: int) -> int:
    try:
        return int(value) or default
    except (TypeError, ValueError):
        return default


@dataclass
class ProcessResult:
    valid: List[Union[PasswordEntry, TotpEntry]] = field(default_factory=list)
    invalid: List[ImportCandidate] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)

    def reject(self, candidate: ImportCandidate, reason: str) -> None:
        self.invalid.append(candidate)
        self.errors.append(reason)
        logger.debug("Rejected import candidate (%s): %s", candidate.source, reason)


def _build_totp(raw: dict, now: datetime) -> TotpEntry:
    return TotpEntry(
        id=str(uuid.uuid4()),
        name=sanitize_string(raw.get("name")),
        issuer=sanitize_string(raw.get("issuer")),
        secret=str(raw.get("secret") or "").replace(" ", "").upper(),
        digits=_int_field(raw.get("digits"), 6),
        period=_int_field(raw.get("period"), 30),
        category=sanitize_string(raw.get("category")) or DEFAULT_CATEGORY,
        tags=normalize_tags(raw.get("tags")),
        created=now,
        modified=now,
    )


def _build_password(raw: dict, now: datetime) -> PasswordEntry:
    return PasswordEntry(
        id=str(uuid.uuid4()),
        name=sanitize_string(raw.get("name")),
        username=sanitize_string(raw.get("username")),
        password=str(raw.get("password") or ""),
        url=sanitize_url(raw.get("url")),
        category=sanitize_string(raw.get("category")) or DEFAULT_CATEGORY,
        notes=sanitize_string(raw.get("notes")),
        tags=normalize_tags(raw.get("tags")),
        created=now,
        modified=now,
    )


def process_entries(
    candidates: Iterable[ImportCandidate],
    now: Optional[datetime] = None,
) -> ProcessResult:
    """Split candidates into accepted records and rejections."""
    now = now or utcnow()
    result = ProcessResult()

    for candidate in candidates:
        raw = candidate.fields
        label = sanitize_string(raw.get("name")) or "Unknown"
        if candidate.kind is RecordKind.TOTP:
            if not sanitize_string(raw.get("name")) or not raw.get("secret"):
                result.reject(candidate, f"TOTP entry missing required fields: {label}")
                continue
            record = _build_totp(raw, now)
        else:
            if not sanitize_string(raw.get("name")) or not raw.get("password"):
                result.reject(candidate, f"Password entry missing required fields: {label}")
                continue
            record = _build_password(raw, now)

        try:
            record.validate()
        except ValidationError as exc:
            result.reject(candidate, str(exc))
            continue
        result.valid.append(record)

    return result
