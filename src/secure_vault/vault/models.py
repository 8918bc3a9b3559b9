"""
Vault Data Models

PasswordEntry and TotpEntry form the VaultRecord union. The kind is a
class-level discriminant fixed at construction; stored documents carry
it as ``"type"`` so a record is never re-classified from its shape.
"""

import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, ClassVar, Dict, Iterable, List, Optional, Union

from .exceptions import CorruptConfig, ValidationError

BASE32_RE = re.compile(r"^[A-Z2-7]+=*$", re.IGNORECASE)

SUPPORTED_DIGITS = (6, 8)
SUPPORTED_PERIODS = (30, 60)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def format_timestamp(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse an ISO-8601 string (``Z`` suffix allowed); None if unusable."""
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if not isinstance(value, str) or not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def normalize_tags(tags: Any) -> List[str]:
    """Tags as an ordered, de-duplicated list of non-empty strings."""
    if tags is None:
        return []
    if isinstance(tags, str):
        tags = re.split(r"[;,]", tags)
    result: List[str] = []
    for tag in tags:
        text = str(tag).strip()
        if text and text not in result:
            result.append(text)
    return result


class RecordKind(str, Enum):
    PASSWORD = "password"
    TOTP = "totp"


class Collection(str, Enum):
    """Top-level collections of the vault document."""
    PASSWORDS = "password_entries"
    TOTP = "totp_entries"
    CATEGORIES = "categories"


@dataclass
class PasswordEntry:
    """A stored website/application credential."""
    name: str
    password: str
    username: str = ""
    url: str = ""
    category: str = ""
    notes: str = ""
    tags: List[str] = field(default_factory=list)
    id: Optional[str] = None
    created: Optional[datetime] = None
    modified: Optional[datetime] = None

    kind: ClassVar[RecordKind] = RecordKind.PASSWORD

    def validate(self) -> None:
        if not self.name or not self.name.strip():
            raise ValidationError("Password entry requires a name")
        if not self.password:
            raise ValidationError(f"Password entry requires a password: {self.name}")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.kind.value,
            "name": self.name,
            "username": self.username,
            "password": self.password,
            "url": self.url,
            "category": self.category,
            "notes": self.notes,
            "tags": list(self.tags),
            "created": format_timestamp(self.created),
            "modified": format_timestamp(self.modified),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PasswordEntry":
        return cls(
            id=data.get("id") or None,
            name=str(data.get("name") or ""),
            username=str(data.get("username") or ""),
            password=str(data.get("password") or ""),
            url=str(data.get("url") or ""),
            category=str(data.get("category") or ""),
            notes=str(data.get("notes") or ""),
            tags=normalize_tags(data.get("tags")),
            created=parse_timestamp(data.get("created") or data.get("createdAt")),
            modified=parse_timestamp(data.get("modified") or data.get("updatedAt")),
        )


@dataclass
class TotpEntry:
    """A TOTP account: base32 shared secret plus code parameters."""
    name: str
    secret: str
    issuer: str = ""
    digits: int = 6
    period: int = 30
    category: str = ""
    tags: List[str] = field(default_factory=list)
    id: Optional[str] = None
    created: Optional[datetime] = None
    modified: Optional[datetime] = None

    kind: ClassVar[RecordKind] = RecordKind.TOTP

    def validate(self) -> None:
        if not self.name or not self.name.strip():
            raise ValidationError("TOTP entry requires a name")
        if not self.secret:
            raise ValidationError(f"TOTP entry requires a secret: {self.name}")
        if not BASE32_RE.match(self.secret):
            raise ValidationError(f"TOTP secret is not valid Base32: {self.name}")
        if self.digits not in SUPPORTED_DIGITS:
            raise ValidationError(f"Unsupported TOTP digits {self.digits}: {self.name}")
        if self.period not in SUPPORTED_PERIODS:
            raise ValidationError(f"Unsupported TOTP period {self.period}: {self.name}")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.kind.value,
            "name": self.name,
            "issuer": self.issuer,
            "secret": self.secret,
            "digits": self.digits,
            "period": self.period,
            "category": self.category,
            "tags": list(self.tags),
            "created": format_timestamp(self.created),
            "modified": format_timestamp(self.modified),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TotpEntry":
        return cls(
            id=data.get("id") or None,
            name=str(data.get("name") or ""),
            issuer=str(data.get("issuer") or ""),
            secret=str(data.get("secret") or "").replace(" ", "").upper(),
            digits=_as_int(data.get("digits"), 6),
            period=_as_int(data.get("period"), 30),
            category=str(data.get("category") or ""),
            tags=normalize_tags(data.get("tags")),
            created=parse_timestamp(data.get("created") or data.get("createdAt")),
            modified=parse_timestamp(data.get("modified") or data.get("updatedAt")),
        )


VaultRecord = Union[PasswordEntry, TotpEntry]


@dataclass
class Category:
    """A named folder. Password entries reference it by name."""
    name: str
    color: str = "#6366f1"
    icon: str = "folder"
    id: Optional[str] = None

    def validate(self) -> None:
        if not self.name or not self.name.strip():
            raise ValidationError("Category requires a name")

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "name": self.name, "color": self.color, "icon": self.icon}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Category":
        return cls(
            id=data.get("id") or None,
            name=str(data.get("name") or ""),
            color=str(data.get("color") or "#6366f1"),
            icon=str(data.get("icon") or "folder"),
        )


COLLECTION_TYPES = {
    Collection.PASSWORDS: PasswordEntry,
    Collection.TOTP: TotpEntry,
    Collection.CATEGORIES: Category,
}


def collection_for(record: Union[PasswordEntry, TotpEntry, Category]) -> Collection:
    for collection, record_type in COLLECTION_TYPES.items():
        if isinstance(record, record_type):
            return collection
    raise TypeError(f"Not a vault record: {type(record).__name__}")


def record_from_dict(data: Dict[str, Any]) -> VaultRecord:
    """Rebuild a stored record using its persisted discriminant."""
    if data.get("type") == RecordKind.TOTP.value:
        return TotpEntry.from_dict(data)
    return PasswordEntry.from_dict(data)


def records_of(kind: RecordKind, records: Iterable[VaultRecord]) -> List[VaultRecord]:
    return [r for r in records if r.kind is kind]


@dataclass
class PasswordHashRecord:
    """bcrypt verification hash of the master password."""
    hash: str
    algorithm: str = "bcrypt"
    rounds: int = 12

    _BCRYPT_RE: ClassVar = re.compile(r"^\$2[abxy]\$(\d{2})\$[./A-Za-z0-9]{53}$")

    @classmethod
    def from_hash(cls, value: str) -> "PasswordHashRecord":
        """Parse a stored bcrypt hash; malformed values mean a corrupt config."""
        match = cls._BCRYPT_RE.match(value or "")
        if not match:
            raise CorruptConfig("Stored master password hash is malformed")
        return cls(hash=value, rounds=int(match.group(1)))


def _as_int(value: Any, default: int) -> int:
    try:
        number = int(value)
    except (TypeError, ValueError):
        return default
    return number or default
