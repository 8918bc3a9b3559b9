"""
Password security audit and advanced search over password entries.

Issues reported per entry:
- too_short: fewer than VaultConfig.MIN_PASSWORD_LENGTH characters
- weak:      zxcvbn score below 3
- reused:    same password stored on more than one entry
- old:       not modified for VaultConfig.OLD_PASSWORD_DAYS
"""

from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional

from zxcvbn import zxcvbn

from ..core.config import VaultConfig
from .models import PasswordEntry, normalize_tags, utcnow

ISSUE_TOO_SHORT = "too_short"
ISSUE_WEAK = "weak"
ISSUE_REUSED = "reused"
ISSUE_OLD = "old"


def password_score(password: str) -> int:
    """zxcvbn strength score 0 (very weak) .. 4 (strong)."""
    if not password:
        return 0
    return zxcvbn(password[:72])["score"]


def is_weak(password: str) -> bool:
    return password_score(password) < 3


def is_old(entry: PasswordEntry, now: Optional[datetime] = None) -> bool:
    stamp = entry.modified or entry.created
    if stamp is None:
        return False
    now = now or utcnow()
    return now - stamp > timedelta(days=VaultConfig.OLD_PASSWORD_DAYS)


@dataclass
class AuditReport:
    total: int = 0
    weak: int = 0
    reused: int = 0
    old: int = 0
    details: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total": self.total,
            "weak": self.weak,
            "reused": self.reused,
            "old": self.old,
            "details": self.details,
        }


def audit_passwords(entries: Iterable[PasswordEntry], now: Optional[datetime] = None) -> AuditReport:
    entries = list(entries)
    now = now or utcnow()
    usage = Counter(e.password for e in entries if e.password)
    report = AuditReport(total=len(entries))

    for entry in entries:
        issues = []
        if len(entry.password) < VaultConfig.MIN_PASSWORD_LENGTH:
            issues.append(ISSUE_TOO_SHORT)
        elif is_weak(entry.password):
            issues.append(ISSUE_WEAK)
        if entry.password and usage[entry.password] > 1:
            issues.append(ISSUE_REUSED)
        if is_old(entry, now):
            issues.append(ISSUE_OLD)

        if ISSUE_TOO_SHORT in issues or ISSUE_WEAK in issues:
            report.weak += 1
        if ISSUE_REUSED in issues:
            report.reused += 1
        if ISSUE_OLD in issues:
            report.old += 1
        if issues:
            report.details.append({"id": entry.id, "name": entry.name, "issues": issues})

    return report


@dataclass
class SearchCriteria:
    name: str = ""
    username: str = ""
    url: str = ""
    category: str = ""
    tags: List[str] = field(default_factory=list)
    weak_only: bool = False
    old_only: bool = False

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SearchCriteria":
        return cls(
            name=str(data.get("name") or ""),
            username=str(data.get("username") or ""),
            url=str(data.get("url") or ""),
            category=str(data.get("category") or ""),
            tags=normalize_tags(data.get("tags")),
            weak_only=bool(data.get("weak_only") or data.get("weakOnly")),
            old_only=bool(data.get("old_only") or data.get("oldOnly")),
        )


def search_passwords(
    entries: Iterable[PasswordEntry],
    criteria: SearchCriteria,
    now: Optional[datetime] = None,
) -> List[PasswordEntry]:
    """Filter entries; every non-empty criterion must match."""
    now = now or utcnow()
    wanted_tags = {t.lower() for t in criteria.tags}
    results = []
    for entry in entries:
        if criteria.name and criteria.name.lower() not in entry.name.lower():
            continue
        if criteria.username and criteria.username.lower() not in entry.username.lower():
            continue
        if criteria.url and criteria.url.lower() not in entry.url.lower():
            continue
        if criteria.category and entry.category != criteria.category:
            continue
        if wanted_tags and not wanted_tags <= {t.lower() for t in entry.tags}:
            continue
        if criteria.weak_only and not (
            len(entry.password) < VaultConfig.MIN_PASSWORD_LENGTH or is_weak(entry.password)
        ):
            continue
        if criteria.old_only and not is_old(entry, now):
            continue
        results.append(entry)
    return results
