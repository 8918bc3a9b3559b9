# Export Serializers
#
# csv        Name,URL,Username,Password,Category,Notes,Tags   (password entries)
# json       {"version": "1.0", "exported", "entries"}       (all records)
# lastpass   LastPass CSV import layout                      (password entries)
# bitwarden  unencrypted Bitwarden JSON, one folder per category
#
# The encrypted .svault format lives in backup_codec.

import json
import uuid
from datetime import datetime
from typing import Callable, Dict, Iterable, List, Optional, Sequence

from ..vault.models import PasswordEntry, format_timestamp, utcnow
from .csv_utils import csv_row

CSV_HEADER = ("Name", "URL", "Username", "Password", "Category", "Notes", "Tags")
LASTPASS_HEADER = ("url", "username", "password", "totp", "extra", "name", "grouping", "fav")
JSON_VERSION = "1.0"
BITWARDEN_DEFAULT_FOLDER = "Imported"


def export_csv(entries: Iterable[PasswordEntry], now: Optional[datetime] = None) -> str:
    rows = [",".join(CSV_HEADER)]
    for entry in entries:
        rows.append(csv_row([
            entry.name,
            entry.url,
            entry.username,
            entry.password,
            entry.category,
            entry.notes,
            ";".join(entry.tags),
        ]))
    return "\n".join(rows)


def export_json(records: Iterable, now: Optional[datetime] = None) -> str:
    data = {
        "version": JSON_VERSION,
        "exported": format_timestamp(now or utcnow()),
        "entries": [record.to_dict() for record in records],
    }
    return json.dumps(data, indent=2)


def export_lastpass_csv(entries: Iterable[PasswordEntry], now: Optional[datetime] = None) -> str:
    rows = [",".join(LASTPASS_HEADER)]
    for entry in entries:
        rows.append(csv_row([
            entry.url,
            entry.username,
            entry.password,
            "",
            entry.notes,
            entry.name,
            entry.category,
            "0",
        ]))
    return "\n".join(rows)


def export_bitwarden_json(entries: Sequence[PasswordEntry], now: Optional[datetime] = None) -> str:
    """Bitwarden login items; entries without a category go to "Imported"."""
    stamp = format_timestamp(now or utcnow())
    folder_ids: Dict[str, str] = {BITWARDEN_DEFAULT_FOLDER: str(uuid.uuid4())}
    for entry in entries:
        if entry.category and entry.category not in folder_ids:
            folder_ids[entry.category] = str(uuid.uuid4())

    items: List[dict] = []
    for entry in entries:
        items.append({
            "id": entry.id or str(uuid.uuid4()),
            "organizationId": None,
            "folderId": folder_ids[entry.category or BITWARDEN_DEFAULT_FOLDER],
            "type": 1,
            "name": entry.name,
            "notes": entry.notes or None,
            "favorite": False,
            "login": {
                "username": entry.username or None,
                "password": entry.password,
                "totp": None,
                "uris": [{"match": None, "uri": entry.url}] if entry.url else [],
            },
            "collectionIds": [],
            "revisionDate": format_timestamp(entry.modified) or stamp,
            "creationDate": format_timestamp(entry.created) or stamp,
            "deletedDate": None,
        })

    data = {
        "encrypted": False,
        "folders": [{"id": fid, "name": name} for name, fid in folder_ids.items()],
        "items": items,
    }
    return json.dumps(data, indent=2)


EXPORTERS: Dict[str, Callable[..., str]] = {
    "csv": export_csv,
    "json": export_json,
    "lastpass": export_lastpass_csv,
    "bitwarden": export_bitwarden_json,
}

# Formats that can carry TOTP records as well as passwords.
FULL_RECORD_FORMATS = frozenset({"json", "securevault"})
