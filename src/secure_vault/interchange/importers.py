# Import Parsers
#
# One pure function per format: content (+ password) -> ParsedBatch.
# Each candidate's kind (password or TOTP) is decided here, once, and
# carried through validation unchanged.
#
# Row-level problems (short CSV rows, malformed items, bad otpauth
# secrets) become entries in ParsedBatch.errors; only problems with the
# file as a whole raise.

import base64
import hashlib
import hmac
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional
from urllib.parse import urlsplit

from cryptography.hazmat.primitives import hashes, padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
from cryptography.hazmat.primitives.kdf.hkdf import HKDFExpand
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC
from pydantic import BaseModel, ConfigDict
from pydantic import ValidationError as SchemaError

from ..vault import totp
from ..vault.exceptions import (
    DecryptionError,
    OtpauthParseError,
    PasswordRequired,
    UnsupportedFormat,
    UnsupportedOtpType,
)
from ..vault.models import RecordKind
from .backup_codec import decode_backup
from .csv_utils import find_column, iter_csv_records, parse_csv_line

logger = logging.getLogger(__name__)

DEFAULT_NAME = "Imported Entry"
DEFAULT_CATEGORY = "Imported"


@dataclass
class ImportCandidate:
    """A parsed, not yet validated record."""
    kind: RecordKind
    fields: Dict[str, Any]
    source: str = ""


@dataclass
class ParsedBatch:
    format: str
    candidates: List[ImportCandidate] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)


def classify(raw: Dict[str, Any], source: str = "") -> ImportCandidate:
    """A non-empty ``secret`` with an ``issuer`` key marks a TOTP record."""
    if raw.get("secret") and "issuer" in raw:
        return ImportCandidate(RecordKind.TOTP, raw, source)
    return ImportCandidate(RecordKind.PASSWORD, raw, source)


def extract_domain(url: str) -> str:
    if not url:
        return ""
    candidate = url if url.startswith("http") else f"https://{url}"
    try:
        return urlsplit(candidate).hostname or url
    except ValueError:
        return url


def _json(content: str, fmt: str) -> Any:
    try:
        return json.loads(content)
    except ValueError as exc:
        raise UnsupportedFormat(f"Malformed {fmt} file: {exc}") from exc


# ── CSV formats ───────────────────────────────────────────────────────

def _vendor_rows(content: str, fmt: str, min_columns: int, batch: ParsedBatch):
    """Data rows of a vendor CSV (header skipped) with at least min_columns."""
    records = iter_csv_records(content)
    next(records, None)
    for line_no, record in records:
        columns = parse_csv_line(record)
        if len(columns) < min_columns:
            batch.errors.append(
                f"Line {line_no}: expected at least {min_columns} columns, got {len(columns)}"
            )
            logger.debug("Skipping short %s row at line %d", fmt, line_no)
            continue
        yield line_no, columns


def parse_lastpass_csv(content: str, password: Optional[str] = None) -> ParsedBatch:
    """url,username,password,totp,extra,name,grouping,fav"""
    batch = ParsedBatch("lastpass")
    for line_no, cols in _vendor_rows(content, "lastpass", 6, batch):
        batch.candidates.append(ImportCandidate(RecordKind.PASSWORD, {
            "name": cols[5] or DEFAULT_NAME,
            "url": cols[0],
            "username": cols[1],
            "password": cols[2],
            "notes": cols[4],
            "category": (cols[6] if len(cols) > 6 else "") or DEFAULT_CATEGORY,
            "tags": ["lastpass"],
        }, f"line {line_no}"))
    return batch


def parse_keepass_csv(content: str, password: Optional[str] = None) -> ParsedBatch:
    """Title,Username,Password,URL,Notes[,Group]"""
    batch = ParsedBatch("keepass")
    for line_no, cols in _vendor_rows(content, "keepass", 4, batch):
        batch.candidates.append(ImportCandidate(RecordKind.PASSWORD, {
            "name": cols[0] or DEFAULT_NAME,
            "username": cols[1],
            "password": cols[2],
            "url": cols[3],
            "notes": cols[4] if len(cols) > 4 else "",
            "category": (cols[5] if len(cols) > 5 else "") or DEFAULT_CATEGORY,
            "tags": [],
        }, f"line {line_no}"))
    return batch


def parse_chrome_csv(content: str, password: Optional[str] = None) -> ParsedBatch:
    """name,url,username,password[,note]"""
    batch = ParsedBatch("chrome")
    for line_no, cols in _vendor_rows(content, "chrome", 4, batch):
        url = cols[1]
        batch.candidates.append(ImportCandidate(RecordKind.PASSWORD, {
            "name": cols[0] or extract_domain(url) or DEFAULT_NAME,
            "url": url,
            "username": cols[2],
            "password": cols[3],
            "notes": cols[4] if len(cols) > 4 else "",
            "category": "Chrome Import",
            "tags": ["chrome"],
        }, f"line {line_no}"))
    return batch


COLUMN_ALIASES = {
    "name": ("name", "title", "site"),
    "url": ("url", "website", "site"),
    "username": ("username", "user", "email", "login"),
    "password": ("password", "pass"),
    "notes": ("notes", "note", "comment", "extra"),
    "category": ("category", "folder", "group", "grouping"),
    "tags": ("tags", "tag", "labels"),
}


def parse_generic_csv(content: str, password: Optional[str] = None) -> ParsedBatch:
    """Any CSV with a header row; columns are matched by name."""
    batch = ParsedBatch("csv")
    records = iter_csv_records(content)
    first = next(records, None)
    if first is None:
        return batch
    header = parse_csv_line(first[1])
    positions = {name: find_column(header, aliases) for name, aliases in COLUMN_ALIASES.items()}

    def column(cols: List[str], name: str) -> str:
        index = positions[name]
        return cols[index] if 0 <= index < len(cols) else ""

    for line_no, record in records:
        cols = parse_csv_line(record)
        batch.candidates.append(ImportCandidate(RecordKind.PASSWORD, {
            "name": column(cols, "name") or cols[0] or DEFAULT_NAME,
            "url": column(cols, "url"),
            "username": column(cols, "username"),
            "password": column(cols, "password"),
            "notes": column(cols, "notes"),
            "category": column(cols, "category") or DEFAULT_CATEGORY,
            "tags": column(cols, "tags").split(";") if column(cols, "tags") else [],
        }, f"line {line_no}"))
    return batch


# ── WinAuth ───────────────────────────────────────────────────────────

def parse_winauth_txt(content: str, password: Optional[str] = None) -> ParsedBatch:
    """One otpauth:// URI per line; other lines are ignored."""
    batch = ParsedBatch("winauth")
    for line_no, line in enumerate(content.splitlines(), start=1):
        line = line.strip()
        if not line.startswith("otpauth://"):
            continue
        try:
            entry = totp.parse_otpauth_uri(line)
        except UnsupportedOtpType as exc:
            logger.warning("Skipping line %d: %s", line_no, exc)
            continue
        except OtpauthParseError as exc:
            batch.errors.append(f"Line {line_no}: {exc}")
            continue
        batch.candidates.append(ImportCandidate(RecordKind.TOTP, {
            "name": entry.name or "WinAuth Import",
            "issuer": entry.issuer or "WinAuth Import",
            "secret": entry.secret,
            "digits": entry.digits,
            "period": entry.period,
            "category": "WinAuth Import",
            "tags": ["winauth", "totp"],
        }, f"line {line_no}"))
    return batch


# ── Firefox ───────────────────────────────────────────────────────────

def parse_firefox_json(content: str, password: Optional[str] = None) -> ParsedBatch:
    batch = ParsedBatch("firefox")
    data = _json(content, "Firefox")
    logins = data.get("logins") if isinstance(data, dict) else None
    for index, login in enumerate(logins or []):
        if not isinstance(login, dict):
            batch.errors.append(f"Login {index}: not an object")
            continue
        hostname = login.get("hostname") or ""
        batch.candidates.append(ImportCandidate(RecordKind.PASSWORD, {
            "name": login.get("httpRealm") or extract_domain(hostname) or DEFAULT_NAME,
            "url": hostname,
            "username": login.get("username") or "",
            "password": login.get("password") or "",
            "notes": "",
            "category": "Firefox Import",
            "tags": ["firefox"],
        }, f"login {index}"))
    return batch


# ── Bitwarden ─────────────────────────────────────────────────────────

BITWARDEN_LOGIN = 1


class BitwardenUri(BaseModel):
    model_config = ConfigDict(extra="ignore")
    uri: Optional[str] = None


class BitwardenLogin(BaseModel):
    model_config = ConfigDict(extra="ignore")
    username: Optional[str] = None
    password: Optional[str] = None
    totp: Optional[str] = None
    uris: Optional[List[BitwardenUri]] = None


class BitwardenItem(BaseModel):
    model_config = ConfigDict(extra="ignore")
    type: int
    name: Optional[str] = None
    notes: Optional[str] = None
    folderId: Optional[str] = None
    login: Optional[BitwardenLogin] = None


class BitwardenFolder(BaseModel):
    model_config = ConfigDict(extra="ignore")
    id: str
    name: str = ""


class BitwardenProtectedExport(BaseModel):
    """Password-protected export envelope."""
    model_config = ConfigDict(extra="ignore")
    salt: str
    kdfType: int = 0
    kdfIterations: int
    encKeyValidation_DO_NOT_EDIT: str
    data: str


def parse_bitwarden_json(content: str, password: Optional[str] = None) -> ParsedBatch:
    batch = ParsedBatch("bitwarden")
    data = _json(content, "Bitwarden")
    if not isinstance(data, dict):
        raise UnsupportedFormat("Bitwarden export must be a JSON object")

    if data.get("encrypted") is True:
        data = _decrypt_bitwarden_export(data, password)
    elif data.get("encrypted_data"):
        raise UnsupportedFormat("Account-encrypted Bitwarden exports cannot be imported")

    folders: Dict[str, str] = {}
    for raw in data.get("folders") or []:
        try:
            folder = BitwardenFolder.model_validate(raw)
        except SchemaError:
            continue
        folders[folder.id] = folder.name

    for index, raw in enumerate(data.get("items") or []):
        try:
            item = BitwardenItem.model_validate(raw)
        except SchemaError as exc:
            batch.errors.append(f"Item {index}: malformed ({exc.error_count()} schema errors)")
            continue
        if item.type != BITWARDEN_LOGIN or item.login is None:
            continue
        login = item.login
        uris = login.uris or []
        if item.folderId:
            category = folders.get(item.folderId) or f"Folder_{item.folderId}"
        else:
            category = DEFAULT_CATEGORY
        batch.candidates.append(ImportCandidate(RecordKind.PASSWORD, {
            "name": item.name or DEFAULT_NAME,
            "url": (uris[0].uri or "") if uris else "",
            "username": login.username or "",
            "password": login.password or "",
            "notes": item.notes or "",
            "category": category,
            "tags": [],
        }, f"item {index}"))
    return batch


def _decrypt_bitwarden_export(data: Dict[str, Any], password: Optional[str]) -> Dict[str, Any]:
    """
    Open a password-protected Bitwarden export.

    PBKDF2-SHA256(password, salt) -> HKDF-Expand "enc"/"mac" keys ->
    AES-256-CBC + HMAC-SHA256 cipher strings ``2.<iv>|<data>|<mac>``.
    """
    if not data.get("passwordProtected"):
        raise UnsupportedFormat("Account-encrypted Bitwarden exports cannot be imported")
    if not password:
        raise PasswordRequired("Password required for protected Bitwarden export")
    try:
        envelope = BitwardenProtectedExport.model_validate(data)
    except SchemaError as exc:
        raise UnsupportedFormat("Malformed protected Bitwarden export") from exc
    if envelope.kdfType != 0:
        raise UnsupportedFormat("Only PBKDF2 protected Bitwarden exports are supported")

    master = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=32,
        salt=envelope.salt.encode("utf-8"),
        iterations=envelope.kdfIterations,
    ).derive(password.encode("utf-8"))
    enc_key = HKDFExpand(algorithm=hashes.SHA256(), length=32, info=b"enc").derive(master)
    mac_key = HKDFExpand(algorithm=hashes.SHA256(), length=32, info=b"mac").derive(master)

    _decrypt_cipher_string(envelope.encKeyValidation_DO_NOT_EDIT, enc_key, mac_key)
    plaintext = _decrypt_cipher_string(envelope.data, enc_key, mac_key)
    try:
        inner = _json(plaintext.decode("utf-8"), "Bitwarden")
    except UnicodeDecodeError as exc:
        raise DecryptionError("Failed to decrypt Bitwarden export: corrupted data") from exc
    if not isinstance(inner, dict):
        raise UnsupportedFormat("Bitwarden export must be a JSON object")
    return inner


def _decrypt_cipher_string(value: str, enc_key: bytes, mac_key: bytes) -> bytes:
    try:
        enc_type, _, rest = value.partition(".")
        iv_b64, data_b64, mac_b64 = rest.split("|")
        iv = base64.b64decode(iv_b64)
        ciphertext = base64.b64decode(data_b64)
        mac = base64.b64decode(mac_b64)
    except ValueError as exc:
        raise UnsupportedFormat("Malformed Bitwarden cipher string") from exc
    if enc_type != "2":
        raise UnsupportedFormat(f"Unsupported Bitwarden cipher type: {enc_type}")

    expected = hmac.new(mac_key, iv + ciphertext, hashlib.sha256).digest()
    if not hmac.compare_digest(expected, mac):
        raise DecryptionError("Failed to decrypt Bitwarden export: wrong password or corrupted data")
    try:
        decryptor = Cipher(algorithms.AES(enc_key), modes.CBC(iv)).decryptor()
        padded = decryptor.update(ciphertext) + decryptor.finalize()
        unpadder = padding.PKCS7(algorithms.AES.block_size).unpadder()
        return unpadder.update(padded) + unpadder.finalize()
    except ValueError as exc:
        raise DecryptionError("Failed to decrypt Bitwarden export: corrupted data") from exc


# ── Generic JSON / native backups ─────────────────────────────────────

def _generic_record(item: Dict[str, Any]) -> Dict[str, Any]:
    if item.get("secret") and "issuer" in item:
        return {
            "name": item.get("name") or item.get("account") or "",
            "issuer": item.get("issuer") or "",
            "secret": item.get("secret"),
            "digits": item.get("digits"),
            "period": item.get("period"),
            "category": item.get("category") or DEFAULT_CATEGORY,
            "tags": item.get("tags") or [],
        }

    def first(*keys: str) -> str:
        return next((str(item[k]) for k in keys if item.get(k)), "")

    return {
        "name": first("name", "title", "site") or DEFAULT_NAME,
        "url": first("url", "website", "site"),
        "username": first("username", "user", "email"),
        "password": first("password", "pass"),
        "notes": first("notes", "note", "comment"),
        "category": first("category", "folder") or DEFAULT_CATEGORY,
        "tags": item.get("tags") or [],
    }


def _records_from_items(batch: ParsedBatch, items: List[Any], label: str) -> None:
    for index, item in enumerate(items):
        if not isinstance(item, dict):
            batch.errors.append(f"{label} {index}: not an object")
            continue
        batch.candidates.append(classify(_generic_record(item), f"{label} {index}"))


def parse_generic_json(content: str, password: Optional[str] = None) -> ParsedBatch:
    """
    Accepted shapes:
    - a list of entries
    - {"version", "exported", "entries": [...]} (native export)
    - {"passwordEntries": [...], "totpEntries": [...]} (older backups)
    """
    batch = ParsedBatch("json")
    data = _json(content, "JSON")
    if isinstance(data, list):
        _records_from_items(batch, data, "entry")
    elif isinstance(data, dict) and isinstance(data.get("entries"), list):
        _records_from_items(batch, data["entries"], "entry")
    elif isinstance(data, dict) and ("passwordEntries" in data or "totpEntries" in data):
        _records_from_items(batch, data.get("passwordEntries") or [], "password entry")
        totp_items = [
            dict(item, issuer=item.get("issuer") or "") if isinstance(item, dict) else item
            for item in data.get("totpEntries") or []
        ]
        _records_from_items(batch, totp_items, "TOTP entry")
    else:
        raise UnsupportedFormat("Unrecognized JSON structure")
    return batch


def parse_securevault(content: str, password: Optional[str] = None) -> ParsedBatch:
    batch = ParsedBatch("securevault")
    _records_from_items(batch, decode_backup(content, password), "entry")
    return batch


PARSERS: Dict[str, Callable[[str, Optional[str]], ParsedBatch]] = {
    "lastpass": parse_lastpass_csv,
    "bitwarden": parse_bitwarden_json,
    "keepass": parse_keepass_csv,
    "chrome": parse_chrome_csv,
    "firefox": parse_firefox_json,
    "winauth": parse_winauth_txt,
    "securevault": parse_securevault,
    "csv": parse_generic_csv,
    "json": parse_generic_json,
}
