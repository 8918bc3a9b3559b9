# Import format detection
#
# First match wins:
#   1. vendor token in the file name, ".wa.txt" or ".svault"
#   2. JSON content, classified by shape
#   3. text: otpauth:// lines, then known CSV header signatures

import json
import logging
from pathlib import PurePath
from typing import Any, Optional

from .csv_utils import BOM

logger = logging.getLogger(__name__)

SUPPORTED_FORMATS = {
    "csv": "Generic CSV",
    "json": "Generic JSON",
    "lastpass": "LastPass CSV",
    "bitwarden": "Bitwarden JSON",
    "keepass": "KeePass CSV",
    "chrome": "Chrome Passwords CSV",
    "firefox": "Firefox JSON",
    "winauth": "WinAuth TXT",
    "securevault": "Secure Vault (Encrypted)",
}

EXPORT_FORMATS = {
    "csv": "Generic CSV",
    "json": "Generic JSON",
    "securevault": "Secure Vault (Encrypted)",
    "lastpass": "LastPass CSV",
    "bitwarden": "Bitwarden JSON",
}

VENDOR_TOKENS = ("lastpass", "bitwarden", "keepass", "chrome", "firefox", "winauth")

# Checked with startswith, in this order: Chrome's header also
# contains "url,username,password".
HEADER_SIGNATURES = (
    ("url,username,password", "lastpass"),
    ("title,username,password,url", "keepass"),
    ("name,url,username,password", "chrome"),
)


def detect_format(filename: Optional[str], content: str) -> str:
    """Return the import format key for a file name and its content."""
    name = PurePath(filename).name.lower() if filename else ""

    for token in VENDOR_TOKENS:
        if token in name:
            return token
    if name.endswith(".wa.txt"):
        return "winauth"
    if name.endswith(".svault"):
        return "securevault"

    data = _load_json(content)
    if isinstance(data, dict):
        return _json_shape(data)
    if isinstance(data, list):
        return "json"

    lines = [line.strip() for line in content.lstrip(BOM).splitlines() if line.strip()]
    if not lines:
        return "csv"
    if lines[0].startswith("otpauth://"):
        return "winauth"

    header = lines[0].lower().replace('"', "").replace(" ", "")
    for signature, fmt in HEADER_SIGNATURES:
        if header.startswith(signature):
            return fmt
    return "csv"


def _load_json(content: str) -> Any:
    try:
        return json.loads(content.lstrip(BOM))
    except ValueError:
        return None


def _json_shape(data: dict) -> str:
    if data.get("encrypted_data") or (data.get("encrypted") is True and "data" in data):
        return "bitwarden"
    if "logins" in data:
        return "firefox"
    if "algorithm" in data and "salt" in data and "iv" in data:
        return "securevault"
    if isinstance(data.get("items"), list):
        return "bitwarden"
    return "json"
