"""Encrypted .svault backups: gzip-compressed JSON under AES-256-GCM.

Uses the vault's key derivation (PBKDF2-HMAC-SHA512, 100k iterations):
- Random 32-byte salt + 12-byte IV per backup
- Payload: gzip({"version", "exported", "entries"})

Container (JSON, hex fields):
    {"algorithm": "aes-256-gcm", "salt": ..., "iv": ..., "ciphertext": ...}

Older backups written with "aes-256-cbc" (16-byte IV, PKCS7, payload in
"data" or "ciphertext") are still readable. They carry no MAC, so a
wrong password is only detected by the padding, gzip or JSON layer.
"""

import gzip
import json
import logging
import zlib
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from ..vault.encryption import EncryptionService, InvalidTag
from ..vault.exceptions import DecryptionError, PasswordRequired, UnsupportedFormat
from ..vault.models import format_timestamp, utcnow

logger = logging.getLogger(__name__)

ALGORITHM_GCM = "aes-256-gcm"
ALGORITHM_CBC = "aes-256-cbc"
BACKUP_VERSION = "1.0"


def encode_backup(
    records: Iterable[Any],
    password: Optional[str],
    now: Optional[datetime] = None,
) -> str:
    """Serialize records (anything with ``to_dict``) into a .svault container."""
    if not password:
        raise PasswordRequired("Password required for encrypted export")

    payload = {
        "version": BACKUP_VERSION,
        "exported": format_timestamp(now or utcnow()),
        "entries": [record.to_dict() for record in records],
    }
    compressed = gzip.compress(json.dumps(payload).encode("utf-8"))

    salt = EncryptionService.generate_salt()
    key = EncryptionService.derive_key(password, salt)
    try:
        iv, ciphertext = EncryptionService.encrypt(compressed, key)
    finally:
        EncryptionService.scrub(key)

    container = {
        "algorithm": ALGORITHM_GCM,
        "salt": salt.hex(),
        "iv": iv.hex(),
        "ciphertext": ciphertext.hex(),
    }
    return json.dumps(container, indent=2)


def decode_backup(content: str, password: Optional[str]) -> List[Dict[str, Any]]:
    """Decrypt a .svault container and return its raw entry dicts.

    Raises:
        PasswordRequired: no password supplied
        UnsupportedFormat: not a .svault container / unknown algorithm
        DecryptionError: wrong password or corrupted ciphertext
    """
    if not password:
        raise PasswordRequired("Password required for encrypted backup")

    container = _load_container(content)
    algorithm = container["algorithm"]
    try:
        salt = bytes.fromhex(container["salt"])
        iv = bytes.fromhex(container["iv"])
        ciphertext = bytes.fromhex(container.get("ciphertext") or container.get("data") or "")
    except (TypeError, ValueError) as exc:
        raise UnsupportedFormat("Invalid backup format: fields are not hex") from exc

    key = EncryptionService.derive_key(password, salt)
    try:
        if algorithm == ALGORITHM_GCM:
            compressed = _decrypt_gcm(iv, ciphertext, key)
        else:
            compressed = _decrypt_cbc(iv, ciphertext, key)
    finally:
        EncryptionService.scrub(key)

    try:
        data = json.loads(gzip.decompress(compressed).decode("utf-8"))
    except (OSError, EOFError, UnicodeDecodeError, ValueError, zlib.error) as exc:
        raise DecryptionError("Failed to decrypt backup: wrong password or corrupted data") from exc

    entries = data.get("entries") if isinstance(data, dict) else None
    if not isinstance(entries, list):
        raise UnsupportedFormat("Invalid backup format: no entries")
    return [entry for entry in entries if isinstance(entry, dict)]


def _load_container(content: str) -> Dict[str, Any]:
    try:
        container = json.loads(content)
    except ValueError as exc:
        raise UnsupportedFormat("Invalid backup format") from exc
    if not isinstance(container, dict):
        raise UnsupportedFormat("Invalid backup format")
    if not container.get("algorithm") or not container.get("salt") or not container.get("iv"):
        raise UnsupportedFormat("Invalid backup format")
    if not (container.get("ciphertext") or container.get("data")):
        raise UnsupportedFormat("Invalid backup format")
    if container["algorithm"] not in (ALGORITHM_GCM, ALGORITHM_CBC):
        raise UnsupportedFormat(f"Unsupported backup algorithm: {container['algorithm']}")
    return container


def _decrypt_gcm(iv: bytes, ciphertext: bytes, key: bytearray) -> bytes:
    try:
        return EncryptionService.decrypt(iv, ciphertext, key)
    except (InvalidTag, ValueError) as exc:
        raise DecryptionError("Failed to decrypt backup: wrong password or corrupted data") from exc


def _decrypt_cbc(iv: bytes, ciphertext: bytes, key: bytearray) -> bytes:
    logger.info("Reading legacy unauthenticated %s backup", ALGORITHM_CBC)
    try:
        decryptor = Cipher(algorithms.AES(bytes(key)), modes.CBC(iv)).decryptor()
        padded = decryptor.update(ciphertext) + decryptor.finalize()
        unpadder = padding.PKCS7(algorithms.AES.block_size).unpadder()
        return unpadder.update(padded) + unpadder.finalize()
    except ValueError as exc:
        raise DecryptionError("Failed to decrypt backup: wrong password or corrupted data") from exc
