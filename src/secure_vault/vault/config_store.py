# Vault Config Store
# SQLite key/value store for the unencrypted vault configuration:
#
#   password_hash    bcrypt hash of the master password
#   encryption_salt  hex PBKDF2 salt for the vault key
#   recovery_used    "1" once the one-shot corruption recovery has run
#   settings         AppSettings JSON
#   created_at       ISO timestamp of the first setup
#
# Nothing here is secret on its own; the vault data lives in VaultStore.

import json
import logging
import sqlite3
from datetime import datetime
from pathlib import Path
from typing import Dict, Optional, Union

from ..core.config import AppSettings, VaultConfig, get_data_dir
from .exceptions import CorruptConfig
from .models import PasswordHashRecord

logger = logging.getLogger(__name__)

KEY_PASSWORD_HASH = "password_hash"
KEY_ENCRYPTION_SALT = "encryption_salt"
KEY_RECOVERY_USED = "recovery_used"
KEY_SETTINGS = "settings"
KEY_CREATED_AT = "created_at"


class ConfigStore:
    """SQLite key/value store for vault configuration.

    Args:
        db_path: Path to SQLite file. Defaults to <data dir>/config.db.

    Raises:
        CorruptConfig: if the file exists but is not a usable database.
    """

    def __init__(self, db_path: Optional[Union[str, Path]] = None):
        self.db_path = Path(db_path) if db_path else get_data_dir() / VaultConfig.CONFIG_DB_NAME
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_database()

    def _init_database(self):
        try:
            with self._connect() as conn:
                conn.execute("""
                    CREATE TABLE IF NOT EXISTS vault_config (
                        key TEXT PRIMARY KEY,
                        value TEXT NOT NULL,
                        updated_at TEXT NOT NULL
                    )
                """)
                conn.commit()
        except sqlite3.DatabaseError as exc:
            raise CorruptConfig(f"Config store is unreadable: {exc}") from exc

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self.db_path), check_same_thread=False)
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA busy_timeout=5000")
        conn.row_factory = sqlite3.Row
        return conn

    # ── Raw key/value access ─────────────────────────────────────────

    def get(self, key: str, default: Optional[str] = None) -> Optional[str]:
        try:
            with self._connect() as conn:
                row = conn.execute(
                    "SELECT value FROM vault_config WHERE key = ?", (key,)
                ).fetchone()
        except sqlite3.DatabaseError as exc:
            raise CorruptConfig(f"Config store is unreadable: {exc}") from exc
        if row is None:
            return default
        return row["value"]

    def set_many(self, values: Dict[str, str]) -> None:
        """Upsert several keys in one transaction."""
        now = datetime.utcnow().isoformat()
        with self._connect() as conn:
            conn.executemany(
                """INSERT INTO vault_config (key, value, updated_at)
                   VALUES (?, ?, ?)
                   ON CONFLICT(key) DO UPDATE SET
                       value = excluded.value,
                       updated_at = excluded.updated_at""",
                [(key, value, now) for key, value in values.items()],
            )
            conn.commit()

    def set(self, key: str, value: str) -> None:
        self.set_many({key: value})

    def delete(self, key: str) -> bool:
        """Delete a key. Returns True if it existed."""
        with self._connect() as conn:
            cur = conn.execute("DELETE FROM vault_config WHERE key = ?", (key,))
            conn.commit()
            return cur.rowcount > 0

    # ── Credentials ──────────────────────────────────────────────────

    def is_setup(self) -> bool:
        return self.get(KEY_PASSWORD_HASH) is not None

    def load_password_record(self) -> Optional[PasswordHashRecord]:
        """The stored hash record, or None when the vault is uninitialized."""
        value = self.get(KEY_PASSWORD_HASH)
        if value is None:
            return None
        return PasswordHashRecord.from_hash(value)

    def load_salt(self) -> bytes:
        value = self.get(KEY_ENCRYPTION_SALT)
        if value is None:
            raise CorruptConfig("Encryption salt is missing")
        try:
            salt = bytes.fromhex(value)
        except ValueError as exc:
            raise CorruptConfig("Encryption salt is not valid hex") from exc
        if len(salt) != VaultConfig.SALT_LENGTH:
            raise CorruptConfig(f"Encryption salt has wrong length ({len(salt)} bytes)")
        return salt

    def save_credentials(self, record: PasswordHashRecord, salt: bytes) -> None:
        """Persist hash and salt together so they never disagree."""
        values = {
            KEY_PASSWORD_HASH: record.hash,
            KEY_ENCRYPTION_SALT: salt.hex(),
        }
        if self.get(KEY_CREATED_AT) is None:
            values[KEY_CREATED_AT] = datetime.utcnow().isoformat()
        self.set_many(values)

    def save_salt(self, salt: bytes) -> None:
        self.set(KEY_ENCRYPTION_SALT, salt.hex())

    # ── Recovery flag ────────────────────────────────────────────────

    def recovery_used(self) -> bool:
        return self.get(KEY_RECOVERY_USED) == "1"

    def mark_recovery_used(self, new_salt: bytes) -> None:
        """Record the one-shot recovery together with the salt it generated."""
        self.set_many({
            KEY_RECOVERY_USED: "1",
            KEY_ENCRYPTION_SALT: new_salt.hex(),
        })
        logger.warning("Vault corruption recovery recorded in %s", self.db_path)

    # ── Settings ─────────────────────────────────────────────────────

    def load_settings(self) -> AppSettings:
        raw = self.get(KEY_SETTINGS)
        if raw is None:
            return AppSettings()
        try:
            return AppSettings.from_dict(json.loads(raw))
        except (ValueError, TypeError, AttributeError) as exc:
            raise CorruptConfig(f"Stored settings are malformed: {exc}") from exc

    def save_settings(self, settings: AppSettings) -> None:
        settings.validate()
        self.set(KEY_SETTINGS, json.dumps(settings.to_dict()))
