# Secure Vault - Configuration
#
# Fixed cryptographic / policy constants live on VaultConfig.
# Filesystem locations come from the environment (a .env file in the
# working directory is honoured via python-dotenv):
#
#   SECURE_VAULT_DATA_DIR   config.db + vault.dat      (~/.secure-vault)
#   SECURE_VAULT_AUDIT_DIR  daily audit logs           (<data dir>/audit_logs)
#
# User-tunable settings (auto-lock, clipboard) are AppSettings, persisted
# in the config store so they survive restarts and are readable while
# the vault is locked.

import os
from dataclasses import asdict, dataclass, fields
from pathlib import Path
from typing import Any, Dict

from dotenv import load_dotenv

load_dotenv()


class VaultConfig:
    """Vault constants."""

    # Encryption key derivation (PBKDF2-HMAC-SHA512)
    PBKDF2_ITERATIONS = 100_000
    KEY_LENGTH = 32              # 256 bits for AES-256
    SALT_LENGTH = 32
    NONCE_LENGTH = 12            # 96-bit nonce for GCM

    # Master password verification hash
    BCRYPT_ROUNDS = 12
    MIN_MASTER_PASSWORD_SCORE = 3  # zxcvbn 0..4

    # Unlock rate limiting
    FAILURE_WINDOW_SECONDS = 15 * 60
    MAX_BACKOFF_SECONDS = 30

    # Import / export
    MAX_FIELD_LENGTH = 1000
    MAX_IMPORT_BYTES = 50 * 1024 * 1024

    # Password audit
    MIN_PASSWORD_LENGTH = 8
    OLD_PASSWORD_DAYS = 90

    CONFIG_DB_NAME = "config.db"
    VAULT_FILE_NAME = "vault.dat"


def get_data_dir() -> Path:
    """Directory holding the config store and the encrypted vault file."""
    configured = os.environ.get("SECURE_VAULT_DATA_DIR")
    if configured:
        return Path(configured).expanduser()
    return Path.home() / ".secure-vault"


def get_audit_dir() -> Path:
    configured = os.environ.get("SECURE_VAULT_AUDIT_DIR")
    if configured:
        return Path(configured).expanduser()
    return get_data_dir() / "audit_logs"


@dataclass
class AppSettings:
    """User settings persisted in the config store."""
    auto_lock_enabled: bool = True
    auto_lock_timeout: int = 1800  # seconds; 0 disables
    clipboard_timeout: int = 30

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AppSettings":
        """Build settings from stored JSON, ignoring unknown keys."""
        known = {f.name for f in fields(cls)}
        settings = cls(**{k: v for k, v in data.items() if k in known})
        settings.validate()
        return settings

    def validate(self) -> None:
        if not isinstance(self.auto_lock_enabled, bool):
            raise ValueError("auto_lock_enabled must be a boolean")
        for name in ("auto_lock_timeout", "clipboard_timeout"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, int) or value < 0:
                raise ValueError(f"{name} must be a non-negative integer")

    @property
    def idle_timeout(self) -> int:
        """Effective idle timeout in seconds (0 when auto-lock is off)."""
        return self.auto_lock_timeout if self.auto_lock_enabled else 0
