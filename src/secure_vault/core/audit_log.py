# Secure Vault - Audit Logging
#
# Append-only audit log for every security-relevant vault event:
# setup, unlock (and failed/rate-limited attempts), lock, auto-lock,
# password change, corruption recovery, import and export.
#
# Never pass secrets (master password, keys, entry passwords, TOTP
# secrets) into `details`. Ids, counts and format names only.

import logging
import os
import socket
import sys
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional
from uuid import uuid4

import structlog


class EventType(str, Enum):
    """Types of vault events that can be logged."""
    # Vault lifecycle
    VAULT_CREATED = "vault.created"
    VAULT_UNLOCKED = "vault.unlocked"
    VAULT_LOCKED = "vault.locked"
    VAULT_AUTO_LOCKED = "vault.auto_locked"
    VAULT_UNLOCK_FAILED = "vault.unlock.failed"
    VAULT_UNLOCK_RATE_LIMITED = "vault.unlock.rate_limited"
    VAULT_PASSWORD_CHANGED = "vault.password_changed"

    # Integrity
    VAULT_RECOVERED = "vault.recovered"
    VAULT_CORRUPTED = "vault.corrupted"

    # Entries
    VAULT_ENTRY_SAVED = "vault.entry.saved"
    VAULT_ENTRY_DELETED = "vault.entry.deleted"

    # Interchange
    VAULT_IMPORT = "vault.import"
    VAULT_EXPORT = "vault.export"

    VAULT_ERROR = "vault.error"

    # System Events
    SYSTEM_START = "system.start"
    SYSTEM_STOP = "system.stop"


class EventSeverity(str, Enum):
    """
    Severity levels for vault events.

    - INFO: Normal activity (logged only)
    - INVESTIGATE: Something unusual, e.g. a failed unlock
    - ALERT: Protective action taken (rate limiting, auto-lock)
    - CRITICAL: Data integrity event, user must be told
    """
    INFO = "info"
    INVESTIGATE = "investigate"
    ALERT = "alert"
    CRITICAL = "critical"


class AuditLogger:
    """
    Append-only structured audit logger.

    Features:
    - Structured JSON logging via structlog
    - Automatic timestamp and event ID
    - One log file per day in ``log_dir``
    """

    def __init__(self, log_dir: Optional[Path] = None):
        """
        Initialize audit logger.

        Args:
            log_dir: Directory for audit logs (default: from VaultConfig)
        """
        if log_dir is None:
            from .config import get_audit_dir
            log_dir = get_audit_dir()
        self.log_dir = Path(log_dir)
        self.log_dir.mkdir(parents=True, exist_ok=True)

        structlog.configure(
            processors=[
                structlog.stdlib.add_log_level,
                structlog.stdlib.add_logger_name,
                structlog.processors.TimeStamper(fmt="iso"),
                structlog.processors.StackInfoRenderer(),
                structlog.processors.format_exc_info,
                structlog.processors.JSONRenderer()
            ],
            wrapper_class=structlog.stdlib.BoundLogger,
            context_class=dict,
            logger_factory=structlog.stdlib.LoggerFactory(),
            cache_logger_on_first_use=True,
        )

        self._setup_file_handler()

        self.logger = structlog.get_logger("secure_vault.audit")

    def _setup_file_handler(self):
        """Attach a file handler for today's audit log."""
        today = datetime.now().strftime("%Y-%m-%d")
        self.log_file = self.log_dir / f"audit_{today}.log"

        file_handler = logging.FileHandler(self.log_file, mode='a', encoding='utf-8')
        file_handler.setLevel(logging.INFO)
        file_handler.setFormatter(logging.Formatter('%(message)s'))  # structlog renders

        audit_logger = logging.getLogger("secure_vault.audit")
        audit_logger.addHandler(file_handler)
        audit_logger.setLevel(logging.INFO)
        self._file_handler = file_handler

    def close(self):
        """Detach and close the file handler."""
        logging.getLogger("secure_vault.audit").removeHandler(self._file_handler)
        self._file_handler.close()

    def log_event(
        self,
        event_type: EventType,
        severity: EventSeverity,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        user_context: Optional[Dict[str, Any]] = None
    ) -> str:
        """
        Log a vault event (append-only).

        Args:
            event_type: Type of event (from EventType enum)
            severity: Severity level (from EventSeverity enum)
            message: Human-readable event description
            details: Additional event details (no secrets)
            user_context: OS user context; filled in when omitted

        Returns:
            str: Event ID (UUID) for reference
        """
        event_id = str(uuid4())

        event_data = {
            "event_id": event_id,
            "event_type": event_type.value,
            "severity": severity.value,
            "message": message,
            "timestamp": datetime.utcnow().isoformat(),
            "details": details or {},
            "user_context": user_context or self._get_default_user_context(),
        }

        self.logger.info("vault_event", **event_data)

        return event_id

    def _get_default_user_context(self) -> Dict[str, Any]:
        """Get default user context (OS user, hostname, platform)."""
        return {
            "os_user": os.getenv("USERNAME") or os.getenv("USER"),
            "hostname": socket.gethostname(),
            "platform": sys.platform,
        }


# Global logger instance
_audit_logger: Optional[AuditLogger] = None


def get_audit_logger() -> AuditLogger:
    """Get global audit logger (singleton pattern)."""
    global _audit_logger
    if _audit_logger is None:
        _audit_logger = AuditLogger()
    return _audit_logger


def log_security_event(
    event_type: EventType,
    severity: EventSeverity,
    message: str,
    **kwargs
) -> str:
    """
    Convenience function for logging vault events.

    Usage:
        log_security_event(
            EventType.VAULT_EXPORT,
            EventSeverity.INFO,
            "Vault exported",
            details={"format": "csv", "count": 12}
        )
    """
    return get_audit_logger().log_event(event_type, severity, message, **kwargs)
