# Core module - shared utilities for the vault:
# - Audit logging
# - Configuration

from .audit_log import (
    AuditLogger,
    EventSeverity,
    EventType,
    get_audit_logger,
    log_security_event,
)
from .config import AppSettings, VaultConfig, get_audit_dir, get_data_dir

__all__ = [
    # Audit Logging
    "AuditLogger",
    "EventType",
    "EventSeverity",
    "get_audit_logger",
    "log_security_event",
    # Configuration
    "AppSettings",
    "VaultConfig",
    "get_data_dir",
    "get_audit_dir",
]
