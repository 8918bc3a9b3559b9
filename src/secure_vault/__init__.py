# Secure Vault - Main Package
#
# Local encrypted password manager with TOTP codes, import/export of
# other managers' formats and encrypted backups.

__version__ = "1.0.0"
__description__ = "Local encrypted password and TOTP vault"

from .core import EventSeverity, EventType, get_audit_logger

__all__ = [
    "__version__",
    "EventType",
    "EventSeverity",
    "get_audit_logger",
]
