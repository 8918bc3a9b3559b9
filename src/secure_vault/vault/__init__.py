# Vault Module - Encrypted password and TOTP storage
#
# Master password verified with bcrypt, vault key derived with
# PBKDF2-HMAC-SHA512, records encrypted with AES-256-GCM.

from .encryption import EncryptionService
from .models import Category, Collection, PasswordEntry, RecordKind, TotpEntry
from .session import SessionManager, SessionState, get_session_manager

__all__ = [
    "EncryptionService",
    "SessionManager",
    "SessionState",
    "get_session_manager",
    "PasswordEntry",
    "TotpEntry",
    "Category",
    "Collection",
    "RecordKind",
]
