"""
Vault Exception Classes

Every error carries a stable ``code`` that the API layer returns to the
UI, so the caller can decide presentation (unlock prompt, countdown,
data-loss warning) without parsing messages.
"""

import math


class VaultError(Exception):
    """Base exception for vault operations"""
    code = "VaultError"


class VaultLocked(VaultError):
    """Raised when an entry operation is attempted while locked"""
    code = "VaultLocked"

    def __init__(self, message: str = "Vault is locked. Unlock vault first."):
        super().__init__(message)


class AlreadyInitialized(VaultError):
    """Raised by setup() when a master password already exists"""
    code = "AlreadyInitialized"


class NotInitialized(VaultError):
    """Raised when unlocking a vault that was never set up"""
    code = "NotInitialized"


class InvalidPassword(VaultError):
    """Raised when the master password does not match"""
    code = "InvalidPassword"


class RateLimited(VaultError):
    """Raised when an unlock attempt arrives inside the backoff window"""
    code = "RateLimited"

    def __init__(self, remaining_seconds: float):
        self.remaining_seconds = max(1, math.ceil(remaining_seconds))
        super().__init__(
            f"Too many failed attempts. Please wait {self.remaining_seconds} seconds."
        )


class CorruptConfig(VaultError):
    """Raised when the unencrypted config store holds malformed records"""
    code = "CorruptConfig"


class VaultCorrupted(VaultError):
    """Raised when the encrypted vault file cannot be read or decrypted"""
    code = "VaultCorrupted"


class PersistentCorruption(VaultError):
    """Raised when the vault is still unreadable after the one-shot recovery"""
    code = "PersistentCorruption"


class ValidationError(VaultError):
    """Raised when a record or setting is rejected"""
    code = "ValidationError"


class DecryptionError(VaultError):
    """Raised on wrong password or tampered ciphertext in an encrypted import"""
    code = "DecryptionError"


class PasswordRequired(DecryptionError):
    """Raised when an encrypted format is read or written without a password"""
    code = "PasswordRequired"


class UnsupportedFormat(VaultError):
    """Raised for unknown import/export targets"""
    code = "UnsupportedFormat"


class OtpauthParseError(VaultError, ValueError):
    """Raised when an otpauth URI cannot be turned into a TOTP entry"""
    code = "OtpauthParseError"


class UnsupportedOtpType(OtpauthParseError):
    """Raised for otpauth URIs that are not TOTP (hotp, steam, ...)"""
    code = "UnsupportedOtpType"
