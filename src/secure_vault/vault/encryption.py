# Vault - Encryption Service
#
# Master password → encryption key (PBKDF2-HMAC-SHA512)
# Master password → verification hash (bcrypt, separate from the key)
# Vault document encryption (AES-256-GCM)

import os
from typing import Tuple, Union

import bcrypt
from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC
from zxcvbn import zxcvbn

from ..core.config import VaultConfig
from .exceptions import CorruptConfig, ValidationError
from .models import PasswordHashRecord

KeyBytes = Union[bytes, bytearray]


class EncryptionService:
    """
    Key derivation and symmetric encryption for the vault.

    Flow:
    1. User enters master password
    2. bcrypt hash (own random salt) authenticates the password
    3. PBKDF2 derives the 256-bit vault key from password + vault salt
    4. AES-256-GCM encrypts/decrypts the vault document
    5. Each encryption uses a fresh random nonce

    The verification hash never doubles as the encryption key: they use
    different algorithms and different salts.
    """

    @staticmethod
    def derive_key(master_password: str, salt: bytes) -> bytearray:
        """
        Derive the vault encryption key with PBKDF2-HMAC-SHA512.

        Deterministic for a given (password, salt). The iteration count is
        fixed, so the running time does not depend on password content.

        Returns:
            256-bit key as a bytearray so callers can scrub it on lock
        """
        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA512(),
            length=VaultConfig.KEY_LENGTH,
            salt=salt,
            iterations=VaultConfig.PBKDF2_ITERATIONS,
        )
        return bytearray(kdf.derive(master_password.encode('utf-8')))

    @staticmethod
    def generate_salt() -> bytes:
        """Generate cryptographically random salt."""
        return os.urandom(VaultConfig.SALT_LENGTH)

    @staticmethod
    def hash_password(master_password: str, rounds: int = VaultConfig.BCRYPT_ROUNDS) -> PasswordHashRecord:
        """
        Hash the master password for authentication.

        bcrypt only looks at the first 72 bytes; longer passwords are
        truncated explicitly so every bcrypt release behaves the same.
        """
        digest = bcrypt.hashpw(_bcrypt_input(master_password), bcrypt.gensalt(rounds=rounds))
        return PasswordHashRecord(hash=digest.decode('ascii'), rounds=rounds)

    @staticmethod
    def verify_password(master_password: str, record: PasswordHashRecord) -> bool:
        """Check a password against the stored hash (constant-time compare)."""
        try:
            return bcrypt.checkpw(_bcrypt_input(master_password), record.hash.encode('ascii'))
        except (ValueError, UnicodeEncodeError) as exc:
            raise CorruptConfig(f"Stored master password hash is unusable: {exc}") from exc

    @staticmethod
    def encrypt(plaintext: bytes, key: KeyBytes) -> Tuple[bytes, bytes]:
        """
        Encrypt bytes using AES-256-GCM.

        Returns:
            Tuple of (nonce, ciphertext_with_tag)
        """
        nonce = os.urandom(VaultConfig.NONCE_LENGTH)
        ciphertext = AESGCM(bytes(key)).encrypt(nonce, plaintext, None)
        return nonce, ciphertext

    @staticmethod
    def decrypt(nonce: bytes, ciphertext: bytes, key: KeyBytes) -> bytes:
        """
        Decrypt AES-256-GCM ciphertext.

        Raises:
            cryptography.exceptions.InvalidTag: wrong key or tampered data
        """
        return AESGCM(bytes(key)).decrypt(nonce, ciphertext, None)

    @staticmethod
    def scrub(key: KeyBytes) -> None:
        """Best-effort zeroing of key material held in a bytearray."""
        if isinstance(key, bytearray):
            for i in range(len(key)):
                key[i] = 0


def _bcrypt_input(password: str) -> bytes:
    return password.encode('utf-8')[:72]


def check_master_password_strength(password: str) -> None:
    """
    Reject weak master passwords.

    Uses the zxcvbn estimator; anything below
    VaultConfig.MIN_MASTER_PASSWORD_SCORE is refused.

    Raises:
        ValidationError: with zxcvbn's warning when available
    """
    if not password:
        raise ValidationError("Master password must not be empty")
    result = zxcvbn(password[:72])  # newer zxcvbn releases reject longer input
    if result["score"] < VaultConfig.MIN_MASTER_PASSWORD_SCORE:
        warning = (result.get("feedback") or {}).get("warning") or ""
        message = "Master password is too weak"
        if warning:
            message = f"{message}: {warning}"
        raise ValidationError(message)


__all__ = [
    "EncryptionService",
    "InvalidTag",
    "check_master_password_strength",
]
