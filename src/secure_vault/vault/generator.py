"""Random password generation (CSPRNG)."""

import secrets
import string

from .exceptions import ValidationError

DEFAULT_LENGTH = 16
DEFAULT_ALPHABET = string.ascii_letters + string.digits + "!@#$%^&*"
MIN_LENGTH = 4
MAX_LENGTH = 128


def generate_password(length: int = DEFAULT_LENGTH, alphabet: str = DEFAULT_ALPHABET) -> str:
    if not MIN_LENGTH <= length <= MAX_LENGTH:
        raise ValidationError(f"Password length must be between {MIN_LENGTH} and {MAX_LENGTH}")
    if not alphabet:
        raise ValidationError("Alphabet must not be empty")
    return "".join(secrets.choice(alphabet) for _ in range(length))
