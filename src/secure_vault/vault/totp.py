"""
TOTP (Time-based One-Time Password) engine
RFC 6238 compliant - Compatible with Google Authenticator, Authy, Aegis

Key points:
- HMAC-SHA1 (standard)
- 6 or 8 digit codes
- 30 or 60 second time step, counter = floor(t / period)
- Base32 secret encoding
"""
import binascii
import time
from datetime import datetime, timezone
from typing import Optional
from urllib.parse import parse_qs, unquote, urlsplit

import pyotp

from .exceptions import OtpauthParseError, UnsupportedOtpType, ValidationError
from .models import BASE32_RE, TotpEntry


def generate_secret() -> str:
    """Generate a new random TOTP secret (32-character Base32)."""
    return pyotp.random_base32()


def _totp_for(entry: TotpEntry) -> pyotp.TOTP:
    return pyotp.TOTP(
        entry.secret,
        digits=entry.digits,
        interval=entry.period,
        name=entry.name or None,
        issuer=entry.issuer or None,
    )


def generate_code(entry: TotpEntry, at_time: Optional[float] = None) -> str:
    """
    Compute the code for ``entry`` at ``at_time`` (epoch seconds).

    Deterministic for a given time; defaults to the current wall clock.
    """
    if at_time is None:
        at_time = time.time()
    moment = datetime.fromtimestamp(int(at_time), tz=timezone.utc)
    try:
        return _totp_for(entry).at(moment)
    except (binascii.Error, ValueError) as exc:
        raise ValidationError(f"TOTP secret cannot be decoded: {entry.name}") from exc


def seconds_remaining(period: int, at_time: Optional[float] = None) -> int:
    """Seconds until the current code rolls over (UI countdown only)."""
    if at_time is None:
        at_time = time.time()
    return period - (int(at_time) % period)


def build_otpauth_uri(entry: TotpEntry) -> str:
    """
    Build the otpauth:// URI for an entry (what a QR code encodes).

    Format: otpauth://totp/{issuer}:{name}?secret={secret}&issuer={issuer}
    """
    return _totp_for(entry).provisioning_uri(
        name=entry.name,
        issuer_name=entry.issuer or None,
    )


def parse_otpauth_uri(uri: str) -> TotpEntry:
    """
    Turn an ``otpauth://totp/...`` URI into an (unsaved) TotpEntry.

    Label handling: ``Issuer:Account`` splits into issuer and account;
    an explicit ``issuer`` parameter wins over the label prefix. A
    ``serial`` parameter (Battle.net style tokens) is appended to the
    account name in parentheses.

    Raises:
        UnsupportedOtpType: not a TOTP URI (hotp, other schemes)
        OtpauthParseError: missing or non-Base32 secret
    """
    parts = urlsplit(uri.strip())
    if parts.scheme.lower() != "otpauth":
        raise UnsupportedOtpType(f"Not an otpauth URI: {parts.scheme or uri[:20]}")
    if parts.netloc.lower() != "totp":
        raise UnsupportedOtpType(f"Unsupported otpauth type: {parts.netloc}")

    params = {k: v[0] for k, v in parse_qs(parts.query).items() if v}
    label = unquote(parts.path.lstrip("/"))

    issuer = params.get("issuer", "").strip()
    if ":" in label:
        label_issuer, account = label.split(":", 1)
        if not issuer:
            issuer = label_issuer.strip()
        account = account.strip()
    else:
        account = label.strip()

    secret = params.get("secret", "").replace(" ", "")
    if not secret:
        raise OtpauthParseError("Missing secret in otpauth URI")
    if not BASE32_RE.match(secret):
        raise OtpauthParseError("Invalid Base32 secret format")

    serial = params.get("serial", "").strip()
    if serial:
        account = f"{account} ({serial})"

    return TotpEntry(
        name=account,
        issuer=issuer,
        secret=secret.upper(),
        digits=_int_param(params.get("digits"), 6),
        period=_int_param(params.get("period"), 30),
    )


def _int_param(value: Optional[str], default: int) -> int:
    try:
        number = int(value)
    except (TypeError, ValueError):
        return default
    return number or default
