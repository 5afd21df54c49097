"""
Time-based one-time passwords (RFC 6238) for admin/user 2FA

SHA-1, 30 second step, 6 digits, base32 secrets; compatible with
Google Authenticator and similar apps.
"""

import base64
import hashlib
import hmac
import secrets
import struct
import time
from typing import Optional
from urllib.parse import quote, urlencode

from config.config import TOTP_ISSUER

STEP_SECONDS = 30
DIGITS = 6
# Accept codes from one step before/after to absorb clock drift
VALID_WINDOW = 1


def generate_secret(length: int = 20) -> str:
    """Random base32 secret (no padding)"""
    return base64.b32encode(secrets.token_bytes(length)).decode("ascii").rstrip("=")


def _decode_secret(secret: str) -> bytes:
    normalized = secret.strip().replace(" ", "").upper()
    padding = "=" * (-len(normalized) % 8)
    return base64.b32decode(normalized + padding)


def hotp(secret: str, counter: int, digits: int = DIGITS) -> str:
    """HMAC-based one-time password (RFC 4226)"""
    digest = hmac.new(_decode_secret(secret), struct.pack(">Q", counter), hashlib.sha1).digest()
    offset = digest[-1] & 0x0F
    code = struct.unpack(">I", digest[offset:offset + 4])[0] & 0x7FFFFFFF
    return str(code % (10 ** digits)).zfill(digits)


def totp(secret: str, for_time: Optional[float] = None) -> str:
    """Code for the step containing `for_time` (defaults to now)"""
    timestamp = time.time() if for_time is None else for_time
    return hotp(secret, int(timestamp // STEP_SECONDS))


def verify_totp(secret: Optional[str], code: Optional[str], for_time: Optional[float] = None) -> bool:
    """
    Check a user-supplied code against the secret

    Args:
        secret: Base32 secret stored for the user
        code: 6-digit code (spaces ignored)
        for_time: Override clock (tests)

    Returns:
        True if code matches the current step or one step either side
    """
    if not secret or not code:
        return False

    code = code.strip().replace(" ", "")
    if len(code) != DIGITS or not code.isdigit():
        return False

    timestamp = time.time() if for_time is None else for_time
    counter = int(timestamp // STEP_SECONDS)
    try:
        candidates = [hotp(secret, counter + drift) for drift in range(-VALID_WINDOW, VALID_WINDOW + 1)]
    except (ValueError, TypeError):
        # Corrupted secret
        return False
    return any(hmac.compare_digest(code, candidate) for candidate in candidates)


def provisioning_uri(secret: str, account_name: str, issuer: str = TOTP_ISSUER) -> str:
    """otpauth:// URI for QR codes"""
    label = quote(f"{issuer}:{account_name}")
    params = urlencode({
        "secret": secret,
        "issuer": issuer,
        "algorithm": "SHA1",
        "digits": DIGITS,
        "period": STEP_SECONDS,
    })
    return f"otpauth://totp/{label}?{params}"
