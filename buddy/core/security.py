"""Password hashing and opaque session tokens.

Password records are self-describing so verification keeps working when the
default parameters change::

    pbkdf2$<iterations>$<salt b64url>$<derived key b64url>
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import secrets

PBKDF2_TAG = "pbkdf2"
PBKDF2_DIGEST = "sha256"
MIN_ITERATIONS = 50_000
MAX_ITERATIONS = 100_000
MAX_VERIFY_ITERATIONS = 1_000_000
SALT_BYTES = 16
KEY_BYTES = 32
TOKEN_BYTES = 32


def _b64url_encode(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def _b64url_decode(text: str) -> bytes:
    padding = "=" * (-len(text) % 4)
    return base64.urlsafe_b64decode(text + padding)


def clamp_iterations(iterations: int) -> int:
    """Keep the work factor inside the range the platform can afford."""
    return max(MIN_ITERATIONS, min(MAX_ITERATIONS, int(iterations)))


def hash_password(password: str, iterations: int = MAX_ITERATIONS) -> str:
    """Derive a storable password record with a fresh random salt."""
    iters = clamp_iterations(iterations)
    salt = secrets.token_bytes(SALT_BYTES)
    key = hashlib.pbkdf2_hmac(PBKDF2_DIGEST, password.encode("utf-8"), salt, iters, dklen=KEY_BYTES)
    return f"{PBKDF2_TAG}${iters}${_b64url_encode(salt)}${_b64url_encode(key)}"


def verify_password(password: str, record: str) -> bool:
    """Check a password against a stored record.

    A malformed record is reported as a mismatch so callers answer it
    exactly like a wrong password.
    """
    parts = (record or "").split("$")
    if len(parts) != 4 or parts[0] != PBKDF2_TAG:
        return False
    try:
        iterations = int(parts[1])
        salt = _b64url_decode(parts[2])
        expected = _b64url_decode(parts[3])
    except (ValueError, binascii.Error):
        return False
    if not 0 < iterations <= MAX_VERIFY_ITERATIONS or not salt or not expected:
        return False

    derived = hashlib.pbkdf2_hmac(
        PBKDF2_DIGEST,
        password.encode("utf-8"),
        salt,
        iterations,
        dklen=len(expected),
    )
    return hmac.compare_digest(derived, expected)


# ── Session tokens ──────────────────────────────────────────────────


def generate_token() -> str:
    """High-entropy bearer token, handed to the client exactly once."""
    return secrets.token_urlsafe(TOKEN_BYTES)


def hash_token(raw_token: str) -> str:
    """One-way digest stored in place of the raw token."""
    return hashlib.sha256(raw_token.encode("utf-8")).hexdigest()
