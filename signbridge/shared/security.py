"""
Security utilities for SignBridge.

Provides:
- PII hashing for audit logs
- Token masking for configuration output
- Constant-time webhook token checks
"""

import os
import hashlib
import secrets


def hash_pii(value: str) -> str:
    """
    One-way hash for PII in logs.

    Use this for logging emails, names, etc. so they're
    searchable but not readable.
    """
    if not value:
        return ""

    salt = os.environ.get("PII_HASH_SALT", "signbridge-pii").encode()
    return hashlib.sha256(salt + value.encode()).hexdigest()[:16]


def mask_token(token: str, visible_chars: int = 4) -> str:
    """
    Mask a token for display.

    eyJhbGciOi...xyz9 -> eyJh•••xyz9
    """
    if not token or len(token) <= visible_chars * 2:
        return "•" * 12

    return token[:visible_chars] + "•••" + token[-visible_chars:]


def verify_token(provided: str | None, expected: str) -> bool:
    """Compare a shared-secret token without leaking timing information."""
    if not provided or not expected:
        return False
    return secrets.compare_digest(provided.encode(), expected.encode())


def looks_like_uuid(value: str) -> bool:
    """Check if value has the 8-4-4-4-12 shape D4Sign uses for identifiers."""
    parts = value.split("-")
    if [len(p) for p in parts] != [8, 4, 4, 4, 12]:
        return False
    return all(c in "0123456789abcdefABCDEF" for c in "".join(parts))
