"""Guardian identity digests.

Guardians are stored only as SHA3-256 digests of their account identifier.
The plaintext account is published only through an explicit reveal.
"""

from __future__ import annotations

import hashlib
import re

from .errors import MalformedDigestError

_HEX_ADDRESS = re.compile(r"^0x[0-9a-fA-F]+$")
_DIGEST = re.compile(r"^[0-9a-f]{64}$")


def normalize_account(account: str) -> str:
    """Canonical form of an account identifier.

    Hex addresses (``0x...``) are case-insensitive, so they are lower-cased.
    Other identifiers are only stripped.
    """
    if not isinstance(account, str) or not account.strip():
        raise ValueError("account must be a non-empty string")
    account = account.strip()
    if _HEX_ADDRESS.match(account):
        return account.lower()
    return account


def guardian_digest(account: str) -> str:
    return hashlib.sha3_256(normalize_account(account).encode("utf-8")).hexdigest()


def normalize_digest(digest: str) -> str:
    if not isinstance(digest, str):
        raise MalformedDigestError(f"digest must be a string, got {type(digest).__name__}")
    d = digest.strip().lower()
    if d.startswith("0x"):
        d = d[2:]
    if not _DIGEST.match(d):
        raise MalformedDigestError(f"not a 32-byte hex digest: {digest!r}")
    return d
