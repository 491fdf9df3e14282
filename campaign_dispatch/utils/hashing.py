"""Hash helpers shared by dedup keys, job ids and signature bases."""
from __future__ import annotations

import hashlib


def sha256_hex(data: bytes | str) -> str:
    if isinstance(data, str):
        data = data.encode("utf-8")
    return hashlib.sha256(data).hexdigest()


def normalize_email(email: str) -> str:
    return str(email or "").strip().lower()


def email_hash(email: str) -> str:
    """Stable, case-folded recipient key; keeps raw addresses out of dedup rows."""
    return sha256_hex(normalize_email(email))


__all__ = ["sha256_hex", "normalize_email", "email_hash"]
