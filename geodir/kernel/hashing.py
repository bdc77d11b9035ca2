from __future__ import annotations

import hashlib


def sha256_hexdigest(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def build_idempotency_key(*parts: str) -> str:
    """Create an idempotency key from ordered parts."""
    joined = "||".join(parts).encode("utf-8", errors="ignore")
    return sha256_hexdigest(joined)


def hash_token(token: str) -> str:
    """Digest a confirmation token for storage; raw tokens are never persisted."""
    return sha256_hexdigest(token.strip().encode("utf-8"))
