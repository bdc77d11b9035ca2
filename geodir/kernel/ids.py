from __future__ import annotations

import re
from uuid import uuid4

# Subscriptions, ratings and dispatch rows carry a short type prefix; entries do not.
_PREFIX_RE = re.compile(r"^[a-z]{2,8}$")


def new_id() -> str:
    return uuid4().hex


def new_prefixed_id(prefix: str) -> str:
    """Return `{prefix}_{uuidhex}`, e.g. `sub_3f2a...`."""
    if not _PREFIX_RE.fullmatch(prefix):
        raise ValueError(f"Invalid id prefix: {prefix!r}")
    return f"{prefix}_{new_id()}"
