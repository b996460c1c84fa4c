"""Process identity and stable hashing."""

from __future__ import annotations

import functools
import hashlib
import os
import socket
import uuid


@functools.lru_cache(maxsize=1)
def process_identity() -> str:
    """Return ``"{hostname}-{pid}"`` for the current process.

    Not globally unique, only stable for the lifetime of the process.
    Used as the dedup owner tag and as jitter seed.
    """
    return f"{socket.gethostname()}-{os.getpid()}"


def stable_hash(value: str) -> int:
    """Return a non-negative hash that is identical across interpreter runs.

    ``hash()`` on strings is salted per process, so it cannot be used to
    spread replicas deterministically.
    """
    digest = hashlib.blake2b(value.encode("utf-8"), digest_size=8).digest()
    return int.from_bytes(digest, "big")


def generate_token() -> str:
    """Generate a random lease holder token."""
    return uuid.uuid4().hex
