"""Hashing utilities."""

from __future__ import annotations

import hashlib


def sha256_bytes(data: bytes) -> str:
    """Return hex digest for bytes input."""
    return hashlib.sha256(data).hexdigest()


def content_hash(text: str) -> str:
    """Return the content address for embedded text.

    The digest is 64 lowercase hex characters and depends only on the text,
    so identical hunks seen in different pull requests share one address.
    """
    return sha256_bytes(text.encode("utf-8"))


__all__ = ["sha256_bytes", "content_hash"]
