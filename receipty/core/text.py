"""
Text helpers shared by the web layer and the job store.
"""

from __future__ import annotations

import hashlib

PREVIEW_LENGTH = 120


def sanitize_text(value: str) -> str:
    """
    Normalize newlines and drop everything that is not printable ASCII, LF or TAB.
    """
    normalized = value.replace("\r\n", "\n").replace("\r", "\n")
    return "".join(c for c in normalized if c in "\n\t" or 0x20 <= ord(c) <= 0x7E)


def hash_text(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def hash_bytes(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def preview_text(text: str, max_length: int = PREVIEW_LENGTH) -> str:
    return text if len(text) <= max_length else text[:max_length]


__all__ = ["PREVIEW_LENGTH", "hash_bytes", "hash_text", "preview_text", "sanitize_text"]
