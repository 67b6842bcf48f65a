"""
Small shared utilities.
"""
from __future__ import annotations

import re
import time
import unicodedata
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Generator

_WS_RE = re.compile(r"\s+")


@contextmanager
def timer() -> Generator[dict, None, None]:
    """Context manager that records elapsed wall-clock milliseconds."""
    result: dict = {}
    start = time.perf_counter()
    try:
        yield result
    finally:
        result["elapsed_ms"] = int((time.perf_counter() - start) * 1000)


def new_id() -> str:
    return str(uuid.uuid4())


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def normalize_text(text: str) -> str:
    """Lower-case, trim and collapse whitespace."""
    return _WS_RE.sub(" ", (text or "").strip().lower())


def strip_accents(text: str) -> str:
    """Remove diacritics so 'março' and 'marco' compare equal."""
    decomposed = unicodedata.normalize("NFKD", text)
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch))
