"""Utility functions shared by the container, decoder and assembler layers."""

import time
from datetime import datetime, timezone, timedelta
from typing import Optional

from .errors import ParseCancelledError

# Windows FILETIME epoch: January 1, 1601
_FILETIME_EPOCH = datetime(1601, 1, 1, tzinfo=timezone.utc)
_TICKS_PER_MICROSECOND = 10

# Written by some clients for "no date"
FILETIME_NEVER = 0x7FFFFFFFFFFFFFFF


def filetime_to_datetime(ft: int) -> Optional[datetime]:
    """Convert a FILETIME to an aware UTC datetime.

    Returns None for the zero and "never" sentinels.

    Raises:
        ValueError: if the value is outside the range datetime supports.
    """
    if ft == 0 or ft >= FILETIME_NEVER:
        return None
    try:
        return _FILETIME_EPOCH + timedelta(microseconds=ft // _TICKS_PER_MICROSECOND)
    except OverflowError as e:
        raise ValueError(f"FILETIME out of range: {ft:#x}") from e


def sanitize_text(value: Optional[str]) -> Optional[str]:
    """Return value as a string that is guaranteed to encode as UTF-8.

    Lone surrogates (left over from broken UTF-16) become U+FFFD and NUL
    characters are removed. None passes through.
    """
    if value is None:
        return None
    cleaned = value.encode('utf-8', errors='surrogatepass') \
        .decode('utf-8', errors='replace') if _has_surrogates(value) else value
    return cleaned.replace('\x00', '')


def _has_surrogates(value: str) -> bool:
    return any('\ud800' <= ch <= '\udfff' for ch in value)


class Deadline:
    """Cooperative cancellation checked between parse stages.

    Usage:
        deadline = Deadline(timeout=5.0, cancel=event)
        deadline.check('container')
    """

    def __init__(self, timeout: Optional[float] = None, cancel=None):
        self._expires = time.monotonic() + timeout if timeout is not None else None
        self._cancel = cancel

    def check(self, stage: str):
        """Raise ParseCancelledError if the deadline passed or cancel is set."""
        if self._cancel is not None and self._cancel.is_set():
            raise ParseCancelledError(f"parse cancelled before stage '{stage}'")
        if self._expires is not None and time.monotonic() > self._expires:
            raise ParseCancelledError(f"parse deadline exceeded before stage '{stage}'")
