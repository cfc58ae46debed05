"""
Timestamp tokens embedded in snapshot file names.

Token format:
    YYYY-MM-DD_HH-MM-SS   e.g. 2024-01-15_14-30-25

The token is fixed width (19 chars), sorts lexicographically in time order,
and uses no ':' so it is safe in file names on every platform. Instants are
naive local time at one-second resolution.

Invariants:
    - decode(encode(t)) == t for every second-resolution instant
    - decode never raises; malformed tokens decode to None
    - A token that decodes to None is "not a snapshot", never a hard error
"""

from __future__ import annotations

import re
from datetime import datetime

TOKEN_LENGTH = 19

_TOKEN_RE = re.compile(r"([0-9]{4})-([0-9]{2})-([0-9]{2})_([0-9]{2})-([0-9]{2})-([0-9]{2})")


def encode(instant: datetime) -> str:
    """Encode an instant as a snapshot timestamp token (microseconds dropped)."""
    # strftime("%Y") does not zero-pad years below 1000 on every platform
    return (
        f"{instant.year:04d}-{instant.month:02d}-{instant.day:02d}"
        f"_{instant.hour:02d}-{instant.minute:02d}-{instant.second:02d}"
    )


def decode(token: object) -> datetime | None:
    """Decode a token back to a naive datetime.

    Returns:
        The decoded instant, or None if the token is malformed or names an
        impossible date/time (month 13, Feb 30, hour 24, ...).
    """
    if not isinstance(token, str) or len(token) != TOKEN_LENGTH:
        return None
    match = _TOKEN_RE.fullmatch(token)
    if not match:
        return None
    year, month, day, hour, minute, second = (int(part) for part in match.groups())
    try:
        return datetime(year, month, day, hour, minute, second)
    except ValueError:
        return None


def extract_token(file_name: str, extension: str, source_name: str | None = None) -> str | None:
    """Pull the token out of '<source_name>.<token><extension>'.

    When source_name is given the file name must start with it; otherwise
    the token is taken from the position right before the extension.
    Extension matching is case-insensitive.
    """
    if not file_name.lower().endswith(extension.lower()):
        return None
    stem = file_name[: len(file_name) - len(extension)]
    if source_name is not None:
        prefix = f"{source_name}."
        if not stem.startswith(prefix):
            return None
        token = stem[len(prefix):]
    else:
        head, sep, token = stem.rpartition(".")
        if not sep or not head:
            return None
    if len(token) != TOKEN_LENGTH:
        return None
    return token
