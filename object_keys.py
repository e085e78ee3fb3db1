"""Room-scoped storage keys.

Layout: ``transfer/rooms/<CODE>/<uploadEpochMillis>__<sanitized filename>``.
The layout is the registry in listing mode, so encoding and decoding must stay
bit-exact.
"""
from typing import Optional, Tuple

from constants import ROOM_KEY_PREFIX

NAME_SEPARATOR = "__"


def room_prefix(code: str) -> str:
    return f"{ROOM_KEY_PREFIX}{code}/"


def sanitize_filename(filename: str) -> str:
    return filename.replace("/", "_")


def build_object_key(code: str, filename: str, uploaded_at_ms: int) -> str:
    return f"{room_prefix(code)}{uploaded_at_ms}{NAME_SEPARATOR}{sanitize_filename(filename)}"


def parse_object_key(key: str) -> Tuple[Optional[int], str]:
    """Return (upload epoch millis or None, display name) for a stored key.

    Everything after the first ``__`` is the name, so names that themselves
    contain ``__`` survive. Keys without a usable name part fall back to the
    whole trailing segment.
    """
    if key.startswith(ROOM_KEY_PREFIX):
        name_part = key[len(ROOM_KEY_PREFIX):].split("/", 1)[-1]
    else:
        name_part = key.rsplit("/", 1)[-1]
    stamp, *rest = name_part.split(NAME_SEPARATOR)
    name = NAME_SEPARATOR.join(rest) or name_part

    uploaded_at_ms = int(stamp) if rest and stamp.isdigit() else None
    return uploaded_at_ms, name
