"""Occurrence key encoding and decoding.

An occurrence key identifies one (template, date, time slot) triple. Keys
are opaque to every other module: they are built and parsed only here.

Format::

    occ1:<percent-encoded template id>:<YYYYMMDD>:<time slot index>

Percent-encoding the template ID with no safe characters guarantees the
encoded part contains no ``:``, which keeps the format unambiguous for any
template ID.
"""

import logging
import re
from datetime import date
from urllib.parse import quote, unquote

from ..exceptions import MalformedKey
from ..models import OccurrenceKey

logger = logging.getLogger(__name__)

KEY_PREFIX = "occ1"
INSTANCE_ID_SEPARATOR = "::"

_KEY_RE = re.compile(r"^occ1:([^:]+):(\d{8}):(0|[1-9]\d*)$")


def encode(template_id: str, occurrence_date: date, time_slot_index: int) -> str:
    """Encode an occurrence into its key.

    Args:
        template_id: Non-empty template ID
        occurrence_date: Local date of the occurrence
        time_slot_index: Index into the rule's times_of_day (>= 0)

    Returns:
        Stable key string

    Raises:
        ValueError: If an argument is outside the valid domain
    """
    if not template_id or not isinstance(template_id, str):
        raise ValueError("template_id must be a non-empty string")
    if not isinstance(time_slot_index, int) or isinstance(time_slot_index, bool):
        raise ValueError("time_slot_index must be an integer")
    if time_slot_index < 0:
        raise ValueError("time_slot_index must be >= 0")

    return (
        f"{KEY_PREFIX}:{quote(template_id, safe='')}:"
        f"{occurrence_date.year:04d}{occurrence_date.month:02d}{occurrence_date.day:02d}:"
        f"{time_slot_index}"
    )


def decode(key: str) -> OccurrenceKey:
    """Decode a key produced by ``encode``.

    Raises:
        MalformedKey: If the key was not produced by ``encode``
    """
    if not isinstance(key, str):
        raise MalformedKey(f"Occurrence key must be a string, got {type(key).__name__}")

    match = _KEY_RE.match(key)
    if not match:
        raise MalformedKey(f"Malformed occurrence key: {key!r}")

    encoded_id, date_part, slot_part = match.groups()
    try:
        template_id = unquote(encoded_id, errors="strict")
        occurrence_date = date(int(date_part[:4]), int(date_part[4:6]), int(date_part[6:]))
    except (UnicodeDecodeError, ValueError) as e:
        raise MalformedKey(f"Malformed occurrence key: {key!r}") from e

    decoded = OccurrenceKey(
        template_id=template_id,
        date=occurrence_date,
        time_slot_index=int(slot_part),
    )

    # Reject non-canonical spellings (e.g. "%7e" vs "~") so each
    # occurrence has exactly one key.
    if not template_id or encode(template_id, occurrence_date, decoded.time_slot_index) != key:
        raise MalformedKey(f"Non-canonical occurrence key: {key!r}")

    return decoded


def is_valid_key(key: str) -> bool:
    """Check whether ``key`` decodes."""
    try:
        decode(key)
    except MalformedKey:
        return False
    return True


def instance_id_for(template_id: str, key: str) -> str:
    """Build the deterministic ID of a generated (not yet persisted) instance."""
    return f"{template_id}{INSTANCE_ID_SEPARATOR}{key}"
