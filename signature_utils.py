# © 2024–2025 Harnisch LLC. All Rights Reserved.
# Licensed exclusively for use by St. Edward Church & School (Nashville, TN).
# Unauthorized use, distribution, or modification is prohibited.

"""
CRITICAL: Soft Key Generation Utilities

The soft key is the identity the reconciler matches schedule entries on.
The upstream reassigns its own meeting identifiers from time to time, so two
entries with the same soft key are the same real-world meeting.

Changing the key format makes every stored entry look new on the next run:
all of them get deleted and re-created under fresh document ids.
"""

import logging
from typing import Iterable, Optional

from models import NamedRef, ScheduleEntry

logger = logging.getLogger(__name__)

SOFT_KEY_DELIMITER = '|'
ID_LIST_DELIMITER = ','


def generate_soft_key(entry: ScheduleEntry) -> str:
    """
    Generate the soft key for a canonical schedule entry.

    Format: ``day|startTimeMillis|classType|subjectShortName|lecturerIds|roomIds``
    with id lists sorted ascending and absent values rendered as "".

    Args:
        entry: Canonical schedule entry

    Returns:
        Soft key string
    """
    parts = [
        entry.day,
        str(entry.start_time),
        entry.class_type or '',
        entry.subject_short_name or '',
        _join_ids(entry.lecturers),
        _join_ids(entry.rooms),
    ]
    return SOFT_KEY_DELIMITER.join(parts)


def _join_ids(refs: Iterable[NamedRef]) -> str:
    return ID_LIST_DELIMITER.join(str(ref_id) for ref_id in sorted(ref.id for ref in refs))


def normalize_text(value) -> Optional[str]:
    """
    Trim a text field; empty and missing values become None.

    Args:
        value: Raw field value

    Returns:
        Trimmed string or None
    """
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def sort_refs(refs: Iterable[NamedRef]) -> tuple:
    """Sort lecturers/rooms ascending by numeric id"""
    return tuple(sorted(refs, key=lambda ref: ref.id))
