# © 2024–2025 Harnisch LLC. All Rights Reserved.
# Licensed exclusively for use by St. Edward Church & School (Nashville, TN).
# Unauthorized use, distribution, or modification is prohibited.

"""
Normalizer - Turns upstream records and stored documents into ScheduleEntry

Field aliasing between the upstream wire format and the stored document
format is resolved here and nowhere else.
"""
import logging
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, Optional

import pytz

from models import IncomingRecord, NamedRef, ScheduleEntry, StoredRecord
from signature_utils import normalize_text, sort_refs
from storage.document_store import SERVER_TIMESTAMP
from utils.timezone import millis_to_day, to_millis

logger = logging.getLogger(__name__)

EPOCH = datetime(1970, 1, 1, tzinfo=pytz.UTC)


class InvalidRecordError(ValueError):
    """A record cannot be turned into a schedule entry"""
    pass


# =============================================================================
# VALUE HELPERS
# =============================================================================

def millis_from_value(value: Any) -> int:
    """
    Epoch milliseconds from any time encoding the upstream or the store uses

    Accepts int/float millis, digit strings, ISO-8601 strings, datetimes and
    ``{"seconds": .., "nanoseconds": ..}`` timestamp dicts.
    """
    if isinstance(value, bool) or value is None:
        raise InvalidRecordError(f"Not a time value: {value!r}")
    try:
        if isinstance(value, (int, float)):
            return int(value)
        if isinstance(value, datetime):
            return to_millis(value)
        if isinstance(value, dict) and 'seconds' in value:
            return int(value['seconds']) * 1000 + int(value.get('nanoseconds', 0)) // 1_000_000
    except (ValueError, TypeError, OverflowError) as e:
        raise InvalidRecordError(f"Malformed time value {value!r}: {e}") from e
    if isinstance(value, str):
        text = value.strip()
        if text.lstrip('-').isdigit():
            return int(text)
        try:
            return to_millis(datetime.fromisoformat(text.replace('Z', '+00:00')))
        except ValueError:
            pass
    raise InvalidRecordError(f"Unparseable time value: {value!r}")


def datetime_from_millis(millis: int) -> datetime:
    return EPOCH + timedelta(milliseconds=millis)


def _refs(items: Optional[Iterable[Dict[str, Any]]], id_field: str, name_field: str) -> tuple:
    refs = []
    for item in items or []:
        if not isinstance(item, dict):
            continue
        try:
            ref_id = int(item.get(id_field))
        except (TypeError, ValueError):
            logger.debug(f"Dropping reference without numeric '{id_field}': {item}")
            continue
        refs.append(NamedRef(ref_id, normalize_text(item.get(name_field))))
    return sort_refs(refs)


def _entry(subject_full, subject_short, start, end, day, class_type, lecturers, rooms) -> ScheduleEntry:
    start_time = millis_from_value(start)
    end_time = millis_from_value(end)
    return ScheduleEntry(
        subject_full_name=normalize_text(subject_full),
        subject_short_name=normalize_text(subject_short),
        start_time=start_time,
        end_time=end_time,
        day=normalize_text(day) or millis_to_day(start_time),
        class_type=normalize_text(class_type),
        lecturers=lecturers,
        rooms=rooms,
    )


# =============================================================================
# UPSTREAM RECORDS
# =============================================================================

def extract_source_id(raw: Dict[str, Any]) -> Optional[str]:
    """Upstream meeting identifier (``idSpotkania.idSpotkania``) or None"""
    meeting = raw.get('idSpotkania')
    source_id = meeting.get('idSpotkania') if isinstance(meeting, dict) else meeting
    if source_id is None or isinstance(source_id, bool):
        return None
    source_id = str(source_id).strip()
    return source_id or None


def normalize_incoming(raw: Dict[str, Any]) -> IncomingRecord:
    """
    Normalize one upstream schedule record

    Raises:
        InvalidRecordError: If the record has no identifier or no usable times
    """
    source_id = extract_source_id(raw)
    if source_id is None:
        raise InvalidRecordError("Record has no upstream identifier")

    instances = raw.get('listaIdZajecInstancji') or []
    class_type = instances[0].get('typZajec') if instances and isinstance(instances[0], dict) else None

    entry = _entry(
        raw.get('nazwaPelnaPrzedmiotu'),
        raw.get('nazwaSkroconaPrzedmiotu'),
        raw.get('dataRozpoczecia'),
        raw.get('dataZakonczenia'),
        None,
        class_type,
        _refs(raw.get('wykladowcy'), 'idProwadzacego', 'stopienImieNazwisko'),
        _refs(raw.get('sale'), 'idSali', 'nazwaSkrocona'),
    )
    return IncomingRecord(source_id=source_id, entry=entry)


# =============================================================================
# STORED DOCUMENTS
# =============================================================================

def normalize_stored(doc_id: str, data: Dict[str, Any]) -> StoredRecord:
    """
    Normalize one stored schedule document

    Documents written before ``sourceClassId`` existed used the upstream
    identifier as their document id.

    Raises:
        InvalidRecordError: If the stored times are unusable
    """
    entry = _entry(
        data.get('subjectFullName'),
        data.get('subjectShortName'),
        data.get('startTime'),
        data.get('endTime'),
        data.get('day'),
        data.get('classType'),
        _refs(data.get('lecturers'), 'id', 'name'),
        _refs(data.get('rooms'), 'id', 'name'),
    )
    source_id = normalize_text(data.get('sourceClassId')) or doc_id
    return StoredRecord(doc_id=doc_id, source_id=source_id, entry=entry)


def to_save_form(entry: ScheduleEntry, group_id: int, week_id: str, source_id: str) -> Dict[str, Any]:
    """Document data written for one schedule entry"""
    return {
        'subjectFullName': entry.subject_full_name,
        'subjectShortName': entry.subject_short_name,
        'startTime': datetime_from_millis(entry.start_time),
        'endTime': datetime_from_millis(entry.end_time),
        'day': entry.day,
        'classType': entry.class_type,
        'weekId': week_id,
        'lecturers': [ref.to_dict() for ref in entry.lecturers],
        'rooms': [ref.to_dict() for ref in entry.rooms],
        'sourceGroupId': group_id,
        'sourceClassId': source_id,
        'lastUpdated': SERVER_TIMESTAMP,
    }
