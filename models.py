# © 2024–2025 Harnisch LLC. All Rights Reserved.
# Licensed exclusively for use by St. Edward Church & School (Nashville, TN).
# Unauthorized use, distribution, or modification is prohibited.

"""
Data models for the academic schedule sync
"""
from dataclasses import dataclass, field, fields
from typing import Any, Dict, List, Optional, Tuple

# =============================================================================
# SCHEDULE ENTRIES
# =============================================================================


@dataclass(frozen=True)
class NamedRef:
    """A lecturer or a room as the upstream identifies it"""
    id: int
    name: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {'id': self.id, 'name': self.name}


@dataclass(frozen=True)
class ScheduleEntry:
    """
    Canonical comparison form of one scheduled meeting.

    Produced from either an upstream record or a stored document, so two
    entries compare equal exactly when they describe the same meeting data.
    Lecturers and rooms are always sorted by id.
    """
    subject_full_name: Optional[str]
    subject_short_name: Optional[str]
    start_time: int
    end_time: int
    day: str
    class_type: Optional[str]
    lecturers: Tuple[NamedRef, ...] = ()
    rooms: Tuple[NamedRef, ...] = ()

    def changed_fields(self, other: 'ScheduleEntry') -> List[str]:
        """Names of the fields whose values differ from ``other``"""
        return [
            f.name for f in fields(self)
            if getattr(self, f.name) != getattr(other, f.name)
        ]


@dataclass(frozen=True)
class IncomingRecord:
    """An upstream record after normalization"""
    source_id: str
    entry: ScheduleEntry


@dataclass(frozen=True)
class StoredRecord:
    """A stored schedule document after normalization"""
    doc_id: str
    source_id: str
    entry: ScheduleEntry


# =============================================================================
# GROUP TREE
# =============================================================================

NODE_UNIT = 'unit'
NODE_STUDY_MODE = 'study-mode'
NODE_CYCLE = 'cycle'
NODE_DEAN_GROUP = 'dean-group'
NODE_PARENT = 'parent'

# Upstream type names -> node kinds
UPSTREAM_NODE_KINDS = {
    'jednostka': NODE_UNIT,
    'rodzajetapu': NODE_STUDY_MODE,
    'cykl': NODE_CYCLE,
    'grupadziekanska': NODE_DEAN_GROUP,
}


@dataclass(frozen=True)
class GroupTreeNode:
    """One node of the organizational hierarchy"""
    kind: str
    label: str
    id: Optional[int] = None
    children: Tuple['GroupTreeNode', ...] = ()

    @classmethod
    def from_api(cls, raw: Dict[str, Any]) -> 'GroupTreeNode':
        """Build a node (and its subtree) from an upstream tree item"""
        kind = UPSTREAM_NODE_KINDS.get(raw.get('type'), NODE_PARENT)
        raw_id = raw.get('id')
        node_id = None
        if kind == NODE_DEAN_GROUP and isinstance(raw_id, int) and not isinstance(raw_id, bool):
            node_id = raw_id
        children = tuple(
            cls.from_api(child) for child in (raw.get('children') or [])
            if isinstance(child, dict) and '_reference' not in child
        )
        return cls(kind=kind, label=str(raw.get('label') or ''), id=node_id, children=children)


@dataclass(frozen=True)
class ProcessingContext:
    """Nearest-ancestor labels on the path from the root of the group tree"""
    field_of_study: Optional[str] = None
    study_mode: Optional[str] = None
    semester: Optional[str] = None


# =============================================================================
# WRITES
# =============================================================================

OP_SET = 'set'
OP_DELETE = 'delete'


@dataclass(frozen=True)
class WriteOperation:
    """One upsert (merge) or delete against a document path"""
    kind: str
    path: str
    data: Dict[str, Any] = field(default_factory=dict)
    merge: bool = True

    @classmethod
    def upsert(cls, path: str, data: Dict[str, Any]) -> 'WriteOperation':
        return cls(kind=OP_SET, path=path, data=data, merge=True)

    @classmethod
    def delete(cls, path: str) -> 'WriteOperation':
        return cls(kind=OP_DELETE, path=path)


# =============================================================================
# CALENDAR
# =============================================================================


@dataclass(frozen=True)
class SemesterInfo:
    """Semester identifier (e.g. 2024Z, 2025L) and its academic year"""
    identifier: str
    academic_year: str
    academic_year_start: int

    @property
    def is_winter(self) -> bool:
        return self.identifier.endswith('Z')
