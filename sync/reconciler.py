# © 2024–2025 Harnisch LLC. All Rights Reserved.
# Licensed exclusively for use by St. Edward Church & School (Nashville, TN).
# Unauthorized use, distribution, or modification is prohibited.

"""
Reconciler - Soft-key diff of one (group, week) schedule snapshot

Matches freshly fetched entries against the stored ones by soft key, not by
the upstream identifier, and queues the minimal upserts and deletes into a
BatchWriter. Never commits anything itself.
"""
import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, Optional, Set, Tuple

import config
from models import IncomingRecord, StoredRecord, WriteOperation
from signature_utils import generate_soft_key
from sync.batch_writer import BatchWriter
from sync.normalizer import InvalidRecordError, normalize_incoming, normalize_stored, to_save_form

logger = logging.getLogger(__name__)


def class_document_path(group_id: int, doc_id: str) -> str:
    return f"{config.SCHEDULES_COLLECTION}/{group_id}/{config.CLASSES_SUBCOLLECTION}/{doc_id}"


def new_document_id() -> str:
    return uuid.uuid4().hex


@dataclass
class ExistingSnapshot:
    """Stored entries of one (group, week), indexed by document id and soft key"""
    by_id: Dict[str, Optional[StoredRecord]] = field(default_factory=dict)
    by_soft_key: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_documents(cls, documents: Iterable[Tuple[str, Dict[str, Any]]]) -> 'ExistingSnapshot':
        """
        Build the snapshot from (doc_id, data) pairs

        Unreadable documents are left out of the soft-key index, so they
        end up deleted and replaced by a clean copy.
        """
        snapshot = cls()
        for doc_id, data in documents:
            try:
                record = normalize_stored(doc_id, data)
            except InvalidRecordError as e:
                logger.warning(f"Stored document {doc_id} is unreadable ({e}) - it will be replaced")
                snapshot.by_id[doc_id] = None
                continue

            snapshot.by_id[doc_id] = record
            soft_key = generate_soft_key(record.entry)
            if soft_key in snapshot.by_soft_key:
                logger.warning(
                    f"Stored documents {snapshot.by_soft_key[soft_key]} and {doc_id} share a soft key - "
                    f"keeping {doc_id}"
                )
            snapshot.by_soft_key[soft_key] = doc_id
        return snapshot

    def __len__(self):
        return len(self.by_id)


@dataclass
class ReconcileResult:
    """Outcome of one reconciliation"""
    operations: int = 0
    added: int = 0
    updated: int = 0
    deleted: int = 0
    skipped: int = 0
    claimed: Set[str] = field(default_factory=set)

    @property
    def changed(self) -> int:
        """Meetings added, updated or deleted"""
        return self.added + self.updated + self.deleted

    def to_dict(self) -> Dict[str, int]:
        return {
            'operations': self.operations,
            'changed': self.changed,
            'added': self.added,
            'updated': self.updated,
            'deleted': self.deleted,
            'skipped': self.skipped,
        }


def _dedupe_incoming(raw_records: Iterable[Dict[str, Any]], result: ReconcileResult) -> Dict[str, IncomingRecord]:
    incoming: Dict[str, IncomingRecord] = {}
    for raw in raw_records:
        try:
            record = normalize_incoming(raw)
        except InvalidRecordError as e:
            logger.warning(f"Skipping upstream record: {e}")
            result.skipped += 1
            continue

        soft_key = generate_soft_key(record.entry)
        if soft_key in incoming:
            logger.warning(
                f"Upstream records {incoming[soft_key].source_id} and {record.source_id} share soft key "
                f"'{soft_key}' - keeping {record.source_id}"
            )
            del incoming[soft_key]
        incoming[soft_key] = record
    return incoming


def reconcile(
    existing: ExistingSnapshot,
    incoming_records: Iterable[Dict[str, Any]],
    batch_writer: BatchWriter,
    group_id: int,
    week_id: str,
    id_factory: Optional[Callable[[], str]] = None
) -> ReconcileResult:
    """
    Diff one (group, week) and queue the writes that make the store match

    Args:
        existing: Stored entries for the same (group, week)
        incoming_records: Raw upstream records for the (group, week)
        batch_writer: Writer receiving the operations
        group_id: Dean group id
        week_id: Week identifier (Monday 00:00 in epoch millis, as a string)
        id_factory: Document id allocator for new entries

    Returns:
        ReconcileResult with operation and change counts
    """
    id_factory = id_factory or new_document_id
    result = ReconcileResult()

    for soft_key, record in _dedupe_incoming(incoming_records, result).items():
        doc_id = existing.by_soft_key.get(soft_key)

        if doc_id is not None:
            result.claimed.add(doc_id)
            stored = existing.by_id[doc_id]
            changed_fields = record.entry.changed_fields(stored.entry)
            if stored.source_id != record.source_id:
                changed_fields.append('sourceClassId')
            if not changed_fields:
                continue
            logger.debug(f"[{group_id}] 📝 {doc_id} changed: {', '.join(changed_fields)}")
            result.updated += 1
        else:
            doc_id = id_factory()
            logger.debug(f"[{group_id}] ➕ New entry {doc_id} ({soft_key})")
            result.added += 1

        batch_writer.add(WriteOperation.upsert(
            class_document_path(group_id, doc_id),
            to_save_form(record.entry, group_id, week_id, record.source_id)
        ))
        result.operations += 1

    for doc_id in existing.by_id:
        if doc_id in result.claimed:
            continue
        logger.debug(f"[{group_id}] 🗑️ {doc_id} no longer in the upstream week {week_id}")
        batch_writer.add(WriteOperation.delete(class_document_path(group_id, doc_id)))
        result.operations += 1
        result.deleted += 1

    logger.info(
        f"[{group_id}] 🔍 Week {week_id}: {result.added} new, {result.updated} updated, "
        f"{result.deleted} deleted, {result.skipped} skipped"
    )
    return result
