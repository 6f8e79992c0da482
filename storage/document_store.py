# © 2024–2025 Harnisch LLC. All Rights Reserved.
# Licensed exclusively for use by St. Edward Church & School (Nashville, TN).
# Unauthorized use, distribution, or modification is prohibited.

"""
Document Store - Slash-path document store with atomic write batches
"""
import copy
import json
import logging
import os
from datetime import datetime
from threading import Lock
from typing import Any, Dict, List, Optional, Sequence, Tuple

import pytz

import config
from models import OP_DELETE, OP_SET, WriteOperation
from utils.retry import retry_with_backoff

logger = logging.getLogger(__name__)


class _ServerTimestamp:
    """Sentinel replaced with the commit time when a batch is applied"""

    def __repr__(self):
        return 'SERVER_TIMESTAMP'


SERVER_TIMESTAMP = _ServerTimestamp()


class StoreError(Exception):
    """Base class for document store failures"""
    pass


class StoreUnavailableError(StoreError):
    """Transient failure, safe to retry the same batch"""
    pass


class BatchLimitExceededError(StoreError):
    """A batch holds more operations than the store accepts"""
    pass


def split_path(path: str) -> List[str]:
    segments = [segment for segment in path.strip('/').split('/') if segment]
    if not segments:
        raise ValueError(f"Empty document path: {path!r}")
    return segments


def is_document_path(path: str) -> bool:
    return len(split_path(path)) % 2 == 0


# =============================================================================
# STORE INTERFACE
# =============================================================================

class DocumentStore:
    """
    Interface of the document store.

    Documents live at even-length slash paths (``collection/doc/collection/doc``).
    Writes only happen through :meth:`commit`, which applies a batch atomically.
    """

    max_batch_operations = config.MAX_BATCH_OPERATIONS

    def get(self, path: str) -> Optional[Dict[str, Any]]:
        """Document data at ``path`` or None"""
        raise NotImplementedError

    def list_documents(self, collection: str) -> List[Tuple[str, Dict[str, Any]]]:
        """(doc_id, data) of every existing document directly in ``collection``"""
        raise NotImplementedError

    def list_collections(self, document: str) -> List[str]:
        """Ids of the subcollections below ``document``"""
        raise NotImplementedError

    def query(self, collection: str, field: Optional[str] = None, value: Any = None,
              order_by: Optional[str] = None) -> List[Tuple[str, Dict[str, Any]]]:
        """Documents of ``collection`` where ``field == value``, ordered by ``order_by``"""
        raise NotImplementedError

    def commit(self, operations: Sequence[WriteOperation]) -> None:
        """Apply ``operations`` atomically"""
        raise NotImplementedError


# =============================================================================
# IN-MEMORY STORE
# =============================================================================

class InMemoryDocumentStore(DocumentStore):
    """Thread-safe in-memory store (tests, dry runs, and the base of the file store)"""

    def __init__(self, documents: Optional[Dict[str, Dict[str, Any]]] = None):
        self._lock = Lock()
        self._docs: Dict[str, Dict[str, Any]] = {}
        self.commit_count = 0
        for path, data in (documents or {}).items():
            self._docs['/'.join(split_path(path))] = copy.deepcopy(data)

    def get(self, path: str) -> Optional[Dict[str, Any]]:
        key = '/'.join(split_path(path))
        with self._lock:
            data = self._docs.get(key)
            return copy.deepcopy(data) if data is not None else None

    def list_documents(self, collection: str) -> List[Tuple[str, Dict[str, Any]]]:
        prefix = split_path(collection)
        depth = len(prefix) + 1
        with self._lock:
            found = [
                (key.split('/')[-1], copy.deepcopy(data))
                for key, data in self._docs.items()
                if key.split('/')[:-1] == prefix and len(key.split('/')) == depth
            ]
        return sorted(found, key=lambda item: item[0])

    def list_collections(self, document: str) -> List[str]:
        prefix = split_path(document)
        collections = set()
        with self._lock:
            for key in self._docs:
                segments = key.split('/')
                if len(segments) > len(prefix) + 1 and segments[:len(prefix)] == prefix:
                    collections.add(segments[len(prefix)])
        return sorted(collections)

    def query(self, collection: str, field: Optional[str] = None, value: Any = None,
              order_by: Optional[str] = None) -> List[Tuple[str, Dict[str, Any]]]:
        documents = self.list_documents(collection)
        if field is not None:
            documents = [(doc_id, data) for doc_id, data in documents if data.get(field) == value]
        if order_by is not None:
            documents.sort(key=lambda item: (item[1].get(order_by) is None, item[1].get(order_by)))
        return documents

    def commit(self, operations: Sequence[WriteOperation]) -> None:
        if len(operations) > self.max_batch_operations:
            raise BatchLimitExceededError(
                f"Batch has {len(operations)} operations, limit is {self.max_batch_operations}"
            )
        for operation in operations:
            if not is_document_path(operation.path):
                raise StoreError(f"Not a document path: {operation.path}")

        with self._lock:
            updated = dict(self._docs)
            now = datetime.now(pytz.UTC)
            for operation in operations:
                key = '/'.join(split_path(operation.path))
                if operation.kind == OP_DELETE:
                    updated.pop(key, None)
                elif operation.kind == OP_SET:
                    data = {
                        name: (now if value is SERVER_TIMESTAMP else copy.deepcopy(value))
                        for name, value in operation.data.items()
                    }
                    if operation.merge and key in updated:
                        updated[key] = {**updated[key], **data}
                    else:
                        updated[key] = data
                else:
                    raise StoreError(f"Unknown operation kind: {operation.kind}")

            self._persist(updated)
            self._docs = updated
            self.commit_count += 1

        logger.debug(f"Committed batch of {len(operations)} operations")

    def _persist(self, documents: Dict[str, Dict[str, Any]]):
        """Hook for durable subclasses; runs before the new state becomes visible"""
        pass

    def snapshot(self) -> Dict[str, Dict[str, Any]]:
        """Copy of every document keyed by path"""
        with self._lock:
            return copy.deepcopy(self._docs)


# =============================================================================
# JSON FILE STORE
# =============================================================================

class JsonFileDocumentStore(InMemoryDocumentStore):
    """In-memory store persisted to a JSON file after every commit"""

    def __init__(self, path: str = config.DATA_FILE):
        self.path = path
        super().__init__(self._load())

    def _load(self) -> Dict[str, Dict[str, Any]]:
        if not os.path.exists(self.path):
            logger.info(f"No document file at {self.path} - starting empty")
            return {}
        with open(self.path, 'r') as f:
            data = json.load(f, object_hook=_decode_value)
        documents = data.get('documents', {})
        logger.info(f"✅ Loaded {len(documents)} documents from {self.path}")
        return documents

    def _persist(self, documents: Dict[str, Dict[str, Any]]):
        try:
            self._write_file(documents)
        except OSError as e:
            raise StoreUnavailableError(f"Cannot write {self.path}: {e}") from e

    @retry_with_backoff(max_retries=2, base_delay=0.5, retry_on=(OSError,))
    def _write_file(self, documents: Dict[str, Dict[str, Any]]):
        directory = os.path.dirname(self.path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        tmp_path = f"{self.path}.tmp"
        with open(tmp_path, 'w') as f:
            json.dump({'documents': documents}, f, default=_encode_value)
        os.replace(tmp_path, self.path)


def _encode_value(value):
    if isinstance(value, datetime):
        return {'__datetime__': value.isoformat()}
    raise TypeError(f"Cannot store value of type {type(value).__name__}")


def _decode_value(obj):
    if set(obj) == {'__datetime__'}:
        return datetime.fromisoformat(obj['__datetime__'])
    return obj
