# © 2024–2025 Harnisch LLC. All Rights Reserved.
# Licensed exclusively for use by St. Edward Church & School (Nashville, TN).
# Unauthorized use, distribution, or modification is prohibited.

"""
Batch Writer - Rolls write operations into size-bounded atomic batches

Each sealed batch commits on its own: a failed batch does not undo the ones
already committed, so a run is at-least-once overall and atomic per batch.
"""
import logging
from typing import Iterable, List, Optional, Sequence, Tuple

import config
from models import WriteOperation
from storage.document_store import DocumentStore, StoreUnavailableError
from utils.retry import call_with_backoff

logger = logging.getLogger(__name__)


class BatchCommitError(Exception):
    """One or more batches failed to commit after every batch was attempted"""

    def __init__(self, failures: List[Tuple[int, Exception]], committed: int):
        self.failures = failures
        self.committed = committed
        summary = ', '.join(f"#{index}: {type(error).__name__}: {error}" for index, error in failures)
        super().__init__(f"{len(failures)} batch(es) failed, {committed} committed ({summary})")


def chunk_operations(operations: Sequence[WriteOperation], ceiling: int) -> List[List[WriteOperation]]:
    """
    Split a flat operation list into batches of at most ``ceiling`` operations

    ``len(result) == ceil(len(operations) / ceiling)``
    """
    if ceiling <= 0:
        raise ValueError(f"Batch ceiling must be positive, got {ceiling}")
    return [list(operations[i:i + ceiling]) for i in range(0, len(operations), ceiling)]


class BatchWriter:
    """Accumulates operations for one job run and commits them in batches"""

    def __init__(self, store: DocumentStore, ceiling: Optional[int] = None,
                 max_retries: Optional[int] = None, base_delay: Optional[float] = None):
        ceiling = config.BATCH_CEILING if ceiling is None else ceiling
        if ceiling <= 0 or ceiling >= store.max_batch_operations:
            raise ValueError(
                f"Batch ceiling {ceiling} must be between 1 and {store.max_batch_operations - 1}"
            )
        self.store = store
        self.ceiling = ceiling
        self.max_retries = config.MAX_RETRIES if max_retries is None else max_retries
        self.base_delay = config.BASE_DELAY if base_delay is None else base_delay

        self._sealed: List[List[WriteOperation]] = []
        self._current: List[WriteOperation] = []

        self.operations_added = 0
        self.batches_committed = 0
        self.operations_committed = 0

    @property
    def pending_operations(self) -> int:
        return sum(len(batch) for batch in self._sealed) + len(self._current)

    @property
    def batch_count(self) -> int:
        """Sealed batches plus the in-progress one, if it holds anything"""
        return len(self._sealed) + (1 if self._current else 0)

    def add(self, operation: WriteOperation):
        """Queue one operation, sealing the current batch when it is full"""
        if len(self._current) >= self.ceiling:
            self._seal()
        self._current.append(operation)
        self.operations_added += 1

    def extend(self, operations: Iterable[WriteOperation]):
        """Queue a flat operation list (e.g. a whole processed group tree)"""
        operations = list(operations)
        room = self.ceiling - len(self._current)
        self._current.extend(operations[:room])
        for chunk in chunk_operations(operations[room:], self.ceiling):
            self._seal()
            self._current = chunk
        self.operations_added += len(operations)

    def _seal(self):
        if self._current:
            self._sealed.append(self._current)
            logger.debug(f"Sealed batch of {len(self._current)} operations")
            self._current = []

    def flush_sealed(self) -> int:
        """Commit full batches only; the in-progress batch keeps accumulating"""
        batches, self._sealed = self._sealed, []
        return self._commit_all(batches)

    def flush_all(self) -> int:
        """
        Commit every sealed batch and the in-progress one

        Returns:
            Number of batches committed

        Raises:
            BatchCommitError: If any batch failed (after all were attempted)
        """
        self._seal()
        return self.flush_sealed()

    def _commit_all(self, batches: List[List[WriteOperation]]) -> int:
        committed = 0
        failures: List[Tuple[int, Exception]] = []

        for index, batch in enumerate(batches):
            try:
                call_with_backoff(
                    self.store.commit, batch,
                    max_retries=self.max_retries,
                    base_delay=self.base_delay,
                    retry_on=(StoreUnavailableError,)
                )
            except Exception as e:
                logger.error(f"❌ Batch {index + 1}/{len(batches)} ({len(batch)} operations) failed: {e}")
                failures.append((index, e))
                continue

            committed += 1
            self.batches_committed += 1
            self.operations_committed += len(batch)
            logger.info(f"⚡️ Committed batch {index + 1}/{len(batches)} ({len(batch)} operations)")

        if failures:
            raise BatchCommitError(failures, committed)
        return committed
