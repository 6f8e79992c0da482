# © 2024–2025 Harnisch LLC. All Rights Reserved.
# Licensed exclusively for use by St. Edward Church & School (Nashville, TN).
# Unauthorized use, distribution, or modification is prohibited.

"""
Sync Jobs - Current week, per-group scans, semester dispatch, dean groups, keep-alive
"""
import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from datetime import datetime
from threading import Lock
from typing import Any, Callable, Dict, List, Optional

import config
from models import OP_SET, WriteOperation
from storage.document_store import SERVER_TIMESTAMP, DocumentStore
from storage.queries import build_tree_for_collection, get_all_group_ids_for_semester, load_week_documents
from sync.batch_writer import BatchWriter
from sync.group_tree import parse_group_tree, process_group_tree
from sync.reconciler import ExistingSnapshot, ReconcileResult, reconcile
from upstream.client import LoginError, SessionExpiredError, UpstreamApiError, UpstreamError
from upstream.fetcher import ScheduleFetcher
from utils.alerts import AdminAlerter
from utils.circuit_breaker import CircuitBreakerOpenError
from utils.logger import StructuredLogger
from utils.timezone import (
    format_local_time, get_local_time, get_semester_info, upstream_winter_semester_id, week_start_millis,
)

logger = logging.getLogger(__name__)

COUNT_KEYS = ('operations', 'changed', 'added', 'updated', 'deleted', 'skipped')


class SyncJobError(Exception):
    """Some groups failed; the others were written"""

    def __init__(self, job: str, failures: Dict[int, str], result: Dict[str, Any]):
        self.job = job
        self.failures = failures
        self.result = result
        super().__init__(f"{job}: {len(failures)} group(s) failed: {sorted(failures)}")


def _empty_counts() -> Dict[str, int]:
    return {key: 0 for key in COUNT_KEYS}


def _add_counts(totals: Dict[str, int], result: ReconcileResult):
    for key, value in result.to_dict().items():
        totals[key] += value


class ScheduleSyncEngine:
    """Runs the sync jobs against one document store and one upstream session"""

    def __init__(self, store: DocumentStore, fetcher: ScheduleFetcher,
                 alerter: Optional[AdminAlerter] = None, batch_ceiling: Optional[int] = None,
                 id_factory: Optional[Callable[[], str]] = None):
        self.store = store
        self.fetcher = fetcher
        self.alerter = alerter or fetcher.alerter
        self.batch_ceiling = batch_ceiling
        self.id_factory = id_factory

        self.structured_logger = StructuredLogger(__name__)
        self.results_lock = Lock()
        self.last_results: Dict[str, Dict[str, Any]] = {}

    def _new_writer(self) -> BatchWriter:
        return BatchWriter(self.store, ceiling=self.batch_ceiling)

    # =========================================================================
    # JOB WRAPPER
    # =========================================================================

    def _run_job(self, name: str, func: Callable[..., Dict[str, Any]], *args: Any) -> Dict[str, Any]:
        """Time a job, log its structured events and remember its result"""
        start_time = get_local_time()
        logger.info(f"🚀 Starting job '{name}' at {format_local_time(start_time)}")
        self.structured_logger.log_job_event('job_started', {'job': name, 'dry_run': config.DRY_RUN_MODE})

        try:
            result = func(*args)
        except Exception as e:
            duration = (get_local_time() - start_time).total_seconds()
            error_result = {
                'success': False,
                'job': name,
                'error': f"{type(e).__name__}: {e}",
                'duration': duration,
            }
            if isinstance(e, SyncJobError):
                error_result.update(e.result)
                error_result['success'] = False
            with self.results_lock:
                self.last_results[name] = error_result
            self.structured_logger.log_job_event('job_failed', error_result)
            logger.error(f"💥 Job '{name}' failed after {duration:.2f} seconds: {error_result['error']}")
            raise

        duration = (get_local_time() - start_time).total_seconds()
        result = {'success': True, 'job': name, **result, 'duration': duration}
        with self.results_lock:
            self.last_results[name] = result
        self.structured_logger.log_job_event('job_completed', result)
        self.structured_logger.log_performance(name, duration, item_count=result.get('groups'))
        logger.info(f"🎉 Job '{name}' completed in {duration:.2f} seconds: {result}")
        return result

    # =========================================================================
    # SCHEDULE RECONCILIATION
    # =========================================================================

    def _reconcile_week(self, writer: BatchWriter, group_id: int, week_start_ms: int,
                        records: List[Dict[str, Any]]) -> ReconcileResult:
        week_id = str(week_start_ms)
        existing = ExistingSnapshot.from_documents(load_week_documents(self.store, group_id, week_id))
        return reconcile(existing, records, writer, group_id, week_id, id_factory=self.id_factory)

    @staticmethod
    def _touch_group(writer: BatchWriter, group_id: int):
        writer.add(WriteOperation.upsert(
            f"{config.SCHEDULES_COLLECTION}/{group_id}",
            {'lastUpdated': SERVER_TIMESTAMP}
        ))

    def update_current_week(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        """Refresh the current week of every group of the current semester"""
        return self._run_job('current_week', self._update_current_week, now)

    def _update_current_week(self, now: Optional[datetime]) -> Dict[str, Any]:
        semester = get_semester_info(now)
        if semester is None:
            logger.info("Summer break - skipping the current week update")
            return {'skipped': 'summer break', 'groups': 0}

        group_ids = sorted(get_all_group_ids_for_semester(self.store, semester.identifier))
        if not group_ids:
            logger.info(f"No groups to process for semester {semester.identifier}")
            return {'semester': semester.identifier, 'groups': 0}

        week_ms = week_start_millis(now)
        writer = self._new_writer()
        totals = _empty_counts()
        failures: Dict[int, str] = {}

        for group_id in group_ids:
            try:
                records = self.fetcher.fetch_week(group_id, week_ms)
            except LoginError:
                raise
            except (UpstreamError, CircuitBreakerOpenError) as e:
                failures[group_id] = f"{type(e).__name__}: {e}"
                continue

            if not records:
                logger.info(f"[{group_id}] No upstream data for week {week_ms} - leaving the group untouched")
                continue

            self._touch_group(writer, group_id)
            totals['operations'] += 1
            _add_counts(totals, self._reconcile_week(writer, group_id, week_ms, records))
            writer.flush_sealed()

        writer.flush_all()
        result = {
            'semester': semester.identifier,
            'week_id': str(week_ms),
            'groups': len(group_ids),
            'failed_groups': sorted(failures),
            'batches': writer.batches_committed,
            **totals,
        }
        if failures:
            raise SyncJobError('current_week', failures, result)
        return result

    def process_group(self, group_id: int, weeks_to_scan: int = config.FAST_WEEKS_TO_SCAN,
                      effective_date: Optional[datetime] = None) -> Dict[str, Any]:
        """Scan ``weeks_to_scan`` weeks of one group starting at the week of ``effective_date``"""
        return self._run_job('group', self._process_group, group_id, weeks_to_scan, effective_date)

    def _process_group(self, group_id: int, weeks_to_scan: int,
                       effective_date: Optional[datetime]) -> Dict[str, Any]:
        effective_date = effective_date or get_local_time()
        logger.info(
            f"[{group_id}] ⚙️ Scanning {weeks_to_scan} weeks from {effective_date.date().isoformat()}"
        )

        writer = self._new_writer()
        totals = _empty_counts()
        weeks_with_data = 0

        for week_start_ms, records in self.fetcher.iter_weeks(group_id, effective_date, weeks_to_scan):
            weeks_with_data += 1
            _add_counts(totals, self._reconcile_week(writer, group_id, week_start_ms, records))
            writer.flush_sealed()

        if weeks_with_data:
            self._touch_group(writer, group_id)
            totals['operations'] += 1
        writer.flush_all()

        logger.info(
            f"[{group_id}] ✅ Done ({weeks_to_scan} week scan): {weeks_with_data} weeks with data, "
            f"{totals['changed']} changes"
        )
        return {'group_id': group_id, 'weeks': weeks_with_data, 'batches': writer.batches_committed, **totals}

    def run_semester_updates(self, weeks_to_scan: int, now: Optional[datetime] = None) -> Dict[str, Any]:
        """Scan every group of the current semester in parallel"""
        job = 'full_scan' if weeks_to_scan >= config.FULL_WEEKS_TO_SCAN else 'fast_scan'
        return self._run_job(job, self._run_semester_updates, weeks_to_scan, now, job)

    def _run_semester_updates(self, weeks_to_scan: int, now: Optional[datetime], job: str) -> Dict[str, Any]:
        semester = get_semester_info(now)
        if semester is None:
            logger.info("Summer break - not dispatching group scans")
            return {'skipped': 'summer break', 'groups': 0}

        group_ids = sorted(get_all_group_ids_for_semester(self.store, semester.identifier))
        if not group_ids:
            logger.info(f"No groups to process for semester {semester.identifier}")
            return {'semester': semester.identifier, 'groups': 0}

        logger.info(f"📋 Dispatching {len(group_ids)} groups ({weeks_to_scan} week scan)")
        totals = _empty_counts()
        failures: Dict[int, str] = {}

        with ThreadPoolExecutor(max_workers=config.MAX_PARALLEL_GROUPS) as pool:
            futures = {
                pool.submit(self._process_group, group_id, weeks_to_scan, now): group_id
                for group_id in group_ids
            }
            for future in as_completed(futures):
                group_id = futures[future]
                try:
                    group_result = future.result()
                except LoginError:
                    for pending in futures:
                        pending.cancel()
                    raise
                except Exception as e:
                    logger.error(f"[{group_id}] ❌ Group scan failed: {type(e).__name__}: {e}")
                    failures[group_id] = f"{type(e).__name__}: {e}"
                    continue
                for key in COUNT_KEYS:
                    totals[key] += group_result[key]

        result = {
            'semester': semester.identifier,
            'weeks_to_scan': weeks_to_scan,
            'groups': len(group_ids),
            'failed_groups': sorted(failures),
            **totals,
        }
        if failures:
            raise SyncJobError(job, failures, result)
        return result

    # =========================================================================
    # DEAN GROUPS
    # =========================================================================

    def update_dean_groups(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        """Rebuild the dean group hierarchy of the winter semester"""
        return self._run_job('dean_groups', self._update_dean_groups, now)

    def _update_dean_groups(self, now: Optional[datetime]) -> Dict[str, Any]:
        semester = get_semester_info(now)
        if semester is None:
            logger.warning("Dean group update triggered during the summer break - stopping")
            return {'skipped': 'summer break'}
        if not semester.is_winter:
            logger.warning(f"Dean group update triggered in summer semester {semester.identifier} - stopping")
            return {'skipped': f"summer semester {semester.identifier}"}

        semester_id = upstream_winter_semester_id(semester.academic_year_start)
        logger.info(f"Processing dean groups for {semester.academic_year} (upstream semester {semester_id})")

        items = self.fetcher.fetch_group_tree(semester_id)
        if not items:
            logger.warning("Fetched 0 units - nothing to update")
            return {'semester': semester.identifier, 'groups': 0}

        tree = process_group_tree(parse_group_tree(items), semester.academic_year, semester.academic_year_start)
        writer = self._new_writer()
        writer.extend(tree.operations)
        writer.flush_all()
        if not tree.groups_found:
            logger.warning("No groups found to save - rebuilding the cached tree anyway")

        logger.info("Building the cached group tree...")
        cached_tree = build_tree_for_collection(self.store, config.DEAN_GROUPS_COLLECTION)
        tree_writer = self._new_writer()
        tree_writer.add(WriteOperation(
            kind=OP_SET,
            path=config.GROUP_TREE_DOCUMENT,
            data={'tree': cached_tree, 'lastUpdated': SERVER_TIMESTAMP},
            merge=False,
        ))
        tree_writer.flush_all()
        logger.info(f"✅ Saved the cached group tree to '{config.GROUP_TREE_DOCUMENT}'")

        return {
            'semester': semester.identifier,
            'academic_year': semester.academic_year,
            'groups': tree.groups_found,
            'skipped': tree.skipped,
            'operations': len(tree.operations),
            'batches': writer.batches_committed,
        }

    # =========================================================================
    # SESSION KEEP-ALIVE
    # =========================================================================

    def renew_session(self) -> Dict[str, Any]:
        """Ping the upstream so the shared session does not time out"""
        return self._run_job('renew_session', self._renew_session)

    def _relogin(self, stale_token: Optional[str]) -> Dict[str, Any]:
        try:
            self.fetcher.broker.invalidate_and_refresh(stale_token)
        except LoginError as e:
            logger.error(f"❌❌❌ CRITICAL: relogin failed as well: {e}")
            self.alerter.send("Session renewal failed", f"Could not renew the service account session: {e}")
            raise
        return {'renewed': False, 'relogged': True}

    def _renew_session(self) -> Dict[str, Any]:
        broker = self.fetcher.broker
        try:
            token = broker.acquire()
        except LoginError as e:
            self.alerter.send("Session renewal failed", f"Could not log in the service account: {e}")
            raise

        try:
            value = self.fetcher.client.ping(token)
        except SessionExpiredError:
            logger.warning("⚠️ Service account session expired - logging in again")
            return self._relogin(token)
        except UpstreamApiError as e:
            logger.warning(f"🤔 Unexpected keep-alive reply: {e.exception_class}")
            self.alerter.send("Unexpected keep-alive reply", f"Exception class: {e.exception_class}")
            return {'renewed': False, 'unexpected': e.exception_class}
        except (UpstreamError, CircuitBreakerOpenError) as e:
            logger.error(f"⚠️ Keep-alive failed ({e}) - trying to log in again")
            return self._relogin(token)

        if value is not None:
            logger.warning(f"🤔 Unexpected keep-alive reply: {str(value)[:200]}")
            self.alerter.send("Unexpected keep-alive reply", f"Reply: {str(value)[:500]}")
            return {'renewed': False, 'unexpected': str(value)[:200]}

        logger.info("✅ Service account session renewed")
        return {'renewed': True}
