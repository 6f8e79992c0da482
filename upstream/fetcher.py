# © 2024–2025 Harnisch LLC. All Rights Reserved.
# Licensed exclusively for use by St. Edward Church & School (Nashville, TN).
# Unauthorized use, distribution, or modification is prohibited.

"""
Schedule Fetcher - Upstream reads with session refresh and operator alerts
"""
import logging
from datetime import datetime
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple

import config
from auth.session_broker import SessionBroker
from upstream.client import (
    SessionExpiredError, UpstreamApiError, UpstreamBlockedError, UpstreamClient, UpstreamError,
)
from utils.alerts import AdminAlerter
from utils.circuit_breaker import CircuitBreakerOpenError
from utils.timezone import to_millis, week_starts

logger = logging.getLogger(__name__)


class ScheduleFetcher:
    """Reads schedules and the group tree through the shared session"""

    def __init__(self, client: UpstreamClient, broker: SessionBroker,
                 alerter: Optional[AdminAlerter] = None):
        self.client = client
        self.broker = broker
        self.alerter = alerter or AdminAlerter()

    def _with_session(self, description: str, func: Callable[..., Any], *args: Any) -> Any:
        """
        Run ``func(token, *args)``, refreshing the session once if it expired

        A second expiry, blocking, and other upstream errors propagate.
        """
        token = self.broker.acquire()
        try:
            try:
                return func(token, *args)
            except SessionExpiredError:
                logger.warning(f"⚠️ Session expired during {description} - refreshing and retrying once")
                token = self.broker.invalidate_and_refresh(token)
                return func(token, *args)
        except UpstreamBlockedError as e:
            logger.error(f"🚫 Probable upstream block during {description}: {e}")
            self.alerter.send("Upstream blocked", f"Probable IP block during {description}: {e}")
            raise
        except CircuitBreakerOpenError as e:
            logger.error(f"🚫 Skipping {description}: {e}")
            raise
        except UpstreamApiError as e:
            logger.error(f"❌ Upstream API error during {description}: {e.exception_class}")
            self.alerter.send("Upstream API error", f"{description}: {e.exception_class}")
            raise
        except UpstreamError as e:
            logger.error(f"❌ Upstream error during {description}: {type(e).__name__}: {e}")
            raise

    # =========================================================================
    # SCHEDULES
    # =========================================================================

    def fetch_week(self, group_id: int, week_start_ms: int) -> List[Dict[str, Any]]:
        """Raw schedule records of one group for one week"""
        records = self._with_session(
            f"schedule fetch for group {group_id} (week {week_start_ms})",
            self.client.get_group_schedule, group_id, week_start_ms
        )
        logger.debug(f"[{group_id}] Received {len(records)} records for week {week_start_ms}")
        return records

    def iter_weeks(self, group_id: int, effective_date: Optional[datetime],
                   weeks_to_scan: int) -> Iterator[Tuple[int, List[Dict[str, Any]]]]:
        """
        Yield (week_start_ms, records) week by week from the week of ``effective_date``

        Stops after ``MAX_EMPTY_WEEKS`` consecutive empty weeks; empty weeks
        are not yielded.
        """
        empty_weeks = 0
        for week_start in week_starts(effective_date, weeks_to_scan):
            week_start_ms = to_millis(week_start)
            records = self.fetch_week(group_id, week_start_ms)
            if records:
                empty_weeks = 0
                yield week_start_ms, records
                continue

            empty_weeks += 1
            if empty_weeks >= config.MAX_EMPTY_WEEKS:
                logger.info(f"[{group_id}] {empty_weeks} empty weeks in a row - end of the schedule")
                return

    # =========================================================================
    # GROUP TREE
    # =========================================================================

    def fetch_group_tree(self, semester_id: int) -> List[Dict[str, Any]]:
        """
        Full group tree of a winter semester

        The root item only references the top-level units, so the tree is
        read in two calls: the root, then every referenced unit.
        """
        root_items = self._with_session(
            f"group tree root (semester {semester_id})",
            self.client.get_group_tree, semester_id
        )
        root = root_items[0] if root_items and isinstance(root_items[0], dict) else {}
        references = [
            child['_reference'] for child in (root.get('children') or [])
            if isinstance(child, dict) and '_reference' in child
        ]
        if not references:
            logger.warning(f"No top-level units found for semester {semester_id}")
            return []

        logger.info(f"Found {len(references)} top-level units - fetching the full tree")
        return self._with_session(
            f"group tree (semester {semester_id})",
            self.client.get_group_tree, semester_id, references
        )
