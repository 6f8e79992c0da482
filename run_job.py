#!/usr/bin/env python3
# © 2024–2025 Harnisch LLC. All Rights Reserved.
# Licensed exclusively for use by St. Edward Church & School (Nashville, TN).
# Unauthorized use, distribution, or modification is prohibited.

"""
Schedule Sync Job Runner

Runs one sync job (or the background scheduler) against the JSON document store.

Usage:
    python run_job.py [--dry-run] [--verbose] current-week
    python run_job.py group <group_id> [--weeks N] [--date YYYY-MM-DD]
    python run_job.py semester [--weeks N]
    python run_job.py dean-groups
    python run_job.py renew-session
    python run_job.py scheduler

Options:
    --dry-run    Write to an in-memory copy of the store instead of the data file
    --verbose    Show detailed logging
"""

import argparse
import json
import logging
import sys
import time
from datetime import datetime
from typing import Optional

import config
from auth.credential_store import FileCredentialStore
from auth.session_broker import SessionBroker
from storage.document_store import DocumentStore, InMemoryDocumentStore, JsonFileDocumentStore
from sync.jobs import ScheduleSyncEngine, SyncJobError
from sync.scheduler import SyncScheduler
from upstream.client import LoginError, UpstreamClient
from upstream.fetcher import ScheduleFetcher
from utils.alerts import AdminAlerter
from utils.logger import configure_logging
from utils.timezone import get_local_zone

logger = logging.getLogger(__name__)


def build_store(dry_run: bool, data_file: str = config.DATA_FILE) -> DocumentStore:
    """The JSON file store, or an in-memory copy of it for dry runs"""
    store = JsonFileDocumentStore(data_file)
    if dry_run:
        logger.info("🧪 Dry run - changes stay in memory")
        return InMemoryDocumentStore(store.snapshot())
    return store


def build_engine(store: DocumentStore) -> ScheduleSyncEngine:
    """Wire the upstream client, session broker, fetcher and engine together"""
    client = UpstreamClient()
    broker = SessionBroker(
        lambda: client.login(config.UPSTREAM_LOGIN, config.UPSTREAM_PASSWORD),
        FileCredentialStore(config.CREDENTIAL_FILE),
    )
    alerter = AdminAlerter()
    return ScheduleSyncEngine(store, ScheduleFetcher(client, broker, alerter), alerter)


def parse_date(value: str) -> datetime:
    """YYYY-MM-DD as local midnight"""
    try:
        day = datetime.strptime(value, '%Y-%m-%d')
    except ValueError as e:
        raise argparse.ArgumentTypeError(f"Invalid date '{value}' (expected YYYY-MM-DD)") from e
    return get_local_zone().localize(day)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description='Synchronize dean group schedules from the university system')
    parser.add_argument('--dry-run', action='store_true', help='Keep all writes in memory')
    parser.add_argument('--verbose', action='store_true', help='Show detailed logging')
    parser.add_argument('--data-file', default=config.DATA_FILE, help='JSON document store file')

    commands = parser.add_subparsers(dest='command', required=True)
    commands.add_parser('current-week', help='Refresh the current week of every group')

    group = commands.add_parser('group', help='Scan the upcoming weeks of one group')
    group.add_argument('group_id', type=int)
    group.add_argument('--weeks', type=int, default=config.FAST_WEEKS_TO_SCAN)
    group.add_argument('--date', type=parse_date, default=None, help='Effective date (YYYY-MM-DD)')

    semester = commands.add_parser('semester', help='Scan every group of the current semester')
    semester.add_argument('--weeks', type=int, default=config.FAST_WEEKS_TO_SCAN)

    commands.add_parser('dean-groups', help='Rebuild the dean group hierarchy')
    commands.add_parser('renew-session', help='Keep the service account session alive')
    commands.add_parser('scheduler', help='Run every job on its schedule')
    return parser


def run(args: argparse.Namespace, engine: ScheduleSyncEngine) -> Optional[dict]:
    if args.command == 'current-week':
        return engine.update_current_week()
    if args.command == 'group':
        return engine.process_group(args.group_id, args.weeks, args.date)
    if args.command == 'semester':
        return engine.run_semester_updates(args.weeks)
    if args.command == 'dean-groups':
        return engine.update_dean_groups()
    if args.command == 'renew-session':
        return engine.renew_session()

    scheduler = SyncScheduler(engine)
    scheduler.start()
    try:
        while scheduler.is_running():
            time.sleep(1)
    except KeyboardInterrupt:
        scheduler.stop()
    return None


def main(argv=None):
    """Main function"""
    args = build_parser().parse_args(argv)

    configure_logging(level='DEBUG' if args.verbose else None)
    if args.dry_run:
        config.DRY_RUN_MODE = True

    engine = build_engine(build_store(args.dry_run or config.DRY_RUN_MODE, args.data_file))
    try:
        result = run(args, engine)
    except LoginError as e:
        logger.error(f"❌ Could not log in to the upstream: {e}")
        return 2
    except SyncJobError as e:
        logger.error(f"⚠️ {e}")
        return 1

    if result is not None:
        print(json.dumps(result, indent=2, default=str))
    return 0


if __name__ == "__main__":
    sys.exit(main())
