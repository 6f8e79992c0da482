"""
Job tests - end-to-end runs against the in-memory store and a fake upstream
"""

import pytest
from datetime import datetime
from itertools import count

from auth.session_broker import SessionBroker
from conftest import HOUR_MS, SEMESTER_NOW, WEEK_MS, FakeUpstreamClient, make_raw
from storage.queries import (
    get_all_group_ids_for_semester, get_group_details, get_schedule_for_day, get_schedule_for_week,
)
from sync.jobs import ScheduleSyncEngine, SyncJobError
from upstream.client import LoginError, SessionExpiredError, UpstreamApiError, UpstreamBlockedError
from upstream.fetcher import ScheduleFetcher
from utils.timezone import get_local_zone

SEMESTER_PATH = 'deanGroups/2024-2025/2024Z/IEZI/I,D,PL/semestr 1'


@pytest.fixture
def engine(store, fetcher):
    ids = count(1)
    return ScheduleSyncEngine(store, fetcher, id_factory=lambda: f"doc{next(ids)}")


@pytest.fixture
def seeded_engine(engine):
    """Engine whose store already holds the dean groups 101 and 102"""
    engine.update_dean_groups(SEMESTER_NOW)
    return engine


class TestDeanGroups:
    """Test the dean group rebuild"""

    @pytest.mark.integration
    @pytest.mark.grouptree
    def test_groups_and_cached_tree_written(self, engine, store, upstream):
        result = engine.update_dean_groups(SEMESTER_NOW)

        assert result['success'] is True
        assert result['groups'] == 2
        assert upstream.tree_calls[0][0] == 88
        assert store.get(SEMESTER_PATH) == {'Grupa 1': 101, 'Grupa 2': 102}
        assert get_group_details(store, 101) == {'groupName': 'Grupa 1', 'fullPath': SEMESTER_PATH}
        assert get_all_group_ids_for_semester(store, '2024Z') == {101, 102}

        tree = store.get('config/deanGroupsTree')['tree']
        year = tree[0]
        assert year['id'] == '2024-2025'
        semester = year['children'][0]
        assert semester['id'] == '2024Z'
        field = semester['children'][0]
        mode = field['children'][0]
        leaf = mode['children'][0]
        assert (field['id'], mode['id'], leaf['id']) == ('IEZI', 'I,D,PL', 'semestr 1')
        assert {child['groupId'] for child in leaf['children']} == {101, 102}

    @pytest.mark.integration
    def test_skipped_in_summer_semester(self, engine, upstream):
        result = engine.update_dean_groups(get_local_zone().localize(datetime(2025, 3, 10, 12, 0)))

        assert 'skipped' in result
        assert upstream.tree_calls == []

    @pytest.mark.integration
    def test_skipped_in_summer_break(self, engine, upstream):
        result = engine.update_dean_groups(get_local_zone().localize(datetime(2025, 8, 1, 12, 0)))

        assert result['skipped'] == 'summer break'


class TestCurrentWeek:
    """Test the current week refresh"""

    @pytest.mark.integration
    @pytest.mark.reconcile
    def test_current_week_written_and_idempotent(self, seeded_engine, store, upstream):
        upstream.schedules[(101, WEEK_MS)] = [
            make_raw('A1', WEEK_MS + 8 * HOUR_MS),
            make_raw('A2', WEEK_MS + 32 * HOUR_MS, short='FIZ'),
        ]

        first = seeded_engine.update_current_week(SEMESTER_NOW)
        second = seeded_engine.update_current_week(SEMESTER_NOW)

        assert first['changed'] == 2
        assert second['changed'] == 0
        assert store.get('schedules/101')['lastUpdated'] is not None
        assert store.get('schedules/102') is None
        week = get_schedule_for_week(store, 101, str(WEEK_MS))
        assert [entry['subjectShortName'] for entry in week] == ['MAT', 'FIZ']
        assert len(get_schedule_for_day(store, 101, '2024-10-15')) == 1

    @pytest.mark.integration
    @pytest.mark.reconcile
    def test_upstream_id_change_keeps_document(self, seeded_engine, store, upstream):
        upstream.schedules[(101, WEEK_MS)] = [make_raw('A1', WEEK_MS + 8 * HOUR_MS)]
        seeded_engine.update_current_week(SEMESTER_NOW)
        upstream.schedules[(101, WEEK_MS)] = [make_raw('B2', WEEK_MS + 8 * HOUR_MS)]

        result = seeded_engine.update_current_week(SEMESTER_NOW)

        documents = store.list_documents('schedules/101/classes')
        assert result['changed'] == 1
        assert result['deleted'] == 0
        assert [doc_id for doc_id, _ in documents] == ['doc1']
        assert documents[0][1]['sourceClassId'] == 'B2'

    @pytest.mark.integration
    def test_empty_week_leaves_group_untouched(self, seeded_engine, store, upstream):
        upstream.schedules[(101, WEEK_MS)] = [make_raw('A1', WEEK_MS + 8 * HOUR_MS)]
        seeded_engine.update_current_week(SEMESTER_NOW)
        upstream.schedules[(101, WEEK_MS)] = []

        result = seeded_engine.update_current_week(SEMESTER_NOW)

        assert result['changed'] == 0
        assert len(store.list_documents('schedules/101/classes')) == 1

    @pytest.mark.integration
    def test_failed_group_does_not_block_others(self, seeded_engine, store, upstream, alerter):
        upstream.schedules[(101, WEEK_MS)] = UpstreamBlockedError('403')
        upstream.schedules[(102, WEEK_MS)] = [make_raw('A1', WEEK_MS + 8 * HOUR_MS)]

        with pytest.raises(SyncJobError) as exc_info:
            seeded_engine.update_current_week(SEMESTER_NOW)

        assert list(exc_info.value.failures) == [101]
        assert len(store.list_documents('schedules/102/classes')) == 1
        assert seeded_engine.last_results['current_week']['success'] is False
        assert alerter.alerts

    @pytest.mark.integration
    def test_no_groups(self, engine):
        result = engine.update_current_week(SEMESTER_NOW)

        assert result['groups'] == 0


class TestGroupAndSemesterScans:
    """Test the per-group worker and the dispatcher"""

    @pytest.mark.integration
    def test_process_group_scans_weeks(self, engine, store, upstream):
        next_week = WEEK_MS + 7 * 24 * HOUR_MS
        upstream.schedules[(101, WEEK_MS)] = [make_raw('A1', WEEK_MS + 8 * HOUR_MS)]
        upstream.schedules[(101, next_week)] = [make_raw('A2', next_week + 8 * HOUR_MS)]

        result = engine.process_group(101, 2, SEMESTER_NOW)

        assert result['weeks'] == 2
        assert result['added'] == 2
        assert store.get('schedules/101') is not None
        assert len(get_schedule_for_week(store, 101, str(next_week))) == 1

    @pytest.mark.integration
    def test_semester_dispatch(self, seeded_engine, store, upstream):
        upstream.schedules[(101, WEEK_MS)] = [make_raw('A1', WEEK_MS + 8 * HOUR_MS)]
        upstream.schedules[(102, WEEK_MS)] = [make_raw('A2', WEEK_MS + 8 * HOUR_MS)]

        result = seeded_engine.run_semester_updates(2, SEMESTER_NOW)

        assert result['groups'] == 2
        assert result['added'] == 2
        assert result['failed_groups'] == []

    @pytest.mark.integration
    def test_semester_dispatch_collects_failures(self, seeded_engine, store, upstream):
        upstream.schedules[(101, WEEK_MS)] = UpstreamApiError('java.lang.IllegalStateException')
        upstream.schedules[(102, WEEK_MS)] = [make_raw('A2', WEEK_MS + 8 * HOUR_MS)]

        with pytest.raises(SyncJobError) as exc_info:
            seeded_engine.run_semester_updates(2, SEMESTER_NOW)

        assert list(exc_info.value.failures) == [101]
        assert exc_info.value.result['added'] == 1

    @pytest.mark.integration
    def test_login_failure_aborts_job(self, store, alerter):
        def no_login():
            raise LoginError('invalid password')

        fetcher = ScheduleFetcher(FakeUpstreamClient(), SessionBroker(no_login), alerter)
        engine = ScheduleSyncEngine(store, fetcher)

        with pytest.raises(LoginError):
            engine.process_group(101, 2, SEMESTER_NOW)


class TestRenewSession:
    """Test the keep-alive job"""

    @pytest.mark.session
    def test_healthy_ping(self, engine, broker):
        assert engine.renew_session()['renewed'] is True
        assert broker.login_count == 1

    @pytest.mark.session
    def test_expired_session_relogs(self, engine, upstream, broker):
        upstream.ping_error = SessionExpiredError('org.objectledge.web.mvc.security.LoginRequiredException')

        result = engine.renew_session()

        assert result['relogged'] is True
        assert broker.login_count == 2

    @pytest.mark.session
    def test_unexpected_reply_alerts(self, engine, upstream, alerter):
        upstream.ping_reply = {'weird': True}

        result = engine.renew_session()

        assert result['renewed'] is False
        assert alerter.alerts[0][0] == 'Unexpected keep-alive reply'
