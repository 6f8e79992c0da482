"""
Shared fixtures - raw upstream records, an in-memory store and a fake upstream
"""

import pytest
from datetime import datetime
import sys
import os

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from auth.session_broker import SessionBroker
from storage.document_store import InMemoryDocumentStore
from upstream.fetcher import ScheduleFetcher
from utils.timezone import get_local_zone, week_start_millis

HOUR_MS = 60 * 60 * 1000

# Wednesday of a winter semester week (2024Z)
SEMESTER_NOW = get_local_zone().localize(datetime(2024, 10, 16, 12, 0))
WEEK_MS = week_start_millis(SEMESTER_NOW)


def make_raw(source_id, start_ms, short='MAT', full='Matematyka', class_type='W',
             lecturers=((1, 'dr Anna Nowak'),), rooms=((10, 'A-101'),), duration_ms=90 * 60 * 1000):
    """One upstream schedule record as the AJAX endpoint returns it"""
    return {
        'idSpotkania': {'idSpotkania': source_id},
        'nazwaPelnaPrzedmiotu': full,
        'nazwaSkroconaPrzedmiotu': short,
        'dataRozpoczecia': start_ms,
        'dataZakonczenia': start_ms + duration_ms,
        'listaIdZajecInstancji': [{'typZajec': class_type}],
        'wykladowcy': [{'idProwadzacego': i, 'stopienImieNazwisko': n} for i, n in lecturers],
        'sale': [{'idSali': i, 'nazwaSkrocona': n} for i, n in rooms],
    }


def dean_group_tree():
    """Upstream tree items: one field, one mode, one semester, three groups (one duplicate)"""
    return [{
        'type': 'jednostka', 'label': ' IEZI ', 'id': 'u1',
        'children': [{
            'type': 'rodzajetapu', 'label': 'I,D,PL',
            'children': [{
                'type': 'cykl', 'label': 'semestr 1',
                'children': [
                    {'type': 'grupadziekanska', 'label': 'Grupa 1 (Z)', 'id': 101},
                    {'type': 'grupadziekanska', 'label': 'Grupa 2: ISI (Z)', 'id': 102},
                    {'type': 'grupadziekanska', 'label': 'Grupa 1 (Z)', 'id': 103},
                ],
            }],
        }],
    }]


class FakeAlerter:
    """Records alerts instead of posting them"""

    def __init__(self):
        self.alerts = []

    def send(self, title, message):
        self.alerts.append((title, message))
        return True


class FakeUpstreamClient:
    """In-memory stand-in for UpstreamClient"""

    def __init__(self, schedules=None, tree=None):
        self.schedules = schedules or {}
        self.tree = tree if tree is not None else dean_group_tree()
        self.schedule_calls = []
        self.tree_calls = []
        self.ping_reply = None
        self.ping_error = None

    def get_group_schedule(self, token, group_id, week_start_ms):
        self.schedule_calls.append((token, group_id, week_start_ms))
        value = self.schedules.get((group_id, week_start_ms), [])
        if isinstance(value, Exception):
            raise value
        return list(value)

    def get_group_tree(self, token, semester_id, item_ids=None):
        self.tree_calls.append((semester_id, item_ids))
        if item_ids is None:
            return [{'id': 'r0', 'children': [{'_reference': {'_class': 'Jednostka', 'idJednostki': 5}}]}]
        return self.tree

    def ping(self, token):
        if self.ping_error is not None:
            raise self.ping_error
        return self.ping_reply


@pytest.fixture
def store():
    return InMemoryDocumentStore()


@pytest.fixture
def alerter():
    return FakeAlerter()


@pytest.fixture
def upstream():
    return FakeUpstreamClient()


@pytest.fixture
def broker():
    tokens = iter(f"token-{i}" for i in range(1, 100))
    return SessionBroker(lambda: next(tokens), poll_interval=0.01)


@pytest.fixture
def fetcher(upstream, broker, alerter):
    return ScheduleFetcher(upstream, broker, alerter)
