"""
Job runner CLI tests - argument parsing and exit codes
"""

import json
import pytest
from unittest.mock import MagicMock

import config
import run_job
from sync.jobs import SyncJobError
from upstream.client import LoginError


@pytest.fixture
def engine(monkeypatch):
    """Replace the wired engine and store with mocks"""
    engine = MagicMock()
    stores = []
    monkeypatch.setattr(config, 'DRY_RUN_MODE', False)
    monkeypatch.setattr(run_job, 'configure_logging', lambda **kwargs: None)
    monkeypatch.setattr(run_job, 'build_store', lambda dry_run, data_file: stores.append((dry_run, data_file)))
    monkeypatch.setattr(run_job, 'build_engine', lambda store: engine)
    engine.stores = stores
    return engine


class TestMain:
    """Test the CLI entry point"""

    @pytest.mark.unit
    def test_success_prints_result(self, engine, capsys):
        engine.update_current_week.return_value = {'success': True, 'groups': 3}

        assert run_job.main(['current-week']) == 0
        assert json.loads(capsys.readouterr().out) == {'success': True, 'groups': 3}

    @pytest.mark.unit
    def test_group_arguments(self, engine):
        engine.process_group.return_value = {'success': True}

        assert run_job.main(['--dry-run', '--data-file', 'x.json', 'group', '101', '--weeks', '5',
                             '--date', '2024-10-16']) == 0

        group_id, weeks, effective_date = engine.process_group.call_args.args
        assert (group_id, weeks) == (101, 5)
        assert (effective_date.year, effective_date.month, effective_date.day) == (2024, 10, 16)
        assert engine.stores == [(True, 'x.json')]

    @pytest.mark.unit
    def test_login_failure_exit_code(self, engine):
        engine.renew_session.side_effect = LoginError('invalid password')

        assert run_job.main(['renew-session']) == 2

    @pytest.mark.unit
    def test_partial_failure_exit_code(self, engine):
        engine.run_semester_updates.side_effect = SyncJobError('fast_scan', {101: 'blocked'}, {})

        assert run_job.main(['semester', '--weeks', '2']) == 1

    @pytest.mark.unit
    def test_invalid_date_rejected(self, engine):
        with pytest.raises(SystemExit):
            run_job.main(['group', '101', '--date', '16.10.2024'])
