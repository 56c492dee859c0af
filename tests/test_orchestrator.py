"""Tests for the lifecycle Orchestrator.

Covers guaranteed teardown, skip semantics, error precedence and a full
mysql-public-ip run with the provisioning engine and database mocked.
"""

import json
import sys
from dataclasses import dataclass, field
from pathlib import Path
from unittest.mock import patch

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent / 'src'))

from common import ActionResult
from errors import ConfigurationError, MissingOutputError, ProvisioningError, UnreachableError
from scenarios import Orchestrator
from scenarios.mysql_public_ip import MySQLPublicIP


@dataclass
class RecordingAction:
    """Stage action that records calls and optionally fails."""
    name: str
    calls: list
    error: Exception = None
    interrupt: bool = False

    def run(self, config, store):
        self.calls.append(self.name)
        if self.interrupt:
            raise KeyboardInterrupt
        if self.error is not None:
            raise self.error
        return ActionResult(success=True, message=f'{self.name} ok')


@dataclass
class FakeScenario:
    """Five stages plus teardown, with configurable failures."""
    calls: list = field(default_factory=list)
    failures: dict = field(default_factory=dict)
    interrupt_at: str = ''
    name: str = 'fake'
    description: str = 'Fake scenario'
    stage_names: tuple = ('bootstrap', 'deploy', 'validate_outputs', 'sql_tests', 'proxy_tests')

    def _action(self, name):
        return RecordingAction(name, self.calls, self.failures.get(name), name == self.interrupt_at)

    def get_stages(self, config):
        return [(name, self._action(name), name) for name in self.stage_names]

    def get_teardown(self, config):
        return ('teardown', self._action('teardown'), 'teardown')


STAGES = ['bootstrap', 'deploy', 'validate_outputs', 'sql_tests', 'proxy_tests']


class TestCleanupAlways:
    """Teardown runs exactly once whatever happens."""

    def test_all_pass(self, run_config, tmp_path):
        scenario = FakeScenario()
        orch = Orchestrator(scenario, run_config, tmp_path)
        assert orch.run() is True
        assert scenario.calls == STAGES + ['teardown']
        assert orch.teardown_runs == 1

    @pytest.mark.parametrize('failing', STAGES)
    def test_teardown_after_any_failure(self, run_config, tmp_path, failing):
        scenario = FakeScenario(failures={failing: RuntimeError('boom')})
        orch = Orchestrator(scenario, run_config, tmp_path)
        assert orch.run() is False

        expected = STAGES[:STAGES.index(failing) + 1] + ['teardown']
        assert scenario.calls == expected
        assert scenario.calls.count('teardown') == 1
        assert orch.error.stage == failing

    def test_teardown_on_interrupt(self, run_config, tmp_path):
        scenario = FakeScenario(interrupt_at='sql_tests')
        orch = Orchestrator(scenario, run_config, tmp_path)
        with pytest.raises(KeyboardInterrupt):
            orch.run()
        assert scenario.calls == ['bootstrap', 'deploy', 'validate_outputs', 'sql_tests', 'teardown']
        assert orch.report.error == 'interrupted'

    def test_teardown_failure_fails_clean_run(self, run_config, tmp_path):
        scenario = FakeScenario(failures={'teardown': ProvisioningError('destroy failed')})
        orch = Orchestrator(scenario, run_config, tmp_path)
        assert orch.run() is False
        assert orch.error is None
        assert orch.teardown_error.stage == 'teardown'
        assert 'destroy failed' in orch.report.error

    def test_teardown_failure_does_not_mask_original(self, run_config, tmp_path):
        scenario = FakeScenario(failures={
            'sql_tests': UnreachableError('ping failed'),
            'teardown': ProvisioningError('destroy failed'),
        })
        orch = Orchestrator(scenario, run_config, tmp_path)
        assert orch.run() is False
        assert orch.error.stage == 'sql_tests'
        assert isinstance(orch.error.cause, UnreachableError)
        assert 'ping failed' in orch.report.error
        assert 'destroy failed' not in orch.report.error


class TestSkipSemantics:
    """Skipped stages are bypassed, the run continues."""

    def test_skipped_stage_not_run(self, run_config, tmp_path):
        scenario = FakeScenario()
        orch = Orchestrator(scenario, run_config, tmp_path, skip_flags={'sql_tests': True})
        assert orch.run() is True
        assert 'sql_tests' not in scenario.calls
        assert scenario.calls[-2:] == ['proxy_tests', 'teardown']
        assert orch.report.status_of('sql_tests') == 'skipped'

    def test_skip_deploy_keep_validate(self, run_config, tmp_path):
        """No dependency enforcement: validate still runs."""
        scenario = FakeScenario()
        orch = Orchestrator(scenario, run_config, tmp_path, skip_flags={'deploy': True})
        assert orch.run() is True
        assert 'deploy' not in scenario.calls
        assert 'validate_outputs' in scenario.calls

    def test_skip_teardown(self, run_config, tmp_path):
        scenario = FakeScenario()
        orch = Orchestrator(scenario, run_config, tmp_path, skip_flags={'teardown': True})
        assert orch.run() is True
        assert 'teardown' not in scenario.calls
        assert orch.teardown_runs == 1
        assert orch.report.status_of('teardown') == 'skipped'


class TestValidation:
    """Stage list validation and preview."""

    def test_duplicate_stage_names(self, run_config, tmp_path):
        scenario = FakeScenario(stage_names=('bootstrap', 'deploy', 'deploy'))
        orch = Orchestrator(scenario, run_config, tmp_path)
        with pytest.raises(ConfigurationError):
            orch.run()
        assert scenario.calls == []

    def test_stage_names(self, run_config, tmp_path):
        orch = Orchestrator(FakeScenario(), run_config, tmp_path)
        assert orch.stage_names() == STAGES + ['teardown']

    def test_dry_run_executes_nothing(self, run_config, tmp_path, capsys):
        scenario = FakeScenario()
        orch = Orchestrator(scenario, run_config, tmp_path, skip_flags={'deploy': True}, dry_run=True)
        assert orch.run() is True
        assert scenario.calls == []
        out = capsys.readouterr().out
        assert '[SKIP] deploy' in out
        assert '[ OK ] teardown' in out


class TestReports:
    """Report files are written per run."""

    def test_writes_json_and_markdown(self, run_config, tmp_path):
        report_dir = tmp_path / 'reports'
        scenario = FakeScenario(failures={'deploy': ProvisioningError('apply failed')})
        Orchestrator(scenario, run_config, tmp_path / 'work', report_dir=report_dir).run()

        json_files = list(report_dir.glob('*.fake.*.failed.json'))
        assert len(json_files) == 1
        data = json.loads(json_files[0].read_text())
        assert data['success'] is False
        assert 'apply failed' in data['error']
        assert [s['status'] for s in data['stages']] == ['passed', 'failed', 'passed']
        assert list(report_dir.glob('*.fake.*.failed.md'))


class TestMySQLPublicIPRun:
    """Full scenario with terraform and database mocked."""

    @pytest.fixture
    def patched(self, good_outputs):
        with patch('scenarios.mysql_public_ip.init_and_apply') as apply_, \
             patch('scenarios.mysql_public_ip.output',
                   side_effect=lambda options, key: good_outputs[key]) as output_, \
             patch('scenarios.mysql_public_ip.verify_direct', return_value=5) as direct, \
             patch('scenarios.mysql_public_ip.verify_tunnel', return_value=10) as tunnel, \
             patch('scenarios.mysql_public_ip.destroy') as destroy_:
            yield {'apply': apply_, 'output': output_, 'direct': direct, 'tunnel': tunnel, 'destroy': destroy_}

    def test_full_run(self, run_config, work_dir, patched):
        orch = Orchestrator(MySQLPublicIP(), run_config, work_dir)
        assert orch.run() is True

        patched['apply'].assert_called_once()
        patched['direct'].assert_called_once()
        patched['tunnel'].assert_called_once()
        patched['destroy'].assert_called_once()
        assert orch.store.load_string('project') == 'proj-123'
        assert orch.store.load_string('region') == 'us-central1'

    def test_direct_failure_still_destroys(self, run_config, work_dir, patched):
        patched['direct'].side_effect = UnreachableError('no route')
        orch = Orchestrator(MySQLPublicIP(), run_config, work_dir)
        assert orch.run() is False
        assert orch.error.stage == 'sql_tests'
        patched['tunnel'].assert_not_called()
        patched['destroy'].assert_called_once()

    def test_skipped_probe_inserts_nothing(self, run_config, work_dir, patched):
        orch = Orchestrator(MySQLPublicIP(), run_config, work_dir,
                            skip_flags={'sql_tests': True, 'proxy_tests': True})
        assert orch.run() is True
        patched['direct'].assert_not_called()
        patched['tunnel'].assert_not_called()

    def test_rerun_validate_from_persisted_state(self, run_config, work_dir, patched):
        """A second run with bootstrap/deploy skipped reuses the first run's state."""
        first = Orchestrator(MySQLPublicIP(), run_config, work_dir, skip_flags={'teardown': True})
        assert first.run() is True

        skip = {'bootstrap': True, 'deploy': True, 'sql_tests': True, 'proxy_tests': True}
        second = Orchestrator(MySQLPublicIP(), run_config, work_dir, skip_flags=skip)
        assert second.run() is True
        assert patched['apply'].call_count == 1
        assert patched['destroy'].call_count == 1

    def test_skip_deploy_on_fresh_dir(self, run_config, work_dir, patched):
        """Skipping deploy without persisted options is a clear configuration error."""
        orch = Orchestrator(MySQLPublicIP(), run_config, work_dir, skip_flags={'deploy': True})
        assert orch.run() is False
        assert orch.error.stage == 'validate_outputs'
        assert isinstance(orch.error.cause, ConfigurationError)
        assert 'terraform_options' in str(orch.error)
        # Teardown hit the same missing key; reported error stays the first one
        assert isinstance(orch.teardown_error.cause, ConfigurationError)
        patched['destroy'].assert_not_called()

    def test_missing_output_fails_validate(self, run_config, work_dir, patched, good_outputs):
        def output_without_db(options, key):
            if key == 'db_name':
                raise MissingOutputError(key, [])
            return good_outputs[key]

        patched['output'].side_effect = output_without_db
        orch = Orchestrator(MySQLPublicIP(), run_config, work_dir)
        assert orch.run() is False
        assert orch.error.stage == 'validate_outputs'
        patched['direct'].assert_not_called()
        patched['destroy'].assert_called_once()
