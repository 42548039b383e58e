from __future__ import annotations

import json
import sys
from pathlib import Path

import pytest
from loguru import logger

from taskflow.cli import main


@pytest.fixture(autouse=True)
def _restore_logger():
    yield
    logger.remove()
    logger.add(sys.stderr)


def _run(tmp_path: Path, capsys, *argv: str) -> dict:
    rc = main(['--project-dir', str(tmp_path), '--log-level', 'ERROR', '--actor', 'alice', '--org', 'org-acme', *argv])
    assert rc == 0
    return json.loads(capsys.readouterr().out)


def test_task_create_list_and_show(tmp_path: Path, capsys) -> None:
    created = _run(tmp_path, capsys, 'task', 'create', 'CLI Task', '--priority', 'high', '--due-date', '2024-03-20')
    task = created['task']
    assert task['status'] == 'pending'
    assert task['priority'] == 'high'
    assert task['created_by'] == 'alice'

    listed = _run(tmp_path, capsys, 'task', 'list')
    assert listed['total'] == 1

    shown = _run(tmp_path, capsys, 'task', 'show', task['id'])
    assert shown['task']['title'] == 'CLI Task'
    assert shown['time']['time_tracking_enabled'] is False


def test_transition_and_history(tmp_path: Path, capsys) -> None:
    task = _run(tmp_path, capsys, 'task', 'create', 'Review contract')['task']
    moved = _run(tmp_path, capsys, 'task', 'transition', task['id'], 'in_progress', '--expected-version', '1')
    assert moved['task']['status'] == 'in_progress'

    history = _run(tmp_path, capsys, 'task', 'history', task['id'])['history']
    assert [h['action'] for h in history] == ['created', 'status_changed']

    assert _run(tmp_path, capsys, 'task', 'list', '--status', 'in_progress')['total'] == 1
    assert _run(tmp_path, capsys, 'task', 'list', '--status', 'pending')['total'] == 0


def test_invalid_transition_returns_error(tmp_path: Path, capsys) -> None:
    task = _run(tmp_path, capsys, 'task', 'create', 'Review contract')['task']
    rc = main(['--project-dir', str(tmp_path), '--log-level', 'ERROR', '--actor', 'alice', '--org', 'org-acme',
               'task', 'transition', task['id'], 'approved'])
    assert rc == 1
    err = capsys.readouterr().err.strip().splitlines()[-1]
    assert json.loads(err)['error']['kind'] == 'invalid_transition'


def test_tasks_are_org_scoped(tmp_path: Path, capsys) -> None:
    task = _run(tmp_path, capsys, 'task', 'create', 'Private')['task']
    rc = main(['--project-dir', str(tmp_path), '--log-level', 'ERROR', '--org', 'org-other', 'task', 'show', task['id']])
    assert rc == 1
    assert 'not_found' in capsys.readouterr().err


def test_project_and_member(tmp_path: Path, capsys) -> None:
    project = _run(tmp_path, capsys, 'project', 'create', 'Relaunch', '--start-date', '2024-03-01')['project']
    member = _run(tmp_path, capsys, 'member', 'add', 'Bob', 'Bob@Example.com', '--id', 'bob')['member']
    assert member['email'] == 'bob@example.com'

    _run(tmp_path, capsys, 'task', 'create', 'Landing page', '--project-id', project['id'], '--assigned-to', 'bob')
    stats = _run(tmp_path, capsys, 'project', 'stats', project['id'])['stats']
    assert stats['total'] == 1
    assert stats['progress_pct'] == 0
    assert stats['schedule_label'] == 'No end date set'


def test_recurring_task_spawns_successor(tmp_path: Path, capsys) -> None:
    task = _run(tmp_path, capsys, 'task', 'create', 'Weekly sync', '--due-date', '2024-03-08', '--recurring', 'weekly',
                 '--recurring-ends-on', '2099-12-31')['task']
    _run(tmp_path, capsys, 'task', 'transition', task['id'], 'in_progress')
    _run(tmp_path, capsys, 'task', 'transition', task['id'], 'completed')

    tasks = _run(tmp_path, capsys, 'task', 'list')['tasks']
    (successor,) = [t for t in tasks if t['recurrence_parent_id'] == task['id']]
    assert successor['due_date'] == '2024-03-15'

    assert _run(tmp_path, capsys, 'recurrence', 'tick', '--now', '2024-03-10T09:00:00Z') == {'spawned': []}


def test_table_output(tmp_path: Path, capsys) -> None:
    task = _run(tmp_path, capsys, 'task', 'create', 'Tabular')['task']
    base = ['--project-dir', str(tmp_path), '--log-level', 'ERROR', '--actor', 'alice', '--org', 'org-acme']
    assert main([*base, 'task', 'list', '--table']) == 0
    assert main([*base, 'task', 'history', task['id'], '--table']) == 0
    assert 'Tabular' in capsys.readouterr().out


def test_log_level_from_config(tmp_path: Path) -> None:
    (tmp_path / '.taskflow').mkdir()
    (tmp_path / '.taskflow' / 'config.yaml').write_text('logging:\n  level: warning\n')
    assert main(['--project-dir', str(tmp_path), 'task', 'list']) == 0
