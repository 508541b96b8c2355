import datetime
import io
from dataclasses import replace

import pytest

from conftest import Answers, FakeAgent, FakeRunner
from rsync_deployer.deployment.deployment import Deployment, PushState
from rsync_deployer.errors import RemoteOperationFailed, RetentionDateInvalid, UserCancelled
from rsync_deployer.process_runner.process_runner import ProcessResult
from rsync_deployer.terminal.terminal import Terminal
from rsync_deployer.webhook import webhook

NOW = datetime.datetime(2026, 10, 18, 12, 0, 0)

DRY_RUN = b"<f.st...... index.html\n<f+++++++++ new.txt\ncd+++++++++ lib/\n"


def make_deployment(options, runner, agent, *answers, stream=None):
    terminal = Terminal(colorize=False, stream=stream or io.StringIO(), input_func=Answers(*answers))
    return Deployment(options, runner, agent, terminal, now=NOW, cwd=options.project_root)


def test_push_walks_through_every_state(options, project):
    (project / "index.html").write_text("new\n")
    (project / "new.txt").write_text("hello\n")
    options = replace(options, after="make restart")
    epoch_path = options.remote_backup_root + "/20261018120000"
    runner = FakeRunner([ProcessResult(stdout=DRY_RUN), ProcessResult(stdout=DRY_RUN)])
    agent = FakeAgent(files={epoch_path: {"index.html": b"old\n"}},
                      directories={options.remote_backup_root: ["20200101000000", "20261018120000"]})

    deployment = make_deployment(options, runner, agent, "y")
    state = deployment.push()

    assert state is PushState.DONE
    assert deployment.history == [
        PushState.IDLE,
        PushState.DRY_RUN_SHOWN,
        PushState.TRANSFER_RUNNING,
        PushState.BACKUP_MATERIALIZED,
        PushState.PATCH_GENERATED,
        PushState.PURGE_COMPLETE,
        PushState.AFTER_HOOK_RUN,
        PushState.DONE,
    ]

    dry_run, real = runner.calls
    assert "--dry-run" in dry_run
    assert "--dry-run" not in real
    # the same epoch is used by the dry run, the transfer and the patch
    assert "--backup-dir=" + epoch_path in real
    assert "--backup-dir=" + epoch_path in dry_run
    assert list(agent.appended) == [epoch_path + "/deploy.patch"]
    assert agent.removed == [options.remote_backup_root + "/20200101000000"]
    assert agent.shell_calls == [("make restart", options.remote_path)]


def test_declined_push_transfers_nothing(options):
    runner = FakeRunner([ProcessResult(stdout=DRY_RUN)])
    agent = FakeAgent()
    deployment = make_deployment(options, runner, agent, "n")

    with pytest.raises(UserCancelled):
        deployment.push()

    assert deployment.state is PushState.CANCELLED
    assert len(runner.calls) == 1
    assert agent.appended == {}


def test_nothing_to_push(options):
    runner = FakeRunner([ProcessResult(stdout=b"sending incremental file list\n")])
    deployment = make_deployment(options, runner, FakeAgent())

    assert deployment.push() is PushState.DONE
    assert len(runner.calls) == 1


def test_push_without_backups(options, project):
    (project / "new.txt").write_text("hello\n")
    options = replace(options, backup_path="")
    output = b"<f+++++++++ new.txt\n"
    runner = FakeRunner([ProcessResult(stdout=output), ProcessResult(stdout=output)])
    agent = FakeAgent()

    deployment = make_deployment(options, runner, agent, "y")
    deployment.push()

    assert not [arg for arg in runner.calls[1] if arg.startswith("--backup")]
    assert PushState.PATCH_GENERATED not in deployment.history
    assert deployment.history[-1] is PushState.DONE
    assert agent.appended == {}


def test_failed_transfer_is_reported(options):
    runner = FakeRunner([ProcessResult(stdout=DRY_RUN), ProcessResult(stderr=b"connection reset", exit_code=12)])
    deployment = make_deployment(options, runner, FakeAgent(), "y")

    with pytest.raises(RemoteOperationFailed) as error:
        deployment.push()

    assert error.value.result.exit_code == 12
    assert "connection reset" in error.value.output
    assert deployment.state is PushState.TRANSFER_RUNNING


def test_failed_after_hook_stops_the_push(options, project):
    (project / "index.html").write_text("new\n")
    (project / "new.txt").write_text("hello\n")
    options = replace(options, after="false")
    runner = FakeRunner([ProcessResult(stdout=DRY_RUN), ProcessResult(stdout=DRY_RUN)])
    agent = FakeAgent(shell_results=[ProcessResult(exit_code=1)])

    deployment = make_deployment(options, runner, agent, "y")

    with pytest.raises(RemoteOperationFailed):
        deployment.push()

    assert deployment.state is PushState.PURGE_COMPLETE


def test_push_with_diff_preview(options, project):
    (project / "index.html").write_text("new\n")
    (project / "new.txt").write_text("hello\n")
    options = replace(options, diff=True)
    runner = FakeRunner([ProcessResult(stdout=DRY_RUN)])
    agent = FakeAgent(files={options.remote_path: {"index.html": b"old\n"}})
    stream = io.StringIO()

    deployment = make_deployment(options, runner, agent, "n", stream=stream)
    with pytest.raises(UserCancelled):
        deployment.push()

    assert "-old\n+new\n" in stream.getvalue()


def test_diff_is_repeatable(options, project):
    (project / "index.html").write_text("new\n")
    (project / "new.txt").write_text("hello\n")
    runner = FakeRunner([ProcessResult(stdout=DRY_RUN), ProcessResult(stdout=DRY_RUN)])
    agent = FakeAgent(files={options.remote_path: {"index.html": b"old\n"}})
    deployment = make_deployment(options, runner, agent)

    first = deployment.diff()
    second = deployment.diff()

    assert first == second
    assert "diff --git a/index.html b/index.html" in first
    assert "diff --git a/new.txt b/new.txt" in first
    assert "lib/" not in first
    assert all("--dry-run" in call for call in runner.calls)


def test_diff_without_changes(options):
    deployment = make_deployment(options, FakeRunner([ProcessResult()]), FakeAgent())

    assert deployment.diff() == ""


def test_pull(options):
    output = b">f.st...... index.html\n"
    runner = FakeRunner([ProcessResult(stdout=output), ProcessResult(stdout=output)])

    applied = make_deployment(options, runner, FakeAgent(), "y").pull()

    assert [change.path for change in applied] == ["index.html"]
    assert runner.calls[1][-2] == "deploy@example.com:/var/www/site/"
    assert not [arg for call in runner.calls for arg in call if arg.startswith("--backup")]


def test_declined_pull(options):
    runner = FakeRunner([ProcessResult(stdout=b">f.st...... index.html\n")])

    with pytest.raises(UserCancelled):
        make_deployment(options, runner, FakeAgent(), "n").pull()

    assert len(runner.calls) == 1


def test_console_runs_a_command(options):
    options = replace(options, command="ls -la")
    agent = FakeAgent(shell_results=[ProcessResult(stdout=b"total 0\n")])
    stream = io.StringIO()

    assert make_deployment(options, FakeRunner(), agent, stream=stream).console() == 0
    assert agent.shell_calls == [("ls -la", options.remote_path)]
    assert "total 0" in stream.getvalue()


def test_console_command_failure(options):
    options = replace(options, command="false")
    agent = FakeAgent(shell_results=[ProcessResult(exit_code=1)])

    with pytest.raises(RemoteOperationFailed):
        make_deployment(options, FakeRunner(), agent).console()


def test_interactive_console(options):
    options = replace(options, method="ssh -p 2222", become="www-data")
    runner = FakeRunner()

    make_deployment(options, runner, FakeAgent()).console()

    command = runner.interactive_calls[0]
    assert command[:5] == ["ssh", "-p", "2222", "-t", "deploy@example.com"]
    assert command[5].startswith("sudo -u www-data sh -c ")
    assert "cd /var/www/site" in command[5]


@pytest.fixture
def posts(monkeypatch):
    sent = []
    monkeypatch.setattr(webhook, "post_payload", lambda url, payload: sent.append((url, payload)))
    return sent


def test_push_notifies_the_webhook_once(options, project, posts):
    (project / "index.html").write_text("new\n")
    (project / "new.txt").write_text("hello\n")
    options = replace(options, webhook_url="https://hooks.example.com/deploy")
    epoch_path = options.remote_backup_root + "/20261018120000"
    runner = FakeRunner([ProcessResult(stdout=DRY_RUN), ProcessResult(stdout=DRY_RUN)])
    agent = FakeAgent(files={epoch_path: {"index.html": b"old\n"}})

    make_deployment(options, runner, agent, "y").push()

    assert len(posts) == 1
    url, payload = posts[0]
    assert url == "https://hooks.example.com/deploy"
    assert payload["diff_file"].endswith("deploy.patch")
    # index.html and new.txt; the lib/ directory marker is not counted
    assert payload["files_changed"] == 2
    assert "-old\n+new\n" in payload["diff_contents"]


def test_declined_push_does_not_notify(options, posts):
    options = replace(options, webhook_url="https://hooks.example.com/deploy")
    runner = FakeRunner([ProcessResult(stdout=DRY_RUN)])

    with pytest.raises(UserCancelled):
        make_deployment(options, runner, FakeAgent(), "n").push()

    assert posts == []


def test_invalid_retention_only_skips_the_purge(options, project, posts):
    (project / "index.html").write_text("new\n")
    (project / "new.txt").write_text("hello\n")
    options = replace(options, backup_retention="forever", after="make restart",
                      webhook_url="https://hooks.example.com/deploy")
    runner = FakeRunner([ProcessResult(stdout=DRY_RUN), ProcessResult(stdout=DRY_RUN)])
    agent = FakeAgent(directories={options.remote_backup_root: ["20200101000000"]})
    stream = io.StringIO()

    deployment = make_deployment(options, runner, agent, "y", stream=stream)

    assert deployment.push() is PushState.DONE
    assert PushState.PURGE_COMPLETE not in deployment.history
    assert deployment.history[-3:] == [PushState.PATCH_GENERATED, PushState.AFTER_HOOK_RUN, PushState.DONE]
    assert agent.removed == []
    assert agent.shell_calls == [("make restart", options.remote_path)]
    assert len(posts) == 1
    assert "Invalid backup retention [forever]" in stream.getvalue()


def test_invalid_retention_fails_an_explicit_purge(options):
    options = replace(options, backup_retention="forever")
    agent = FakeAgent(directories={options.remote_backup_root: ["20200101000000"]})

    with pytest.raises(RetentionDateInvalid):
        make_deployment(options, FakeRunner(), agent).purge_backups()

    assert agent.removed == []
