from __future__ import annotations

import re
import stat
import sys
from pathlib import Path

import allure
import pytest
from click.testing import CliRunner

from agent_bridge import __version__
from agent_bridge.main import agent_bridge

pytestmark = [
    allure.epic("Management"),
    allure.feature("Command Line"),
]

_FAKE_CLAUDE = """\
import json
import sys

argv = sys.argv[1:]
if argv == ["--version"]:
    print("2.0.0 (Claude Code)")
    sys.exit(0)
flag = "--resume" if "--resume" in argv else "--session-id"
session = argv[argv.index(flag) + 1]
print(json.dumps({"type": "result", "result": "prompt=" + argv[-1], "session_id": session}))
"""


@pytest.fixture()
def cli_env(tmp_path: Path, monkeypatch) -> Path:
    script = tmp_path / "claude"
    script.write_text(f"#!{sys.executable}\n{_FAKE_CLAUDE}", encoding="utf-8")
    script.chmod(script.stat().st_mode | stat.S_IXUSR)

    db_path = tmp_path / "cli.db"
    monkeypatch.setenv("AGENT_BRIDGE_CONFIG", str(tmp_path / "absent.toml"))
    monkeypatch.setenv("AGENT_BRIDGE_DB_PATH", str(db_path))
    monkeypatch.setenv("AGENT_TYPE", "claude")
    monkeypatch.setenv("CLAUDE_BIN", str(script))
    monkeypatch.setenv("TZ", "UTC")
    monkeypatch.delenv("AGENT_TIMEZONE", raising=False)
    monkeypatch.delenv("AGENT_WORKING_DIR", raising=False)
    monkeypatch.delenv("ALLOWED_DIRS", raising=False)
    monkeypatch.delenv("MAX_TURNS_PER_SESSION", raising=False)
    return db_path


def test_cli_enqueue_worker_inspect_and_session(cli_env: Path) -> None:
    runner = CliRunner()

    enqueue = runner.invoke(
        agent_bridge,
        ["jobs", "enqueue", "--thread-id", "t1", "--prompt", "hello"],
    )
    assert enqueue.exit_code == 0, enqueue.output
    assert "Job enqueued:" in enqueue.output
    assert "resume=False" in enqueue.output
    job_id = re.search(r"job_id=(\S+)", enqueue.output).group(1)

    listed = runner.invoke(agent_bridge, ["jobs", "list", "--status", "queued"])
    assert listed.exit_code == 0, listed.output
    assert "Jobs: 1" in listed.output
    assert job_id in listed.output

    worker = runner.invoke(agent_bridge, ["worker", "run", "--once"])
    assert worker.exit_code == 0, worker.output
    assert "[t1] prompt=hello" in worker.output
    assert "Worker summary: processed=1 succeeded=1" in worker.output

    inspect = runner.invoke(agent_bridge, ["jobs", "inspect", job_id])
    assert inspect.exit_code == 0, inspect.output
    assert "Status: succeeded" in inspect.output
    assert "Attempt: 1/3" in inspect.output
    assert "claimed queued -> running" in inspect.output

    session = runner.invoke(agent_bridge, ["sessions", "show", "t1"])
    assert session.exit_code == 0, session.output
    assert "Turns: 1" in session.output
    assert "Paused: no" in session.output
    assert "Held messages: 0" in session.output

    follow_up = runner.invoke(
        agent_bridge,
        ["jobs", "enqueue", "--thread-id", "t1", "--prompt", "again"],
    )
    assert "resume=True" in follow_up.output


def test_cli_worker_with_empty_queue_reports_idle(cli_env: Path) -> None:
    result = CliRunner().invoke(agent_bridge, ["worker", "run", "--max-jobs", "3"])

    assert result.exit_code == 0, result.output
    assert "processed=0" in result.output
    assert "idle_polls=1" in result.output


def test_cli_retry_rejects_non_dead_job(cli_env: Path) -> None:
    runner = CliRunner()
    enqueue = runner.invoke(
        agent_bridge,
        ["jobs", "enqueue", "--thread-id", "t1", "--prompt", "hello"],
    )
    job_id = re.search(r"job_id=(\S+)", enqueue.output).group(1)

    retry = runner.invoke(agent_bridge, ["jobs", "retry", job_id])

    assert retry.exit_code == 1
    assert "Only dead jobs can be retried" in retry.output


def test_cli_inspect_unknown_job_and_empty_session(cli_env: Path) -> None:
    runner = CliRunner()

    inspect = runner.invoke(agent_bridge, ["jobs", "inspect", "missing"])
    session = runner.invoke(agent_bridge, ["sessions", "show", "nobody"])

    assert "Job not found: missing" in inspect.output
    assert "Session: -" in session.output


def test_cli_projects_register_and_route_jobs(cli_env: Path, tmp_path: Path) -> None:
    runner = CliRunner()
    api = tmp_path / "api"
    api.mkdir()

    added = runner.invoke(agent_bridge, ["projects", "add", "api", str(api)])
    assert added.exit_code == 0, added.output
    assert f"Project registered: api -> {api.resolve()}" in added.output

    missing = runner.invoke(agent_bridge, ["projects", "add", "ghost", str(tmp_path / "ghost")])
    assert missing.exit_code == 1
    assert "Directory not found" in missing.output

    default = runner.invoke(agent_bridge, ["projects", "default", "api"])
    assert "Default project: api" in default.output
    used = runner.invoke(agent_bridge, ["projects", "use", "C1", "api"])
    assert "Channel C1 uses project api" in used.output
    channel_dir = runner.invoke(agent_bridge, ["projects", "channel-dir", "C2", str(tmp_path)])
    assert f"Channel C2 working dir: {tmp_path.resolve()}" in channel_dir.output

    listed = runner.invoke(agent_bridge, ["projects", "list"])
    assert "Projects: 1" in listed.output
    assert "api (default)" in listed.output

    enqueue = runner.invoke(
        agent_bridge,
        ["jobs", "enqueue", "--thread-id", "t1", "--prompt", "hi", "--project", "api"],
    )
    assert enqueue.exit_code == 0, enqueue.output
    unknown = runner.invoke(
        agent_bridge,
        ["jobs", "enqueue", "--thread-id", "t2", "--prompt", "hi", "--project", "nope"],
    )
    assert unknown.exit_code == 1
    assert "not found" in unknown.output

    session = runner.invoke(agent_bridge, ["sessions", "show", "t1"])
    assert "Project: api" in session.output
    assert f"Working dir: {api.resolve()}" in session.output


def test_cli_turn_limit_counts_turns_across_invocations(cli_env: Path, monkeypatch) -> None:
    monkeypatch.setenv("MAX_TURNS_PER_SESSION", "1")
    runner = CliRunner()

    first = runner.invoke(agent_bridge, ["jobs", "enqueue", "--thread-id", "t1", "--prompt", "a"])
    worker = runner.invoke(agent_bridge, ["worker", "run", "--once"])
    second = runner.invoke(agent_bridge, ["jobs", "enqueue", "--thread-id", "t1", "--prompt", "b"])

    assert "Job enqueued:" in first.output
    assert "succeeded=1" in worker.output
    assert "Job rejected (limit_reached)" in second.output


def test_cli_agents_resolve_reports_source(cli_env: Path, monkeypatch) -> None:
    monkeypatch.setenv("CODEX_BIN", "/opt/codex/bin/codex")

    result = CliRunner().invoke(agent_bridge, ["agents", "resolve", "--agent", "codex"])

    assert result.exit_code == 0, result.output
    assert "codex: /opt/codex/bin/codex (source=env, override=CODEX_BIN)" in result.output


def test_cli_rejects_invalid_configuration(cli_env: Path, monkeypatch) -> None:
    monkeypatch.setenv("AGENT_TYPE", "gemini")

    result = CliRunner().invoke(agent_bridge, ["jobs", "list"])

    assert result.exit_code != 0
    assert isinstance(result.exception, ValueError)


def test_cli_version() -> None:
    result = CliRunner().invoke(agent_bridge, ["--version"])

    assert result.exit_code == 0
    assert __version__ in result.output
