from __future__ import annotations

import stat
import sys
from datetime import UTC, datetime
from pathlib import Path

import allure
import pytest

from agent_bridge.agents.base import (
    SpawnRequest,
    build_system_context,
    format_datetime_context,
    needs_stdin,
)
from agent_bridge.agents.binary import BinaryCache, BinaryResolver, BinarySource, ResolvedBinary
from agent_bridge.agents.claude import ClaudeAdapter
from agent_bridge.agents.codex import CodexAdapter
from agent_bridge.agents.opencode import OpenCodeAdapter
from agent_bridge.agents.registry import binary_spec_for, create_adapter
from agent_bridge.errors import AgentProcessError, SessionResumeFailed

pytestmark = [
    allure.epic("Agent Adapters"),
    allure.feature("Invocation"),
]

_NOW = datetime(2026, 10, 17, 15, 5, tzinfo=UTC)
_CONTEXT = "Current date/time: Saturday, October 17, 2026, 3:05 PM"

_FAKE_CLAUDE = """\
import json
import sys

argv = sys.argv[1:]
stdin = sys.stdin.read()
if "--resume" in argv:
    sys.stderr.write("No conversation found with session ID: " + argv[argv.index("--resume") + 1])
    sys.exit(1)
if "--continue" in argv:
    session = "latest-session"
else:
    session = argv[argv.index("--session-id") + 1]
print(json.dumps({"type": "result", "result": "prompt=" + (stdin or argv[-1]), "session_id": session}))
"""


def _resolver() -> BinaryResolver:
    return BinaryResolver(BinaryCache(), environ={}, which=lambda _: None, system_dirs=())


def _binary(name: str) -> ResolvedBinary:
    return ResolvedBinary(path=f"/bin/{name}", source=BinarySource.ENV)


def _write_agent(tmp_path: Path, name: str, body: str) -> Path:
    script = tmp_path / name
    script.write_text(f"#!{sys.executable}\n{body}", encoding="utf-8")
    script.chmod(script.stat().st_mode | stat.S_IXUSR)
    return script


def test_datetime_context_format() -> None:
    assert format_datetime_context(_NOW) == _CONTEXT
    assert format_datetime_context(datetime(2026, 1, 1, 0, 7, tzinfo=UTC)).endswith("12:07 AM")
    assert build_system_context(_NOW, "Be brief.") == f"{_CONTEXT}\n\nBe brief."


@pytest.mark.parametrize(
    ("prompt", "expected"),
    [
        ("hello", False),
        ("a < b and c > d", False),
        ("line one\nline two", True),
        ("-v please", True),
        ("see <file path='x'>", True),
    ],
)
def test_needs_stdin(prompt: str, expected: bool) -> None:
    assert needs_stdin(prompt) is expected


def test_claude_new_resume_and_continue_invocations() -> None:
    adapter = ClaudeAdapter(resolver=_resolver(), timezone="Europe/Berlin", check_version=False)
    new = adapter.build_invocation(
        _binary("claude"),
        SpawnRequest(prompt="hello", session_id="s1", resume=False),
        now=_NOW,
    )
    resumed = adapter.build_invocation(
        _binary("claude"),
        SpawnRequest(prompt="hello", session_id="s1", resume=True),
        now=_NOW,
    )
    latest = adapter.build_invocation(
        _binary("claude"),
        SpawnRequest(prompt="hello", session_id="s1", resume=True),
        now=_NOW,
        continue_latest=True,
    )

    assert new.argv == [
        "/bin/claude",
        "--print",
        "--output-format",
        "json",
        "--session-id",
        "s1",
        "--append-system-prompt",
        _CONTEXT,
        "hello",
    ]
    assert new.stdin_text is None
    assert new.env["TZ"] == "Europe/Berlin"
    assert resumed.argv[4:6] == ["--resume", "s1"]
    assert "--continue" in latest.argv
    assert "--resume" not in latest.argv
    assert "s1" not in latest.argv


def test_claude_multiline_prompt_goes_through_stdin() -> None:
    adapter = ClaudeAdapter(resolver=_resolver(), check_version=False)

    invocation = adapter.build_invocation(
        _binary("claude"),
        SpawnRequest(prompt="first\nsecond", session_id="s1", resume=False),
        now=_NOW,
    )

    assert invocation.stdin_text == "first\nsecond"
    assert invocation.argv[-1] == _CONTEXT


def test_codex_invocations_read_prompt_from_stdin() -> None:
    adapter = CodexAdapter(resolver=_resolver())
    request = SpawnRequest(prompt="hello", session_id="th-1", resume=True)

    resumed = adapter.build_invocation(_binary("codex"), request, now=_NOW)
    latest = adapter.build_invocation(_binary("codex"), request, now=_NOW, continue_latest=True)
    new = adapter.build_invocation(
        _binary("codex"),
        SpawnRequest(prompt="hello", session_id="th-1", resume=False),
        now=_NOW,
    )

    assert resumed.argv == ["/bin/codex", "exec", "resume", "th-1", "--json", "-"]
    assert latest.argv == ["/bin/codex", "exec", "resume", "--last", "--json", "-"]
    assert new.argv == ["/bin/codex", "exec", "--json", "-"]
    assert resumed.stdin_text is not None
    assert resumed.stdin_text.startswith(f"<system_context>\n{_CONTEXT}\n</system_context>")
    assert resumed.stdin_text.endswith("\n\nhello")


def test_opencode_invocations() -> None:
    adapter = OpenCodeAdapter(resolver=_resolver())

    new = adapter.build_invocation(
        _binary("opencode"),
        SpawnRequest(prompt="hello", session_id="ses_1", resume=False),
        now=_NOW,
    )
    resumed = adapter.build_invocation(
        _binary("opencode"),
        SpawnRequest(prompt="hello", session_id="ses_1", resume=True),
        now=_NOW,
    )
    latest = adapter.build_invocation(
        _binary("opencode"),
        SpawnRequest(prompt="hello", session_id="ses_1", resume=True),
        now=_NOW,
        continue_latest=True,
    )

    assert new.argv == ["/bin/opencode", "run", "--format", "json"]
    assert resumed.argv == ["/bin/opencode", "run", "--format", "json", "--session", "ses_1"]
    assert latest.argv == ["/bin/opencode", "run", "--format", "json", "--continue"]
    assert new.stdin_text is not None
    assert new.stdin_text.endswith("hello")


def test_npx_binary_prefix_is_kept_in_argv() -> None:
    adapter = ClaudeAdapter(resolver=_resolver(), check_version=False)
    binary = ResolvedBinary(
        path="/usr/bin/npx",
        source=BinarySource.NPX,
        prefix_args=("@anthropic-ai/claude-code",),
    )

    invocation = adapter.build_invocation(
        binary,
        SpawnRequest(prompt="hi", session_id="s1", resume=False),
        now=_NOW,
    )

    assert invocation.argv[:3] == ["/usr/bin/npx", "@anthropic-ai/claude-code", "--print"]


def test_registry_creates_adapters_case_insensitively() -> None:
    resolver = _resolver()

    assert create_adapter(" Codex ", resolver=resolver).name == "codex"
    assert create_adapter("opencode", resolver=resolver).name == "opencode"
    assert binary_spec_for("CLAUDE").env_var == "CLAUDE_BIN"
    with pytest.raises(ValueError, match="Unknown adapter type"):
        create_adapter("gemini", resolver=resolver)


def test_claude_spawn_runs_process_and_parses_reply(tmp_path: Path) -> None:
    script = _write_agent(tmp_path, "claude", _FAKE_CLAUDE)
    resolver = BinaryResolver(BinaryCache(), environ={"CLAUDE_BIN": str(script)})
    adapter = ClaudeAdapter(resolver=resolver, check_version=False)

    result = adapter.spawn(
        SpawnRequest(prompt="hello", session_id="s-new", resume=False, working_dir=tmp_path),
    )

    assert result.output == "prompt=hello"
    assert result.session_id == "s-new"
    assert result.degraded is False


def test_claude_resume_rejection_raises_session_resume_failed(tmp_path: Path) -> None:
    script = _write_agent(tmp_path, "claude", _FAKE_CLAUDE)
    resolver = BinaryResolver(BinaryCache(), environ={"CLAUDE_BIN": str(script)})
    adapter = ClaudeAdapter(resolver=resolver, check_version=False)

    with pytest.raises(SessionResumeFailed) as excinfo:
        adapter.spawn(SpawnRequest(prompt="hi", session_id="s-gone", resume=True))

    assert excinfo.value.session_id == "s-gone"
    assert excinfo.value.exit_code == 1
    assert "No conversation found" in excinfo.value.stderr

    fallback = adapter.spawn(
        SpawnRequest(prompt="hi", session_id="s-gone", resume=True),
        continue_latest=True,
    )
    assert fallback.session_id == "latest-session"


def test_non_zero_exit_without_resume_signature_is_process_error(tmp_path: Path) -> None:
    script = _write_agent(
        tmp_path,
        "codex",
        "import sys\nsys.stderr.write('rate limit hit')\nsys.exit(3)\n",
    )
    resolver = BinaryResolver(BinaryCache(), environ={"CODEX_BIN": str(script)})
    adapter = CodexAdapter(resolver=resolver)

    with pytest.raises(AgentProcessError) as excinfo:
        adapter.spawn(SpawnRequest(prompt="hi", session_id="th-1", resume=True))

    assert not isinstance(excinfo.value, SessionResumeFailed)
    assert excinfo.value.exit_code == 3
    assert excinfo.value.stderr == "rate limit hit"
    assert "exit 3" in str(excinfo.value)


def test_codex_prompt_reaches_stdin_and_events_are_parsed(tmp_path: Path) -> None:
    body = """\
import json
import sys

prompt = sys.stdin.read()
print(json.dumps({"type": "thread.started", "thread_id": "th-real"}))
text = "saw system context" if prompt.startswith("<system_context>") else "no context"
print(json.dumps({"type": "item.completed", "item": {"type": "agent_message", "text": text}}))
"""
    script = _write_agent(tmp_path, "codex", body)
    resolver = BinaryResolver(BinaryCache(), environ={"CODEX_BIN": str(script)})

    result = CodexAdapter(resolver=resolver).spawn(
        SpawnRequest(prompt="hello", session_id="pre-generated", resume=False),
    )

    assert result.output == "saw system context"
    assert result.session_id == "th-real"


def test_missing_binary_path_fails_to_spawn_with_diagnostics(tmp_path: Path) -> None:
    resolver = BinaryResolver(BinaryCache(), environ={"OPENCODE_BIN": str(tmp_path / "missing")})

    with pytest.raises(AgentProcessError) as excinfo:
        OpenCodeAdapter(resolver=resolver).spawn(
            SpawnRequest(prompt="hi", session_id="ses_1", resume=False),
        )

    assert excinfo.value.exit_code is None
    assert "[opencode] Failed to start agent process." in str(excinfo.value)
    assert "Set OPENCODE_BIN" in str(excinfo.value)


def test_timeout_terminates_process(tmp_path: Path) -> None:
    script = _write_agent(tmp_path, "opencode", "import time\ntime.sleep(30)\n")
    resolver = BinaryResolver(BinaryCache(), environ={"OPENCODE_BIN": str(script)})
    adapter = OpenCodeAdapter(resolver=resolver, timeout_seconds=0.5)

    with pytest.raises(AgentProcessError) as excinfo:
        adapter.spawn(SpawnRequest(prompt="hi", session_id="ses_1", resume=False))

    assert excinfo.value.exit_code == 124
