from __future__ import annotations

from pathlib import Path

import allure
import pytest

from agent_bridge.config import (
    Settings,
    load_stored_preferences,
    parse_id_list,
    resolve_value,
)

pytestmark = [
    allure.epic("Runtime"),
    allure.feature("Configuration"),
]


def test_defaults_resolve_without_environment() -> None:
    settings = Settings.from_env(environ={}, stored={})

    assert settings.agent.agent_type == "claude"
    assert settings.agent.timezone == "UTC"
    assert settings.agent.working_dir is None
    assert settings.admission.max_requests == 5
    assert settings.limits.max_turns == 50
    assert settings.queue.max_attempts == 3
    assert settings.db_path == Path(".agent_bridge.db")
    settings.validate()


def test_environment_beats_stored_preference_and_empty_values_fall_through() -> None:
    environ = {"AGENT_TYPE": "Codex", "RATE_LIMIT_REQUESTS": "", "TZ": "Europe/Berlin"}
    stored = {"AGENT_TYPE": "opencode", "RATE_LIMIT_REQUESTS": "9"}

    settings = Settings.from_env(environ=environ, stored=stored)

    assert settings.agent.agent_type == "codex"
    assert settings.admission.max_requests == 9
    assert settings.agent.timezone == "Europe/Berlin"


def test_agent_timezone_wins_over_tz() -> None:
    settings = Settings.from_env(
        environ={"AGENT_TIMEZONE": "Asia/Tokyo", "TZ": "Europe/Berlin"},
        stored={},
    )

    assert settings.agent.timezone == "Asia/Tokyo"


def test_binary_overrides_and_allowlists_are_parsed() -> None:
    settings = Settings.from_env(
        environ={
            "CLAUDE_BIN": "/opt/claude",
            "ALLOWED_USERS": "u1, u2,,",
            "ALLOWED_CHANNELS": "c1",
        },
        stored={},
    )

    assert settings.agent.binary_overrides == {"claude": "/opt/claude"}
    assert settings.security.allowed_users == frozenset({"u1", "u2"})
    assert settings.security.allowed_channels == frozenset({"c1"})
    assert settings.security.allowed_roles == frozenset()


def test_allowed_dirs_are_expanded_and_sorted() -> None:
    settings = Settings.from_env(
        environ={"ALLOWED_DIRS": "/srv/b, ~/code,,/srv/a"},
        stored={},
    )

    assert settings.security.allowed_dirs == (
        Path("/srv/a"),
        Path("/srv/b"),
        Path("~/code").expanduser(),
    )
    assert Settings.from_env(environ={}, stored={}).security.allowed_dirs == ()


def test_explicit_db_path_wins(tmp_path: Path) -> None:
    settings = Settings.from_env(
        tmp_path / "x.db",
        environ={"AGENT_BRIDGE_DB_PATH": "/elsewhere.db"},
        stored={},
    )

    assert settings.db_path == tmp_path / "x.db"


def test_invalid_integer_value_is_reported_with_key() -> None:
    with pytest.raises(ValueError, match="RATE_LIMIT_REQUESTS"):
        Settings.from_env(environ={"RATE_LIMIT_REQUESTS": "many"}, stored={})


@pytest.mark.parametrize(
    ("environ", "message"),
    [
        ({"AGENT_TYPE": "gemini"}, "Unknown AGENT_TYPE"),
        ({"TZ": "Mars/Olympus"}, "Invalid AGENT_TIMEZONE"),
        ({"QUEUE_MAX_ATTEMPTS": "0"}, "QUEUE_MAX_ATTEMPTS"),
        ({"WORKER_CONCURRENCY": "0"}, "WORKER_CONCURRENCY"),
        ({"RATE_LIMIT_WINDOW_MS": "-1"}, "RATE_LIMIT_WINDOW_MS"),
    ],
)
def test_validate_rejects_unusable_values(environ: dict[str, str], message: str) -> None:
    settings = Settings.from_env(environ=environ, stored={})

    with pytest.raises(ValueError, match=message):
        settings.validate()


def test_stored_preferences_are_flattened_from_toml(tmp_path: Path) -> None:
    config_path = tmp_path / "config.toml"
    config_path.write_text(
        'AGENT_TYPE = "codex"\n\n[limits]\nMAX_TURNS_PER_SESSION = 7\n',
        encoding="utf-8",
    )

    prefs = load_stored_preferences({"AGENT_BRIDGE_CONFIG": str(config_path)})
    settings = Settings.from_env(environ={"AGENT_BRIDGE_CONFIG": str(config_path)})

    assert prefs == {"AGENT_TYPE": "codex", "MAX_TURNS_PER_SESSION": "7"}
    assert settings.agent.agent_type == "codex"
    assert settings.limits.max_turns == 7


def test_missing_preferences_file_yields_empty_mapping(tmp_path: Path) -> None:
    assert load_stored_preferences({"AGENT_BRIDGE_CONFIG": str(tmp_path / "none.toml")}) == {}


def test_resolve_value_and_id_list_helpers() -> None:
    assert resolve_value("K", {"K": ""}, {"K": ""}, {"K": "d"}) == "d"
    assert resolve_value("K", {}, {"K": "s"}, {"K": "d"}) == "s"
    assert parse_id_list("  ") == frozenset()
