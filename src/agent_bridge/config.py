"""Runtime configuration for the bridge, resolved once at startup.

Every key resolves through ``resolve_value``: a non-empty environment value wins,
then a non-empty value from the stored TOML preferences, then the default.
"""

from __future__ import annotations

import os
import tomllib
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

SUPPORTED_AGENTS: tuple[str, ...] = ("claude", "codex", "opencode")

DEFAULTS: dict[str, str] = {
    "AGENT_TYPE": "claude",
    "AGENT_WORKING_DIR": "",
    "AGENT_TIMEZONE": "",
    "CLAUDE_BIN": "",
    "CODEX_BIN": "",
    "OPENCODE_BIN": "",
    "RATE_LIMIT_REQUESTS": "5",
    "RATE_LIMIT_WINDOW_MS": "60000",
    "MAX_TURNS_PER_SESSION": "50",
    "MAX_SESSION_DURATION_MS": "3600000",
    "TURN_COUNTER_TTL_SECONDS": "86400",
    "SWEEP_INTERVAL_SECONDS": "60",
    "ALLOWED_USERS": "",
    "ALLOWED_ROLES": "",
    "ALLOWED_CHANNELS": "",
    "ALLOWED_DIRS": "",
    "AGENT_BRIDGE_DB_PATH": ".agent_bridge.db",
    "QUEUE_MAX_ATTEMPTS": "3",
    "QUEUE_RETRY_BASE_SECONDS": "1",
    "QUEUE_RETRY_MAX_SECONDS": "60",
    "QUEUE_KEEP_SUCCEEDED": "100",
    "QUEUE_KEEP_DEAD": "50",
    "WORKER_CONCURRENCY": "2",
    "WORKER_POLL_INTERVAL_SECONDS": "1.0",
    "WORKER_STALE_JOB_SECONDS": "3600",
    "TZ": "UTC",
}


@dataclass(slots=True)
class AgentSettings:
    """Backend selection and process defaults."""

    agent_type: str = "claude"
    working_dir: Path | None = None
    timezone: str = "UTC"
    binary_overrides: dict[str, str] = field(default_factory=dict)


@dataclass(slots=True)
class AdmissionSettings:
    """Sliding-window rate limit; ``max_requests <= 0`` disables it."""

    max_requests: int = 5
    window_ms: int = 60_000
    sweep_interval_seconds: float = 60.0


@dataclass(slots=True)
class LimitSettings:
    """Per-thread turn and duration limits; values <= 0 disable a check."""

    max_turns: int = 50
    max_duration_ms: int = 3_600_000
    turn_counter_ttl_seconds: int = 86_400


@dataclass(slots=True)
class SecuritySettings:
    allowed_users: frozenset[str] = frozenset()
    allowed_roles: frozenset[str] = frozenset()
    allowed_channels: frozenset[str] = frozenset()
    allowed_dirs: tuple[Path, ...] = ()


@dataclass(slots=True)
class QueueSettings:
    """Durable queue retry and retention policy."""

    max_attempts: int = 3
    retry_base_seconds: float = 1.0
    retry_max_seconds: float = 60.0
    keep_succeeded: int = 100
    keep_dead: int = 50
    concurrency: int = 2
    poll_interval_seconds: float = 1.0
    stale_job_seconds: int = 3_600


@dataclass(slots=True)
class Settings:
    """Application settings grouped by concern."""

    db_path: Path = Path(".agent_bridge.db")
    agent: AgentSettings = field(default_factory=AgentSettings)
    admission: AdmissionSettings = field(default_factory=AdmissionSettings)
    limits: LimitSettings = field(default_factory=LimitSettings)
    security: SecuritySettings = field(default_factory=SecuritySettings)
    queue: QueueSettings = field(default_factory=QueueSettings)

    @classmethod
    def from_env(
        cls,
        db_path: Path | None = None,
        *,
        environ: Mapping[str, str] | None = None,
        stored: Mapping[str, str] | None = None,
    ) -> Settings:
        """Resolve settings from environment, stored preferences and defaults."""

        env = os.environ if environ is None else environ
        prefs = load_stored_preferences(env) if stored is None else stored

        def value(key: str) -> str:
            return resolve_value(key, env, prefs, DEFAULTS)

        working_dir = value("AGENT_WORKING_DIR")
        timezone = value("AGENT_TIMEZONE") or value("TZ")
        return cls(
            db_path=db_path or Path(value("AGENT_BRIDGE_DB_PATH")),
            agent=AgentSettings(
                agent_type=value("AGENT_TYPE").strip().lower(),
                working_dir=Path(working_dir) if working_dir else None,
                timezone=timezone,
                binary_overrides={
                    name: override
                    for name in SUPPORTED_AGENTS
                    if (override := value(f"{name.upper()}_BIN"))
                },
            ),
            admission=AdmissionSettings(
                max_requests=_int(value, "RATE_LIMIT_REQUESTS"),
                window_ms=_int(value, "RATE_LIMIT_WINDOW_MS"),
                sweep_interval_seconds=_float(value, "SWEEP_INTERVAL_SECONDS"),
            ),
            limits=LimitSettings(
                max_turns=_int(value, "MAX_TURNS_PER_SESSION"),
                max_duration_ms=_int(value, "MAX_SESSION_DURATION_MS"),
                turn_counter_ttl_seconds=_int(value, "TURN_COUNTER_TTL_SECONDS"),
            ),
            security=SecuritySettings(
                allowed_users=parse_id_list(value("ALLOWED_USERS")),
                allowed_roles=parse_id_list(value("ALLOWED_ROLES")),
                allowed_channels=parse_id_list(value("ALLOWED_CHANNELS")),
                allowed_dirs=parse_dir_list(value("ALLOWED_DIRS")),
            ),
            queue=QueueSettings(
                max_attempts=_int(value, "QUEUE_MAX_ATTEMPTS"),
                retry_base_seconds=_float(value, "QUEUE_RETRY_BASE_SECONDS"),
                retry_max_seconds=_float(value, "QUEUE_RETRY_MAX_SECONDS"),
                keep_succeeded=_int(value, "QUEUE_KEEP_SUCCEEDED"),
                keep_dead=_int(value, "QUEUE_KEEP_DEAD"),
                concurrency=_int(value, "WORKER_CONCURRENCY"),
                poll_interval_seconds=_float(value, "WORKER_POLL_INTERVAL_SECONDS"),
                stale_job_seconds=_int(value, "WORKER_STALE_JOB_SECONDS"),
            ),
        )

    def validate(self) -> None:
        """Raise configuration error for values the runtime cannot work with."""

        if self.agent.agent_type not in SUPPORTED_AGENTS:
            raise ValueError(
                f"Unknown AGENT_TYPE {self.agent.agent_type!r}. "
                f"Supported: {', '.join(SUPPORTED_AGENTS)}.",
            )
        try:
            ZoneInfo(self.agent.timezone)
        except (ZoneInfoNotFoundError, ValueError) as error:
            raise ValueError(f"Invalid AGENT_TIMEZONE/TZ: {self.agent.timezone!r}") from error
        if self.admission.max_requests > 0 and self.admission.window_ms <= 0:
            raise ValueError("RATE_LIMIT_WINDOW_MS must be > 0 when rate limiting is enabled.")
        if self.queue.max_attempts < 1:
            raise ValueError("QUEUE_MAX_ATTEMPTS must be >= 1.")
        if self.queue.retry_base_seconds < 0 or self.queue.retry_max_seconds < 0:
            raise ValueError("QUEUE_RETRY_*_SECONDS must be >= 0.")
        if self.queue.concurrency < 1:
            raise ValueError("WORKER_CONCURRENCY must be >= 1.")
        if self.queue.keep_succeeded < 0 or self.queue.keep_dead < 0:
            raise ValueError("QUEUE_KEEP_* must be >= 0.")


def resolve_value(
    key: str,
    environ: Mapping[str, str],
    stored: Mapping[str, str],
    defaults: Mapping[str, str],
) -> str:
    """Resolve one key: non-empty env > non-empty stored preference > default."""

    env_value = environ.get(key)
    if env_value:
        return env_value
    stored_value = stored.get(key)
    if stored_value:
        return stored_value
    return defaults.get(key, "")


def load_stored_preferences(environ: Mapping[str, str]) -> dict[str, str]:
    """Read the TOML preferences file and flatten its sections into one mapping."""

    path = preferences_path(environ)
    if not path.is_file():
        return {}
    with path.open("rb") as handle:
        document = tomllib.load(handle)

    flat: dict[str, str] = {}
    for key, entry in document.items():
        if isinstance(entry, dict):
            for nested_key, nested_value in entry.items():
                flat[str(nested_key)] = str(nested_value)
        else:
            flat[str(key)] = str(entry)
    return flat


def preferences_path(environ: Mapping[str, str]) -> Path:
    explicit = environ.get("AGENT_BRIDGE_CONFIG")
    if explicit:
        return Path(explicit).expanduser()
    return Path.home() / ".config" / "agent-bridge" / "config.toml"


def parse_id_list(raw: str) -> frozenset[str]:
    """Parse a comma-separated id list; blank input means no restriction."""

    return frozenset(part.strip() for part in raw.split(",") if part.strip())


def parse_dir_list(raw: str) -> tuple[Path, ...]:
    """Parse comma-separated allowed working-directory roots; blank means any."""

    return tuple(Path(part).expanduser() for part in sorted(parse_id_list(raw)))


def _int(value, key: str) -> int:
    raw = value(key)
    try:
        return int(raw)
    except ValueError as error:
        raise ValueError(f"Invalid integer value for {key}: {raw!r}") from error


def _float(value, key: str) -> float:
    raw = value(key)
    try:
        return float(raw)
    except ValueError as error:
        raise ValueError(f"Invalid numeric value for {key}: {raw!r}") from error
