"""CLI entrypoint for agent-bridge."""

import logging
import os
from collections.abc import Callable
from pathlib import Path

import rich_click as click

from agent_bridge import __version__
from agent_bridge.config import SUPPORTED_AGENTS
from agent_bridge.controllers import (
    AgentResolveCommand,
    BridgeCliController,
    ChannelDirCommand,
    ChannelProjectCommand,
    JobEnqueueCommand,
    JobInspectCommand,
    JobListCommand,
    ProjectAddCommand,
    ProjectDefaultCommand,
    ProjectListCommand,
    SessionShowCommand,
    WorkerRunCommand,
)

click.rich_click.USE_MARKDOWN = True
CONTROLLER = BridgeCliController(emit=click.echo)
LOG_LEVELS = ["DEBUG", "INFO", "WARNING", "ERROR"]


@click.group()
@click.version_option(version=__version__, prog_name="agent-bridge")
@click.option(
    "--log-level",
    type=click.Choice(LOG_LEVELS, case_sensitive=False),
    default=lambda: os.environ.get("AGENT_BRIDGE_LOG_LEVEL", "WARNING"),
    show_default="AGENT_BRIDGE_LOG_LEVEL or WARNING",
    help="Logging verbosity.",
)
def agent_bridge(log_level: str) -> None:
    """Bridge chat threads to command-line AI agent sessions."""

    logging.basicConfig(
        level=log_level.upper(),
        format="%(asctime)s %(levelname)-7s [%(name)s] %(message)s",
    )


@agent_bridge.group()
def worker() -> None:
    """Job worker commands."""


@worker.command("run")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option(
    "--once/--loop",
    default=False,
    show_default=True,
    help="Process a single job, or keep a worker pool running until interrupted.",
)
@click.option(
    "--max-jobs",
    type=click.IntRange(min=1),
    default=None,
    help="Process at most this many jobs with one worker, then exit.",
)
@click.option(
    "--concurrency",
    type=click.IntRange(min=1),
    default=None,
    help="Worker threads in loop mode (defaults to WORKER_CONCURRENCY).",
)
def worker_run(
    db_path: Path | None,
    once: bool,
    max_jobs: int | None,
    concurrency: int | None,
) -> None:
    """Run the agent job worker."""

    _emit_lines(
        CONTROLLER.run_worker(
            WorkerRunCommand(
                db_path=db_path,
                once=once,
                max_jobs=max_jobs,
                concurrency=concurrency,
            ),
        ),
    )


@agent_bridge.group()
def jobs() -> None:
    """Job queue commands."""


@jobs.command("enqueue")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--thread-id", required=True, help="Thread to post the turn into.")
@click.option("--prompt", required=True, help="Prompt text for the agent.")
@click.option("--user-id", default="cli", show_default=True, help="Requesting user id.")
@click.option("--working-dir", default=None, help="Agent working directory for a new session.")
@click.option("--project", default=None, help="Registered project to run a new session in.")
def jobs_enqueue(
    db_path: Path | None,
    thread_id: str,
    prompt: str,
    user_id: str,
    working_dir: str | None,
    project: str | None,
) -> None:
    """Enqueue a synthetic job on behalf of an operator."""

    try:
        lines = CONTROLLER.enqueue_job(
            JobEnqueueCommand(
                db_path=db_path,
                thread_id=thread_id,
                prompt=prompt,
                user_id=user_id,
                working_dir=working_dir,
                project=project,
            ),
        )
    except ValueError as error:
        raise click.ClickException(str(error)) from error
    _emit_lines(lines)


@jobs.command("list")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option(
    "--status",
    type=click.Choice(["queued", "running", "succeeded", "dead"], case_sensitive=False),
    default=None,
    help="Optional status filter.",
)
@click.option("--thread-id", default=None, help="Optional thread filter.")
@click.option(
    "--limit",
    type=click.IntRange(min=1, max=500),
    default=50,
    show_default=True,
    help="Max jobs to print.",
)
def jobs_list(
    db_path: Path | None,
    status: str | None,
    thread_id: str | None,
    limit: int,
) -> None:
    """List recent jobs."""

    _emit_lines(
        CONTROLLER.list_jobs(
            JobListCommand(db_path=db_path, status=status, thread_id=thread_id, limit=limit),
        ),
    )


@jobs.command("inspect")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.argument("job_id")
def jobs_inspect(db_path: Path | None, job_id: str) -> None:
    """Inspect one job with its event history."""

    _emit_lines(CONTROLLER.inspect_job(JobInspectCommand(db_path=db_path, job_id=job_id)))


@jobs.command("retry")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.argument("job_id")
def jobs_retry(db_path: Path | None, job_id: str) -> None:
    """Manually re-queue a dead job."""

    try:
        lines = CONTROLLER.retry_job(JobInspectCommand(db_path=db_path, job_id=job_id))
    except RuntimeError as error:
        raise click.ClickException(str(error)) from error
    _emit_lines(lines)


@agent_bridge.group()
def sessions() -> None:
    """Thread session commands."""


@sessions.command("show")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.argument("thread_id")
def sessions_show(db_path: Path | None, thread_id: str) -> None:
    """Show the session record, pause state and held message count of a thread."""

    _emit_lines(CONTROLLER.show_session(SessionShowCommand(db_path=db_path, thread_id=thread_id)))


@agent_bridge.group()
def projects() -> None:
    """Named project and channel working-directory commands."""


@projects.command("add")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.argument("name")
@click.argument("path")
def projects_add(db_path: Path | None, name: str, path: str) -> None:
    """Register a project directory under a short name."""

    _emit_project_lines(
        lambda: CONTROLLER.add_project(ProjectAddCommand(db_path=db_path, name=name, path=path)),
    )


@projects.command("list")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
def projects_list(db_path: Path | None) -> None:
    """List registered projects."""

    _emit_lines(CONTROLLER.list_projects(ProjectListCommand(db_path=db_path)))


@projects.command("default")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.argument("name")
def projects_default(db_path: Path | None, name: str) -> None:
    """Make a project the default for channels without their own setting."""

    _emit_project_lines(
        lambda: CONTROLLER.set_default_project(ProjectDefaultCommand(db_path=db_path, name=name)),
    )


@projects.command("use")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.argument("channel_id")
@click.argument("name")
def projects_use(db_path: Path | None, channel_id: str, name: str) -> None:
    """Bind a channel to a project."""

    _emit_project_lines(
        lambda: CONTROLLER.use_project(
            ChannelProjectCommand(db_path=db_path, channel_id=channel_id, name=name),
        ),
    )


@projects.command("channel-dir")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.argument("channel_id")
@click.argument("path")
def projects_channel_dir(db_path: Path | None, channel_id: str, path: str) -> None:
    """Set a channel's working directory without a named project."""

    _emit_project_lines(
        lambda: CONTROLLER.set_channel_dir(
            ChannelDirCommand(db_path=db_path, channel_id=channel_id, path=path),
        ),
    )


@agent_bridge.group()
def agents() -> None:
    """Agent backend commands."""


@agents.command("resolve")
@click.option(
    "--agent",
    type=click.Choice(list(SUPPORTED_AGENTS), case_sensitive=False),
    default=None,
    help="Only resolve this backend.",
)
def agents_resolve(agent: str | None) -> None:
    """Show where each agent binary resolves from."""

    _emit_lines(CONTROLLER.resolve_agents(AgentResolveCommand(agent=agent)))


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


def _emit_project_lines(run: Callable[[], list[str]]) -> None:
    try:
        lines = run()
    except ValueError as error:
        raise click.ClickException(str(error)) from error
    _emit_lines(lines)


if __name__ == "__main__":  # pragma: no cover
    agent_bridge()
