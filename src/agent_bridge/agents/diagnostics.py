"""Human-readable context for agent processes that fail to start."""

from __future__ import annotations

import errno
import os
import shlex
import shutil
from pathlib import Path

from agent_bridge.agents.binary import BinarySource, ResolvedBinary


def format_spawn_failure(  # noqa: PLR0913
    *,
    agent: str,
    binary: ResolvedBinary,
    argv: list[str],
    cwd: Path | None,
    error: OSError,
    env_var: str,
) -> str:
    """Describe a failed process start with the facts an operator needs to fix it."""

    cwd_missing = cwd is not None and not cwd.is_dir()
    code = errno.errorcode.get(error.errno, "") if error.errno is not None else ""

    lines = [
        f"[{agent}] Failed to start agent process.",
        f"binary: {binary.path} (source: {binary.source.value})",
        f"command: {shlex.join(argv)}",
        f"cwd: {cwd if cwd is not None else os.getcwd()}"
        + (" (missing)" if cwd_missing else ""),
        f"cause: {error.strerror or error}",
    ]
    if code:
        lines.append(f"code: {code}")

    hints = _hints(binary=binary, code=code, cwd_missing=cwd_missing, env_var=env_var)
    if hints:
        lines.append("hints:")
        lines.extend(f"  - {hint}" for hint in hints)
    return "\n".join(lines)


def _hints(
    *,
    binary: ResolvedBinary,
    code: str,
    cwd_missing: bool,
    env_var: str,
) -> list[str]:
    hints: list[str] = []
    path = Path(binary.path)
    exists = binary.source is not BinarySource.NPX and path.exists()

    if code == "ENOENT":
        if cwd_missing:
            hints.append("Working directory does not exist.")
        if binary.source is not BinarySource.NPX and not exists:
            hints.append("Binary not found at the resolved path.")
        elif exists:
            hints.extend(_executable_hints(path))
    elif code in {"EACCES", "EPERM"}:
        hints.append("Permission denied starting the binary.")
        if exists:
            hints.extend(_executable_hints(path))
    elif code == "ENOTDIR":
        hints.append("A path component is not a directory. Check the binary path and cwd.")

    if binary.source is BinarySource.PATH:
        hints.append("Binary came from PATH. The service PATH may differ from your shell's.")
    hints.append(f"Set {env_var} to an absolute binary path to override resolution.")
    return hints


def _executable_hints(path: Path) -> list[str]:
    hints: list[str] = []
    if not os.access(path, os.X_OK):
        hints.append(f"File is not executable: {path} (try chmod +x).")
    interpreter = _shebang_interpreter(path)
    if interpreter is not None and not _interpreter_available(interpreter):
        hints.append(f"Interpreter not found: {interpreter}")
    return hints


def _shebang_interpreter(path: Path) -> str | None:
    try:
        with path.open("rb") as handle:
            first_line = handle.readline(256)
    except OSError:
        return None
    if not first_line.startswith(b"#!"):
        return None
    parts = first_line[2:].decode("utf-8", errors="replace").split()
    if not parts:
        return None
    if Path(parts[0]).name == "env" and len(parts) > 1:
        args = [part for part in parts[1:] if not part.startswith("-")]
        return args[0] if args else None
    return parts[0]


def _interpreter_available(interpreter: str) -> bool:
    if os.path.isabs(interpreter):
        return os.access(interpreter, os.X_OK)
    return shutil.which(interpreter) is not None
