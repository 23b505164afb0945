"""Working-directory validation against the configured allowed roots."""

from __future__ import annotations

from pathlib import Path


def validate_working_dir(raw: str, *, allowed_dirs: tuple[Path, ...] = ()) -> Path:
    """Return the real path of ``raw``.

    Raises ``ValueError`` when the directory does not exist, or when ``allowed_dirs``
    is non-empty and the directory is not one of them or below one of them.
    Symlinks are resolved on both sides before comparing.
    """

    candidate = Path(raw.strip()).expanduser()
    if not candidate.is_dir():
        raise ValueError(f"Directory not found: {raw}")
    try:
        real_path = candidate.resolve(strict=True)
    except OSError as error:
        raise ValueError(f"Cannot resolve path: {raw} ({error})") from error

    if not allowed_dirs:
        return real_path

    for allowed in allowed_dirs:
        try:
            allowed_real = allowed.expanduser().resolve(strict=True)
        except OSError:
            continue
        if real_path.is_relative_to(allowed_real):
            return real_path

    allowed_list = ", ".join(str(path) for path in allowed_dirs)
    raise ValueError(f"Directory not in allowed list. Allowed: {allowed_list}")


def is_project_name(value: str) -> bool:
    """Whether a bracket prefix value names a project rather than a path."""

    return not value.startswith(("/", "~", ".")) and "\\" not in value and "/" not in value
