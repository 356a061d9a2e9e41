from __future__ import annotations

import logging
import os
import subprocess
from pathlib import Path
from typing import Any, Callable, List, Mapping, Optional, Sequence

import yaml

from .models import PackageEntry

logger = logging.getLogger(__name__)


class TriggerError(RuntimeError):
    """Base class for errors that abort a trigger run."""


STDERR_TAIL_LINES = 20


def _tail(text: str, lines: int = STDERR_TAIL_LINES) -> str:
    kept = text.strip().splitlines()[-lines:]
    return "\n".join(kept)


class CommandError(TriggerError):
    """Raised when a collaborator command (package manager, git) fails."""

    def __init__(self, command: Sequence[str], returncode: int, stdout: str, stderr: str) -> None:
        self.command = list(command)
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr
        tool = self.command[0] if self.command else "command"
        message = f"{tool} failed (exit code {returncode}) running: {' '.join(self.command)}"
        details = _tail(stderr) or _tail(stdout)
        if details:
            message += f"\n{details}"
        super().__init__(message)


class CommandTimeoutError(TriggerError):
    """Raised when a subprocess does not finish within its timeout."""

    def __init__(self, command: Sequence[str], timeout: float) -> None:
        self.command = list(command)
        self.timeout = timeout
        super().__init__(f"Command {' '.join(command)} timed out after {timeout}s")


class LineFormatError(TriggerError):
    """Raised when a package listing line is not of the form ``path:name``."""


CommandRunner = Callable[..., "subprocess.CompletedProcess[str]"]


def run_command(
    command: Sequence[str],
    *,
    cwd: str | Path | None = None,
    env: Mapping[str, str] | None = None,
    timeout: Optional[float] = None,
    check: bool = True,
) -> subprocess.CompletedProcess[str]:
    """Execute a subprocess command and return the completed process."""

    process_env = os.environ.copy()
    if env:
        process_env.update(env)

    logger.debug("Running %s", " ".join(command))
    try:
        result = subprocess.run(
            list(command),
            cwd=str(cwd) if cwd else None,
            env=process_env,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
            timeout=timeout,
            check=False,
        )
    except subprocess.TimeoutExpired as exc:
        raise CommandTimeoutError(command, exc.timeout) from exc
    except OSError as exc:
        raise CommandError(command, -1, "", str(exc)) from exc
    if check and result.returncode != 0:
        raise CommandError(command, result.returncode, result.stdout, result.stderr)
    return result


def _strip_version(name: str) -> str:
    # npm --long prints "name@version"; scoped names start with "@"
    at = name.rfind("@")
    if at > 0:
        return name[:at]
    return name


def parse_package_lines(output: str, *, source: str = "package listing") -> List[PackageEntry]:
    """Parse ``<path>:<name>[:extra...]`` lines emitted by a package manager."""

    entries: List[PackageEntry] = []
    for lineno, line in enumerate(output.splitlines(), start=1):
        stripped = line.strip()
        if not stripped:
            continue
        parts = stripped.split(":")
        if len(parts) < 2 or not parts[0] or not parts[1]:
            raise LineFormatError(
                f"Malformed line {lineno} in {source} output, expected 'path:name': {stripped!r}"
            )
        entries.append(PackageEntry(path=Path(parts[0]), name=_strip_version(parts[1])))
    return entries


def load_yaml_mapping(path: str | Path) -> Optional[dict[str, Any]]:
    """Read a YAML document that must be a mapping.

    Returns ``None`` when the file is missing, unreadable, unparsable, empty
    or not a mapping. Callers treat all of those the same way.
    """

    try:
        raw_text = Path(path).read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError):
        return None
    try:
        data = yaml.safe_load(raw_text)
    except yaml.YAMLError as exc:
        logger.debug("Could not parse %s: %s", path, exc)
        return None
    if not isinstance(data, dict):
        return None
    return data
