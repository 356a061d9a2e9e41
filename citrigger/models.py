from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, FrozenSet, List, Optional, Pattern

DEFAULT_TARGET_BRANCHES = r"^(release/|develop$|main$|master$)"
DEFAULT_COMMAND_TIMEOUT_S = 300.0
DEFAULT_MAX_WORKERS = 8


class PackageManager(str, Enum):
    LERNA = "lerna"
    NPM = "npm"

    @classmethod
    def parse(cls, value: str) -> "PackageManager":
        try:
            return cls(value)
        except ValueError as exc:
            choices = ", ".join(member.value for member in cls)
            raise ValueError(f"Unknown package manager {value!r}, expected one of: {choices}") from exc


@dataclass(frozen=True)
class PackageEntry:
    """One ``path:name`` line reported by the package manager."""

    path: Path
    name: str


MAPPING_SECTIONS = ("workflows", "orbs", "executors", "commands", "jobs")


def fragment_problem(fragment: Dict[str, Any]) -> Optional[str]:
    """Describe why a fragment cannot be merged, or return ``None`` if it can."""

    for section in MAPPING_SECTIONS:
        value = fragment.get(section)
        if value is not None and not isinstance(value, dict):
            return f"section {section!r} must be a mapping, got {type(value).__name__}"
    dependencies = fragment.get("dependencies")
    if dependencies is not None and not isinstance(dependencies, (str, list)):
        return f"'dependencies' must be a list of names, got {type(dependencies).__name__}"
    return None


@dataclass(frozen=True)
class Package:
    """A subpackage that takes part in CI through its ``circle.yml`` fragment."""

    name: str
    fragment: Dict[str, Any]
    path: Optional[Path] = None

    @property
    def dependencies(self) -> List[str]:
        declared = self.fragment.get("dependencies") or []
        if isinstance(declared, str):
            return [declared]
        if not isinstance(declared, list):
            raise ValueError(f"dependencies of package {self.name} must be a list of names")
        return [str(name) for name in declared]

    @property
    def jobs(self) -> Dict[str, Any]:
        return dict(self.fragment.get("jobs") or {})


@dataclass(frozen=True)
class RunConfig:
    """Settings for a single trigger run."""

    run_only_changed_on_target_branches: bool = False
    target_branches_regex: Pattern[str] = field(default_factory=lambda: re.compile(DEFAULT_TARGET_BRANCHES))
    pass_target_branch: bool = False
    package_manager: PackageManager = PackageManager.LERNA
    command_timeout: Optional[float] = DEFAULT_COMMAND_TIMEOUT_S
    max_workers: int = DEFAULT_MAX_WORKERS

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RunConfig":
        target_branches = data.get("targetBranches")
        try:
            regex = re.compile(target_branches or DEFAULT_TARGET_BRANCHES)
        except re.error as exc:
            raise ValueError(f"Invalid targetBranches pattern {target_branches!r}: {exc}") from exc

        timeout = data.get("commandTimeout", DEFAULT_COMMAND_TIMEOUT_S)
        max_workers = int(data.get("maxWorkers", DEFAULT_MAX_WORKERS))
        if max_workers < 1:
            raise ValueError("maxWorkers must be at least 1")

        return cls(
            run_only_changed_on_target_branches=bool(data.get("runOnlyChangedOnTargetBranches", False)),
            target_branches_regex=regex,
            pass_target_branch=bool(data.get("passTargetBranch", False)),
            package_manager=PackageManager.parse(data.get("packageManager") or PackageManager.LERNA.value),
            command_timeout=float(timeout) if timeout is not None else None,
            max_workers=max_workers,
        )

    def is_target_branch(self, branch: str) -> bool:
        return self.target_branches_regex.search(branch) is not None


@dataclass(frozen=True)
class ChangeScope:
    """Packages whose jobs must run, and the branch the change set was taken against."""

    trigger_packages: FrozenSet[str]
    target_branch: str


@dataclass(frozen=True)
class Branchpoint:
    commit: str
    target_branch: str
