from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, List, Optional

from .models import DEFAULT_MAX_WORKERS, Package, PackageEntry, PackageManager, fragment_problem
from .utils import CommandRunner, load_yaml_mapping, parse_package_lines, run_command

logger = logging.getLogger(__name__)

FRAGMENT_FILENAME = "circle.yml"

_LIST_ARGS = ["list", "--parseable", "--all", "--long"]


def list_packages_command(package_manager: PackageManager) -> List[str]:
    return [package_manager.value, *_LIST_ARGS]


def list_changed_command(package_manager: PackageManager, since: str) -> List[str]:
    if package_manager is PackageManager.LERNA:
        return ["lerna", *_LIST_ARGS, "--since", since]
    # npm cannot filter by commit, every workspace package counts as changed
    return list_packages_command(package_manager)


@dataclass
class PackageLister:
    """Runs the package manager's listing commands inside the repository."""

    package_manager: PackageManager
    cwd: Optional[Path] = None
    timeout: Optional[float] = None
    runner: CommandRunner = run_command

    def _run(self, command: List[str]) -> str:
        result = self.runner(command, cwd=self.cwd, timeout=self.timeout)
        return result.stdout

    def list_all(self) -> List[PackageEntry]:
        command = list_packages_command(self.package_manager)
        return parse_package_lines(self._run(command), source=" ".join(command))

    def list_changed(self, since: str) -> List[PackageEntry]:
        command = list_changed_command(self.package_manager, since)
        return parse_package_lines(self._run(command), source=" ".join(command))


def load_fragment(package_dir: Path) -> Optional[Dict[str, object]]:
    return load_yaml_mapping(package_dir / FRAGMENT_FILENAME)


@dataclass
class PackageCatalog:
    """Subpackages that ship a CI fragment."""

    lister: PackageLister
    max_workers: int = DEFAULT_MAX_WORKERS
    _packages: List[Package] = field(default_factory=list, init=False)

    def _load_one(self, entry: PackageEntry) -> Optional[Package]:
        package_dir = entry.path
        if not package_dir.is_absolute() and self.lister.cwd is not None:
            package_dir = self.lister.cwd / package_dir
        fragment = load_fragment(package_dir)
        if fragment is None:
            logger.debug("Package %s has no usable %s, skipping", entry.name, FRAGMENT_FILENAME)
            return None
        problem = fragment_problem(fragment)
        if problem is not None:
            logger.warning("Ignoring %s of package %s: %s", FRAGMENT_FILENAME, entry.name, problem)
            return None
        return Package(name=entry.name, fragment=fragment, path=entry.path)

    def load(self, package_manager: Optional[PackageManager] = None) -> List[Package]:
        if package_manager is not None and package_manager is not self.lister.package_manager:
            self.lister = PackageLister(
                package_manager=package_manager,
                cwd=self.lister.cwd,
                timeout=self.lister.timeout,
                runner=self.lister.runner,
            )
        entries = self.lister.list_all()
        with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            loaded = list(executor.map(self._load_one, entries))
        self._packages = [package for package in loaded if package is not None]
        logger.info(
            "Found %d packages with CI configuration out of %d listed",
            len(self._packages),
            len(entries),
        )
        return list(self._packages)

    def iter_packages(self) -> Iterable[Package]:
        return iter(self._packages)

    def names(self) -> List[str]:
        return [package.name for package in self._packages]

    def __len__(self) -> int:
        return len(self._packages)

    def __contains__(self, name: str) -> bool:
        return any(package.name == name for package in self._packages)
