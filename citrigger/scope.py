"""Decide which packages must run their jobs for a branch."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, List, Optional, Pattern, Protocol, Set

from .models import Branchpoint, ChangeScope, Package, PackageEntry, RunConfig
from .utils import TriggerError

logger = logging.getLogger(__name__)


class ChangeLister(Protocol):
    def list_changed(self, since: str) -> List[PackageEntry]: ...


class HistoryLookup(Protocol):
    def last_successful_revision(self, branch: str) -> Optional[str]: ...


class BranchpointLookup(Protocol):
    def branchpoint(self, target_branches_regex: Pattern[str]) -> Branchpoint: ...


def expand_dependents(packages: Iterable[Package], changed: Set[str]) -> Set[str]:
    """Add every package that declares a dependency on a changed package.

    Only declared edges are followed, one hop. Names unknown to the catalog
    are dropped from the result.
    """

    packages = list(packages)
    known = {package.name for package in packages}
    triggered = set(changed)
    for package in packages:
        if any(dependency in changed for dependency in package.dependencies):
            triggered.add(package.name)
    return triggered & known


def _warn_unknown_dependencies(packages: List[Package]) -> None:
    known = {package.name for package in packages}
    for package in packages:
        unknown = sorted(set(package.dependencies) - known)
        if unknown:
            logger.warning(
                "Package %s declares dependencies that are not in the catalog and will never trigger it: %s",
                package.name,
                ", ".join(unknown),
            )


@dataclass
class ChangeScopeResolver:
    changes: ChangeLister
    history: Optional[HistoryLookup] = None
    vcs: Optional[BranchpointLookup] = None

    def resolve(self, packages: List[Package], config: RunConfig, branch: str) -> ChangeScope:
        all_names = frozenset(package.name for package in packages)
        _warn_unknown_dependencies(packages)

        if config.is_target_branch(branch):
            if not config.run_only_changed_on_target_branches:
                logger.info("Detected a push from %s, running all pipelines", branch)
                return ChangeScope(trigger_packages=all_names, target_branch=branch)

            if self.history is None:
                raise TriggerError("Incremental runs on target branches need a build history lookup")
            since = self.history.last_successful_revision(branch)
            if not since:
                logger.info("Could not find a previous build on %s, running all pipelines", branch)
                return ChangeScope(trigger_packages=all_names, target_branch=branch)
            target_branch = branch
        else:
            if self.vcs is None:
                raise TriggerError("Feature branch runs need a branch point lookup")
            branchpoint = self.vcs.branchpoint(config.target_branches_regex)
            since = branchpoint.commit
            target_branch = branchpoint.target_branch or branch

        logger.info("Looking for changes since %s", since)
        changed = {entry.name for entry in self.changes.list_changed(since)}
        if not changed:
            logger.info("Found no changed packages")
        else:
            logger.info("Found changes: %s", ", ".join(sorted(changed)))

        triggered = expand_dependents(packages, changed)
        dropped = changed - triggered
        if dropped:
            logger.debug("Ignoring changed packages without CI configuration: %s", ", ".join(sorted(dropped)))
        return ChangeScope(trigger_packages=frozenset(triggered), target_branch=target_branch)
