from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Pattern

from .models import Branchpoint
from .utils import CommandRunner, TriggerError, run_command

logger = logging.getLogger(__name__)


class VcsError(TriggerError):
    """Raised when the branch point of a feature branch cannot be determined."""


@dataclass
class GitRepository:
    """Git queries needed to find where a feature branch left its target branch."""

    cwd: Optional[Path] = None
    remote: str = "origin"
    timeout: Optional[float] = None
    runner: CommandRunner = run_command

    def _git(self, *args: str) -> str:
        result = self.runner(["git", *args], cwd=self.cwd, timeout=self.timeout)
        return result.stdout.strip()

    def remote_branches(self) -> List[str]:
        output = self._git("branch", "-r", "--format=%(refname:short)")
        prefix = f"{self.remote}/"
        branches = []
        for line in output.splitlines():
            ref = line.strip()
            if not ref.startswith(prefix):
                continue
            name = ref[len(prefix):]
            if name == "HEAD" or not name:
                continue
            branches.append(name)
        return branches

    def merge_base(self, ref: str, head: str = "HEAD") -> str:
        return self._git("merge-base", head, ref)

    def distance(self, base: str, head: str = "HEAD") -> int:
        output = self._git("rev-list", "--count", f"{base}..{head}")
        try:
            return int(output)
        except ValueError as exc:
            raise VcsError(f"Unexpected output from git rev-list: {output!r}") from exc

    def branchpoint(self, target_branches_regex: Pattern[str]) -> Branchpoint:
        """Find the merge base against the closest branch matching the pattern.

        Every remote branch whose name matches is a candidate; the one whose
        merge base is the fewest commits behind HEAD wins. Ties keep the
        first candidate in git's listing order.
        """

        candidates = [
            branch for branch in self.remote_branches() if target_branches_regex.search(branch)
        ]
        if not candidates:
            raise VcsError(
                f"No remote branch on {self.remote} matches target pattern {target_branches_regex.pattern!r}"
            )

        best: Optional[Branchpoint] = None
        best_distance = -1
        for branch in candidates:
            commit = self.merge_base(f"{self.remote}/{branch}")
            distance = self.distance(commit)
            logger.debug("Merge base with %s is %s (%d commits behind HEAD)", branch, commit, distance)
            if best is None or distance < best_distance:
                best = Branchpoint(commit=commit, target_branch=branch)
                best_distance = distance

        assert best is not None
        logger.info("Branched from %s at %s", best.target_branch, best.commit)
        return best
