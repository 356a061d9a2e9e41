from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Mapping, Optional
from urllib.parse import quote

import httpx

from .utils import TriggerError

logger = logging.getLogger(__name__)

CIRCLE_API_V1_URL = "https://circleci.com/api/v1.1"
DEFAULT_HTTP_TIMEOUT_S = 30.0


class HistoryError(TriggerError):
    """Raised when the build history cannot be queried."""


@dataclass
class BuildHistory:
    """Looks up previous builds of a project through the CircleCI v1.1 API."""

    token: str
    username: str
    reponame: str
    vcs_type: str = "github"
    base_url: str = CIRCLE_API_V1_URL
    timeout: float = DEFAULT_HTTP_TIMEOUT_S
    transport: Optional[httpx.BaseTransport] = None

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "BuildHistory":
        environ = os.environ if environ is None else environ
        missing = [
            name
            for name in ("CIRCLE_TOKEN", "CIRCLE_PROJECT_USERNAME", "CIRCLE_PROJECT_REPONAME")
            if not environ.get(name)
        ]
        if missing:
            raise HistoryError(f"Build history lookup needs environment variables: {', '.join(missing)}")
        return cls(
            token=environ["CIRCLE_TOKEN"],
            username=environ["CIRCLE_PROJECT_USERNAME"],
            reponame=environ["CIRCLE_PROJECT_REPONAME"],
            vcs_type=environ.get("CIRCLE_VCS_TYPE", "github"),
        )

    def _branch_url(self, branch: str) -> str:
        return (
            f"{self.base_url}/project/{self.vcs_type}/{self.username}/{self.reponame}"
            f"/tree/{quote(branch, safe='')}"
        )

    def last_successful_revision(self, branch: str) -> Optional[str]:
        """Return the commit of the last successful build on ``branch``, if any."""

        url = self._branch_url(branch)
        try:
            with httpx.Client(timeout=self.timeout, transport=self.transport) as client:
                response = client.get(
                    url,
                    params={"filter": "successful", "limit": 1, "shallow": "true"},
                    headers={"Circle-Token": self.token, "Accept": "application/json"},
                )
                response.raise_for_status()
                builds = response.json()
        except httpx.HTTPStatusError as exc:
            raise HistoryError(
                f"Build history request for {branch} failed with status "
                f"{exc.response.status_code}: {exc.response.text}"
            ) from exc
        except httpx.HTTPError as exc:
            raise HistoryError(f"Build history request for {branch} failed: {exc}") from exc
        except ValueError as exc:
            raise HistoryError(f"Build history for {branch} is not valid JSON") from exc

        if not isinstance(builds, list):
            raise HistoryError(f"Unexpected build history payload for {branch}: {builds!r}")
        if not builds:
            return None
        revision = builds[0].get("vcs_revision") if isinstance(builds[0], dict) else None
        if not revision:
            return None
        logger.debug("Last successful build on %s was at %s", branch, revision)
        return str(revision)
