from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import httpx

from .catalog import PackageCatalog
from .merge import ConfigurationMerger, MergedDocument
from .models import ChangeScope, Package, RunConfig
from .scope import ChangeScopeResolver
from .utils import TriggerError

logger = logging.getLogger(__name__)

CONTINUATION_API_URL = "https://circleci.com/api/v2/pipeline/continue"
DEFAULT_HTTP_TIMEOUT_S = 30.0


class EndpointError(TriggerError):
    """Raised when the pipeline continuation request fails."""

    def __init__(self, message: str, status_code: Optional[int] = None, body: str = "") -> None:
        self.status_code = status_code
        self.body = body
        super().__init__(message)


@dataclass
class ContinuationClient:
    url: str = CONTINUATION_API_URL
    timeout: float = DEFAULT_HTTP_TIMEOUT_S
    transport: Optional[httpx.BaseTransport] = None

    def submit(self, body: Dict[str, Any]) -> Any:
        try:
            with httpx.Client(timeout=self.timeout, transport=self.transport) as client:
                response = client.post(self.url, json=body)
                response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise EndpointError(
                f"Pipeline continuation failed with status {exc.response.status_code}: {exc.response.text}",
                status_code=exc.response.status_code,
                body=exc.response.text,
            ) from exc
        except httpx.HTTPError as exc:
            raise EndpointError(f"Pipeline continuation request failed: {exc}") from exc
        try:
            return response.json()
        except ValueError:
            return response.text


def continuation_body(
    continuation_key: str,
    configuration: str,
    scope: ChangeScope,
    config: RunConfig,
    is_target_branch: bool,
) -> Dict[str, Any]:
    body: Dict[str, Any] = {"continuation-key": continuation_key, "configuration": configuration}
    if config.pass_target_branch:
        body["parameters"] = {
            "target-branch": scope.target_branch,
            "on-target-branch": is_target_branch,
        }
    return body


@dataclass
class TriggerResult:
    packages: List[Package]
    scope: ChangeScope
    document: MergedDocument
    response: Any = None


@dataclass
class TriggerOrchestrator:
    """Runs catalog loading, scope resolution and merging, then continues the pipeline."""

    config: RunConfig
    catalog: PackageCatalog
    resolver: ChangeScopeResolver
    merger: ConfigurationMerger
    client: Optional[ContinuationClient] = None

    def plan(self, branch: str) -> TriggerResult:
        packages = self.catalog.load(self.config.package_manager)
        scope = self.resolver.resolve(packages, self.config, branch)
        document = self.merger.build(packages, scope.trigger_packages)
        return TriggerResult(packages=packages, scope=scope, document=document)

    def run(self, branch: str, continuation_key: str, *, dry_run: bool = False) -> TriggerResult:
        result = self.plan(branch)
        configuration = result.document.to_yaml()
        body = continuation_body(
            continuation_key,
            configuration,
            result.scope,
            self.config,
            self.config.is_target_branch(branch),
        )
        logger.info("CircleCI configuration:\n%s", configuration)

        if dry_run:
            logger.info("Dry run, not continuing the pipeline")
            return result

        client = self.client or ContinuationClient()
        result.response = client.submit(body)
        logger.info("CircleCI response: %s", result.response)
        return result
