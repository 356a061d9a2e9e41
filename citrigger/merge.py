"""Merge per-package CircleCI fragments into one pipeline configuration.

Jobs of packages outside the trigger scope are swapped for a job that
succeeds without doing anything. Leaving them out would keep required
status checks pending and block merges.
"""

from __future__ import annotations

import copy
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import AbstractSet, Any, Dict, Iterable, Optional

import yaml

from .catalog import FRAGMENT_FILENAME
from .models import Package, fragment_problem
from .utils import TriggerError, load_yaml_mapping

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_VERSION = 2.1
MERGED_SECTIONS = ("workflows", "orbs", "executors", "commands")

SKIP_JOB: Dict[str, Any] = {
    "docker": [{"image": "busybox:stable"}],
    "steps": [
        {
            "run": {
                "name": "Jobs not required",
                "command": 'echo "Jobs not required"',
            },
        },
    ],
}


class MalformedFragmentError(TriggerError):
    """Raised when a fragment parses but has sections of the wrong shape."""

    def __init__(self, package: Optional[str], problem: str) -> None:
        self.package = package
        self.problem = problem
        owner = f"package {package}" if package else "the root configuration"
        super().__init__(f"Cannot merge {FRAGMENT_FILENAME} of {owner}: {problem}")


class DuplicateDefinitionError(TriggerError):
    """Raised when two fragments define the same job or section entry."""

    def __init__(self, section: str, name: str, package: Optional[str] = None) -> None:
        self.section = section
        self.name = name
        self.package = package
        message = f"Two {section} with the same name: {name}"
        if package:
            message += f" (redefined by package {package})"
        super().__init__(message)


class _NoAliasDumper(yaml.SafeDumper):
    def ignore_aliases(self, data: Any) -> bool:
        return True


def skip_job(original: Dict[str, Any]) -> Dict[str, Any]:
    """Build a no-op job that keeps the original job's parameters."""

    placeholder = copy.deepcopy(SKIP_JOB)
    if original.get("parameters") is not None:
        placeholder["parameters"] = copy.deepcopy(original["parameters"])
    return placeholder


@dataclass
class MergedDocument:
    content: Dict[str, Any]

    @property
    def jobs(self) -> Dict[str, Any]:
        return self.content["jobs"]

    def to_yaml(self) -> str:
        return yaml.dump(
            self.content,
            Dumper=_NoAliasDumper,
            sort_keys=False,
            default_flow_style=False,
        )


def load_root_fragment(root: Path) -> Dict[str, Any]:
    fragment = load_yaml_mapping(root / FRAGMENT_FILENAME)
    if fragment is None:
        logger.debug("No root %s in %s", FRAGMENT_FILENAME, root)
        return {}
    return fragment


@dataclass
class ConfigurationMerger:
    root_fragment: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_root(cls, root: str | Path) -> "ConfigurationMerger":
        return cls(root_fragment=load_root_fragment(Path(root)))

    def build(self, packages: Iterable[Package], trigger_packages: AbstractSet[str]) -> MergedDocument:
        packages = list(packages)
        problem = fragment_problem(self.root_fragment)
        if problem is not None:
            raise MalformedFragmentError(None, problem)
        config: Dict[str, Any] = copy.deepcopy(self.root_fragment)
        if not config.get("jobs"):
            config["jobs"] = {}
        if not config.get("version"):
            config["version"] = DEFAULT_CONFIG_VERSION
        jobs_config: Dict[str, Any] = config["jobs"]

        for package in packages:
            fragment = package.fragment
            problem = fragment_problem(fragment)
            if problem is not None:
                raise MalformedFragmentError(package.name, problem)
            for section in MERGED_SECTIONS:
                self._merge_section(config, section, fragment, package.name)

            # jobs may be missing when every workflow job comes from an orb
            for job_name, job_data in (fragment.get("jobs") or {}).items():
                if job_name in jobs_config:
                    raise DuplicateDefinitionError("jobs", job_name, package.name)
                job = copy.deepcopy(job_data) if isinstance(job_data, dict) else {}
                conditional = job.pop("conditional", True)
                if conditional is False or package.name in trigger_packages:
                    jobs_config[job_name] = job
                else:
                    jobs_config[job_name] = skip_job(job)

        skipped = sorted(package.name for package in packages if package.name not in trigger_packages)
        if skipped:
            logger.info("Skipping conditional jobs of: %s", ", ".join(skipped))
        return MergedDocument(content=config)

    @staticmethod
    def _merge_section(config: Dict[str, Any], section: str, fragment: Dict[str, Any], package: str) -> None:
        entries = fragment.get(section) or {}
        if not entries:
            return
        target = config.get(section)
        if not isinstance(target, dict):
            target = config[section] = {}
        for name, value in entries.items():
            if name in target:
                raise DuplicateDefinitionError(section, name, package)
            target[name] = copy.deepcopy(value)
