from __future__ import annotations

import logging
from pathlib import Path

import yaml

from .models import RunConfig
from .utils import TriggerError

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path(".circleci") / "citrigger.yml"


class ConfigError(TriggerError):
    """Raised when the run configuration cannot be loaded."""


def load_run_config(path: str | Path = DEFAULT_CONFIG_PATH) -> RunConfig:
    """Load ``RunConfig`` from an optional YAML file.

    A missing file yields the defaults. A file that exists but is not a YAML
    mapping, or holds invalid values, is an error.
    """

    path = Path(path)
    if not path.exists():
        logger.debug("No run configuration at %s, using defaults", path)
        return RunConfig()

    try:
        raw_data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except (OSError, yaml.YAMLError) as exc:
        raise ConfigError(f"Could not read run configuration {path}: {exc}") from exc

    if raw_data is None:
        raw_data = {}
    if not isinstance(raw_data, dict):
        raise ConfigError(f"Run configuration {path} must be a mapping")

    try:
        return RunConfig.from_dict(raw_data)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"Invalid run configuration {path}: {exc}") from exc
