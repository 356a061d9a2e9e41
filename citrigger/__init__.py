"""Selective CircleCI triggering for monorepo subpackages."""

from .catalog import PackageCatalog, PackageLister
from .merge import ConfigurationMerger, DuplicateDefinitionError, MergedDocument
from .scope import ChangeScopeResolver
from .trigger import TriggerOrchestrator

__all__ = [
    "ChangeScopeResolver",
    "ConfigurationMerger",
    "DuplicateDefinitionError",
    "MergedDocument",
    "PackageCatalog",
    "PackageLister",
    "TriggerOrchestrator",
]
