from __future__ import annotations

import argparse
import json
import logging
import os
import sys
from pathlib import Path

from .catalog import PackageCatalog, PackageLister
from .config import DEFAULT_CONFIG_PATH, load_run_config
from .history import BuildHistory
from .merge import ConfigurationMerger
from .models import RunConfig
from .scope import ChangeScopeResolver
from .trigger import TriggerOrchestrator
from .utils import TriggerError
from .vcs import GitRepository

logger = logging.getLogger("citrigger")


def _load_config(args: argparse.Namespace) -> RunConfig:
    config_path = Path(args.config)
    if not config_path.is_absolute():
        config_path = Path(args.root) / config_path
    return load_run_config(config_path)


def _require(args: argparse.Namespace, attr: str, env_name: str) -> str:
    value = getattr(args, attr, None) or os.environ.get(env_name)
    if not value:
        raise TriggerError(f"--{attr.replace('_', '-')} or the {env_name} environment variable is required")
    return value


def _build_catalog(args: argparse.Namespace, config: RunConfig) -> PackageCatalog:
    lister = PackageLister(
        package_manager=config.package_manager,
        cwd=Path(args.root),
        timeout=config.command_timeout,
    )
    return PackageCatalog(lister=lister, max_workers=config.max_workers)


def _build_orchestrator(args: argparse.Namespace, config: RunConfig, branch: str) -> TriggerOrchestrator:
    catalog = _build_catalog(args, config)
    history = None
    if config.run_only_changed_on_target_branches and config.is_target_branch(branch):
        history = BuildHistory.from_env()
    resolver = ChangeScopeResolver(
        changes=catalog.lister,
        history=history,
        vcs=GitRepository(cwd=Path(args.root), timeout=config.command_timeout),
    )
    return TriggerOrchestrator(
        config=config,
        catalog=catalog,
        resolver=resolver,
        merger=ConfigurationMerger.from_root(args.root),
    )


def cmd_packages(args: argparse.Namespace) -> None:
    config = _load_config(args)
    catalog = _build_catalog(args, config)
    for package in catalog.load():
        print(f"{package.name}\t{package.path}\t{','.join(package.dependencies)}")


def cmd_scope(args: argparse.Namespace) -> None:
    config = _load_config(args)
    branch = _require(args, "branch", "CIRCLE_BRANCH")
    result = _build_orchestrator(args, config, branch).plan(branch)
    payload = {
        "branch": branch,
        "target_branch": result.scope.target_branch,
        "on_target_branch": config.is_target_branch(branch),
        "trigger_packages": sorted(result.scope.trigger_packages),
    }
    print(json.dumps(payload, indent=2))


def cmd_config(args: argparse.Namespace) -> None:
    config = _load_config(args)
    branch = _require(args, "branch", "CIRCLE_BRANCH")
    result = _build_orchestrator(args, config, branch).plan(branch)
    sys.stdout.write(result.document.to_yaml())


def cmd_trigger(args: argparse.Namespace) -> None:
    config = _load_config(args)
    branch = _require(args, "branch", "CIRCLE_BRANCH")
    continuation_key = _require(args, "continuation_key", "CIRCLE_CONTINUATION_KEY")
    _build_orchestrator(args, config, branch).run(branch, continuation_key, dry_run=args.dry_run)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Trigger CircleCI jobs for changed monorepo packages")
    parser.add_argument(
        "--root",
        default=".",
        help="Repository root containing the root circle.yml.",
    )
    parser.add_argument(
        "--config",
        default=str(DEFAULT_CONFIG_PATH),
        help="Path to the run configuration, relative to the root.",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging.")
    subparsers = parser.add_subparsers(dest="command", required=True)

    packages_parser = subparsers.add_parser("packages", help="List packages with CI configuration")
    packages_parser.set_defaults(func=cmd_packages)

    for command, func, help_text in (
        ("scope", cmd_scope, "Show which packages would be triggered"),
        ("config", cmd_config, "Print the merged CircleCI configuration"),
        ("trigger", cmd_trigger, "Continue the pipeline with the merged configuration"),
    ):
        sub = subparsers.add_parser(command, help=help_text)
        sub.add_argument("--branch", help="Branch being built (defaults to $CIRCLE_BRANCH).")
        if command == "trigger":
            sub.add_argument(
                "--continuation-key",
                help="Pipeline continuation key (defaults to $CIRCLE_CONTINUATION_KEY).",
            )
            sub.add_argument(
                "--dry-run",
                action="store_true",
                help="Log the configuration without continuing the pipeline.",
            )
        sub.set_defaults(func=func)

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s %(name)s: %(message)s",
    )
    try:
        args.func(args)
    except TriggerError as exc:
        logger.error("Got error: %s", exc)
        return 1
    return 0


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
