from __future__ import annotations

from pathlib import Path

import pytest

from citrigger.catalog import PackageCatalog, PackageLister, list_changed_command
from citrigger.models import PackageManager
from citrigger.utils import CommandError

from conftest import FakeRunner

LERNA_LIST = ("lerna", "list", "--parseable", "--all", "--long")


def _write_package(root: Path, name: str, fragment: str | None) -> Path:
    package_dir = root / "packages" / name
    package_dir.mkdir(parents=True)
    if fragment is not None:
        (package_dir / "circle.yml").write_text(fragment)
    return package_dir


def test_catalog_keeps_only_packages_with_fragments(tmp_path: Path) -> None:
    api = _write_package(tmp_path, "api", "jobs:\n  api-test:\n    docker: [{image: node}]\n")
    docs = _write_package(tmp_path, "docs", None)
    broken = _write_package(tmp_path, "broken", "jobs: [oops\n")
    web = _write_package(tmp_path, "web", "dependencies: [api]\n")
    runner = FakeRunner(
        {
            LERNA_LIST: "\n".join(
                f"{path}:{name}:1.0.0"
                for path, name in ((api, "api"), (docs, "docs"), (broken, "broken"), (web, "web"))
            )
            + "\n"
        }
    )
    catalog = PackageCatalog(PackageLister(PackageManager.LERNA, runner=runner), max_workers=2)

    packages = catalog.load(PackageManager.LERNA)

    assert [package.name for package in packages] == ["api", "web"]
    assert packages[0].jobs == {"api-test": {"docker": [{"image": "node"}]}}
    assert packages[1].dependencies == ["api"]
    assert "web" in catalog
    assert "docs" not in catalog
    assert len(catalog) == 2


def test_catalog_resolves_relative_paths_against_root(tmp_path: Path) -> None:
    _write_package(tmp_path, "api", "jobs: {}\n")
    runner = FakeRunner({LERNA_LIST: "packages/api:api:0.0.1\n"})
    catalog = PackageCatalog(PackageLister(PackageManager.LERNA, cwd=tmp_path, runner=runner))

    assert catalog.names() == []
    catalog.load()
    assert catalog.names() == ["api"]


def test_catalog_switches_package_manager(tmp_path: Path) -> None:
    api = _write_package(tmp_path, "api", "jobs: {}\n")
    runner = FakeRunner({("npm", "list", "--parseable", "--all", "--long"): f"{api}:api@1.0.0\n"})
    catalog = PackageCatalog(PackageLister(PackageManager.LERNA, runner=runner))

    packages = catalog.load(PackageManager.NPM)

    assert [package.name for package in packages] == ["api"]
    assert runner.calls == [["npm", "list", "--parseable", "--all", "--long"]]


def test_listing_failure_is_fatal() -> None:
    runner = FakeRunner({LERNA_LIST: CommandError(list(LERNA_LIST), 1, "", "lerna: not found")})
    catalog = PackageCatalog(PackageLister(PackageManager.LERNA, runner=runner))

    with pytest.raises(CommandError):
        catalog.load()


def test_list_changed_commands() -> None:
    assert list_changed_command(PackageManager.LERNA, "abc123") == [
        "lerna",
        "list",
        "--parseable",
        "--all",
        "--long",
        "--since",
        "abc123",
    ]
    assert list_changed_command(PackageManager.NPM, "abc123") == [
        "npm",
        "list",
        "--parseable",
        "--all",
        "--long",
    ]


def test_list_changed_parses_output() -> None:
    runner = FakeRunner({LERNA_LIST + ("--since", "abc123"): "/r/packages/api:api:1.0.0\n"})
    lister = PackageLister(PackageManager.LERNA, runner=runner)

    assert [entry.name for entry in lister.list_changed("abc123")] == ["api"]


@pytest.mark.parametrize(
    "fragment",
    [
        "jobs:\n  - api-test\n",
        "workflows: [release]\n",
        "orbs: circleci/node@5\n",
        "dependencies: {core: true}\n",
    ],
)
def test_catalog_drops_fragments_with_wrong_shape(tmp_path: Path, caplog, fragment: str) -> None:
    bad = _write_package(tmp_path, "bad", fragment)
    good = _write_package(tmp_path, "good", "dependencies: core\njobs: {}\n")
    runner = FakeRunner({LERNA_LIST: f"{bad}:bad:1.0.0\n{good}:good:1.0.0\n"})
    catalog = PackageCatalog(PackageLister(PackageManager.LERNA, runner=runner))

    packages = catalog.load()

    assert [package.name for package in packages] == ["good"]
    assert packages[0].dependencies == ["core"]
    assert "package bad" in caplog.text
