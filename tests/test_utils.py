from __future__ import annotations

import sys
from pathlib import Path

import pytest

from citrigger.models import PackageEntry
from citrigger.utils import (
    CommandError,
    CommandTimeoutError,
    LineFormatError,
    load_yaml_mapping,
    parse_package_lines,
    run_command,
)


def test_parse_lerna_long_output() -> None:
    output = "/repo/packages/api:@acme/api:1.2.0\n/repo/packages/web:web:0.1.0:PRIVATE\n"
    assert parse_package_lines(output) == [
        PackageEntry(Path("/repo/packages/api"), "@acme/api"),
        PackageEntry(Path("/repo/packages/web"), "web"),
    ]


def test_parse_npm_long_output_strips_versions() -> None:
    output = "/repo:root@1.0.0\n/repo/node_modules/@acme/lib:@acme/lib@2.0.1\n"
    entries = parse_package_lines(output)
    assert [entry.name for entry in entries] == ["root", "@acme/lib"]


def test_parse_skips_blank_lines() -> None:
    assert parse_package_lines("\n\n  \n") == []
    assert parse_package_lines("") == []


def test_parse_rejects_line_without_separator() -> None:
    with pytest.raises(LineFormatError, match="lerna list"):
        parse_package_lines("/repo/packages/api:api\nlerna notice cli v6\n", source="lerna list")


def test_run_command_raises_on_failure() -> None:
    with pytest.raises(CommandError) as excinfo:
        run_command([sys.executable, "-c", "import sys; sys.stderr.write('boom'); sys.exit(3)"])
    assert excinfo.value.returncode == 3
    assert "boom" in excinfo.value.stderr


def test_run_command_check_false_returns_result() -> None:
    result = run_command([sys.executable, "-c", "print('hi')"], check=False)
    assert result.returncode == 0
    assert result.stdout.strip() == "hi"


def test_run_command_timeout() -> None:
    with pytest.raises(CommandTimeoutError):
        run_command([sys.executable, "-c", "import time; time.sleep(5)"], timeout=0.2)


def test_run_command_missing_executable() -> None:
    with pytest.raises(CommandError):
        run_command(["definitely-not-a-real-binary-citrigger"])


def test_load_yaml_mapping_variants(tmp_path: Path) -> None:
    good = tmp_path / "good.yml"
    good.write_text("jobs:\n  build:\n    docker: []\n")
    broken = tmp_path / "broken.yml"
    broken.write_text("jobs: [unclosed\n")
    scalar = tmp_path / "scalar.yml"
    scalar.write_text("just a string\n")
    empty = tmp_path / "empty.yml"
    empty.write_text("")

    assert load_yaml_mapping(good) == {"jobs": {"build": {"docker": []}}}
    assert load_yaml_mapping(broken) is None
    assert load_yaml_mapping(scalar) is None
    assert load_yaml_mapping(empty) is None
    assert load_yaml_mapping(tmp_path / "missing.yml") is None


def test_command_error_message_names_tool_and_keeps_stderr_tail() -> None:
    stderr = "\n".join(f"line {number}" for number in range(100)) + "\nfatal: bad revision 'abc'\n"

    error = CommandError(["lerna", "list", "--since", "abc"], 128, "", stderr)

    message = str(error)
    assert message.startswith("lerna failed (exit code 128) running: lerna list --since abc")
    assert "fatal: bad revision 'abc'" in message
    assert "line 0\n" not in message
    assert error.stderr == stderr
