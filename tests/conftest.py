from __future__ import annotations

import subprocess
from pathlib import Path
from typing import Dict, List, Sequence, Tuple, Union

import pytest

from citrigger.models import Package


class FakeRunner:
    """Stands in for ``run_command``; answers from a table keyed by argv."""

    def __init__(self, outputs: Dict[Tuple[str, ...], Union[str, Exception]]) -> None:
        self.outputs = outputs
        self.calls: List[List[str]] = []

    def __call__(self, command: Sequence[str], **kwargs: object) -> subprocess.CompletedProcess[str]:
        self.calls.append(list(command))
        output = self.outputs[tuple(command)]
        if isinstance(output, Exception):
            raise output
        return subprocess.CompletedProcess(list(command), 0, output, "")


@pytest.fixture
def make_package():
    def _make(name: str, dependencies: Sequence[str] = (), **sections: object) -> Package:
        fragment: Dict[str, object] = dict(sections)
        if dependencies:
            fragment["dependencies"] = list(dependencies)
        return Package(name=name, fragment=fragment, path=Path("/repo/packages") / name)

    return _make
