"""Shared test doubles.

ScriptedProcess stands in for ProcessExecutor: it answers commands from a
table of substring matches and records every call, so tests can drive a real
SSHSession and inspect exactly what would have been run locally and remotely.
"""

from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Union
from unittest.mock import Mock

import pytest

from nixdeploy.core.protocols import FileSystemService, Logger, ProcessResult
from nixdeploy.deploy.base import TargetAddress

LOCAL_WORK_DIR = "/tmp/nixdeploy-test"
REMOTE_WORK_DIR = "/tmp/tmp.remote"

Response = Union[ProcessResult, Callable[[List[str]], ProcessResult]]


@dataclass
class RecordedCall:
    cmd: List[str]
    input: Optional[str]
    extra_env: Optional[Dict[str, str]]
    cwd: Optional[str]

    @property
    def is_remote(self) -> bool:
        return self.cmd[0] == "ssh" and "-O" not in self.cmd

    @property
    def text(self) -> str:
        """Remote command line for ssh calls, joined argv otherwise."""
        return self.cmd[-1] if self.is_remote else " ".join(self.cmd)


class ScriptedProcess:
    """ProcessExecutor double answering by substring match.

    Needles may be prefixed with "remote:" (ssh remote command only) or
    "local:" (anything that is not a remote command). The first matching
    entry wins; unmatched commands succeed with empty output.
    """

    def __init__(self, responses: Optional[Dict[str, Response]] = None):
        self.responses: Dict[str, Response] = dict(responses or {})
        self.responses.setdefault("remote:mktemp -d", ProcessResult(0, REMOTE_WORK_DIR + "\n", ""))
        self.calls: List[RecordedCall] = []

    def _matches(self, needle: str, call: RecordedCall) -> bool:
        if needle.startswith("remote:"):
            return call.is_remote and needle[len("remote:"):] in call.text
        if needle.startswith("local:"):
            return not call.is_remote and needle[len("local:"):] in call.text
        return needle in call.text

    def run(self, cmd, input=None, extra_env=None, cwd=None) -> ProcessResult:
        call = RecordedCall(list(cmd), input, extra_env, cwd)
        self.calls.append(call)
        for needle, response in self.responses.items():
            if self._matches(needle, call):
                return response(list(cmd)) if callable(response) else response
        return ProcessResult(0, "", "")

    # Inspection helpers

    @property
    def remote_commands(self) -> List[str]:
        return [c.text for c in self.calls if c.is_remote]

    @property
    def local_commands(self) -> List[str]:
        return [c.text for c in self.calls if not c.is_remote]

    def index_of(self, needle: str) -> int:
        """Position of the first call containing needle (-1 if never run)."""
        for i, call in enumerate(self.calls):
            if self._matches(needle, call):
                return i
        return -1

    def count(self, needle: str) -> int:
        return sum(1 for call in self.calls if self._matches(needle, call))


@pytest.fixture
def process():
    return ScriptedProcess()


@pytest.fixture
def filesystem():
    fs = Mock(spec=FileSystemService)
    fs.make_temp_dir.return_value = LOCAL_WORK_DIR
    return fs


@pytest.fixture
def logger():
    return Mock(spec=Logger)


@pytest.fixture
def target():
    return TargetAddress(host="web1.example.com", user="root", port=22)
