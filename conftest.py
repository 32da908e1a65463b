"""
Shared pytest fixtures for all test suites.

Relay processes are never really spawned in tests: subprocess.Popen is
patched to return FakeProcess instances whose exit is driven by the test.
"""

import asyncio
import itertools
import tempfile
from pathlib import Path
from typing import Callable, Generator, List, Optional
from unittest.mock import Mock, patch

import pytest

_pids = itertools.count(40000)


class FakeProcess:
    """Stand-in for subprocess.Popen that exits only when told to."""

    def __init__(self, args: List[str], exit_on_terminate: bool = True):
        self.args = args
        self.pid = next(_pids)
        self.returncode: Optional[int] = None
        self.exit_on_terminate = exit_on_terminate
        self.terminate_calls = 0
        self.kill_calls = 0

    def poll(self) -> Optional[int]:
        return self.returncode

    def wait(self, timeout: Optional[float] = None) -> Optional[int]:
        return self.returncode

    def terminate(self) -> None:
        self.terminate_calls += 1
        if self.exit_on_terminate and self.returncode is None:
            self.returncode = -15

    def kill(self) -> None:
        self.kill_calls += 1
        if self.returncode is None:
            self.returncode = -9

    def finish(self, code: int = 0) -> None:
        self.returncode = code


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for test files."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def fake_popen() -> Generator[Mock, None, None]:
    """Patch subprocess.Popen to hand out FakeProcess instances."""
    processes: List[FakeProcess] = []

    def spawn(args, **kwargs):
        process = FakeProcess(args)
        processes.append(process)
        return process

    with patch("subprocess.Popen", side_effect=spawn) as mock_popen:
        mock_popen.processes = processes
        yield mock_popen


async def _wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met before timeout")
        await asyncio.sleep(0.01)


@pytest.fixture
def wait_until() -> Callable:
    """Poll a condition until it holds (or fail after a timeout)."""
    return _wait_until
