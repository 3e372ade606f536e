"""
Pytest configuration and fixtures for blockdev tests.

This module provides shared fixtures and configuration for all tests.
"""

import sys
import textwrap
from collections import deque
from pathlib import Path
from typing import Deque, Dict, List, Optional, Sequence

import pytest

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from blockdev.config import BlockDevConfig  # noqa: E402
from blockdev.execution.executor import CommandExecutor  # noqa: E402
from blockdev.execution.shared import SharedConfig  # noqa: E402
from blockdev.plugins import PluginContext  # noqa: E402
from blockdev.types import ExecResult  # noqa: E402


# =============================================================================
# Pytest Configuration
# =============================================================================

def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line(
        "markers", "unit: Unit tests (fast, isolated)"
    )
    config.addinivalue_line(
        "markers", "subprocess: Tests that spawn real child processes"
    )
    config.addinivalue_line(
        "markers", "concurrency: Tests that exercise several threads"
    )


# =============================================================================
# Fake Plugins
# =============================================================================

_PLUGIN_TEMPLATE = '''
from blockdev.plugins.base import BlockDevPlugin

BLOCKDEV_PLUGIN_API = {api!r}

EVENTS = {events!r}
NAME = {name!r}


def _record(event):
    with open(EVENTS, "a") as f:
        f.write(event + "\\n")


class FakePlugin(BlockDevPlugin):
    CAPABILITIES = {operations!r}

    required_tools = {tools!r}

    def __init__(self, context):
        super().__init__(context)
        _record("load")

    def close(self):
        _record("close")


def _make_operation(operation):
    def op(self, *args, **kwargs):
        return (NAME, operation, args, kwargs)
    op.__name__ = operation
    return op


for _operation in FakePlugin.CAPABILITIES:
    setattr(FakePlugin, _operation, _make_operation(_operation))

{extra}

def create_plugin(context):
    return FakePlugin(context)
'''


class FakePluginFactory:
    """
    Writes plugin modules into a temporary directory.

    Every created plugin instance records "load" and every close()
    records "close" in a per-plugin events file, so tests can count
    loads and unloads across module reloads.
    """

    def __init__(self, base_dir: Path):
        self.base_dir = base_dir

    def events_path(self, name: str) -> Path:
        return self.base_dir / f"{name}.events"

    def write(
        self,
        name: str,
        operations: Sequence[str] = ("ping",),
        api: Optional[str] = "1.0",
        tools: Sequence[str] = (),
        extra: str = "",
        source: Optional[str] = None,
    ) -> str:
        """
        Write a plugin module and return its path.

        Args:
            name: Plugin name (also the file name)
            operations: Operations in the capability table
            api: Declared API version (None omits the marker)
            tools: required_tools of the plugin
            extra: Additional module-level code
            source: Complete module source, replacing the template
        """
        path = self.base_dir / f"{name}.py"
        if source is None:
            source = _PLUGIN_TEMPLATE.format(
                api=api,
                events=str(self.events_path(name)),
                name=name,
                operations=tuple(operations),
                tools=tuple(tools),
                extra=textwrap.dedent(extra),
            )
            if api is None:
                source = source.replace("BLOCKDEV_PLUGIN_API = None\n", "")
        path.write_text(source)
        return str(path)

    def count(self, name: str, event: str) -> int:
        path = self.events_path(name)
        if not path.exists():
            return 0
        return path.read_text().split().count(event)


@pytest.fixture
def plugin_factory(tmp_path) -> FakePluginFactory:
    """Factory for fake plugin modules in a temporary directory."""
    plugin_dir = tmp_path / "plugins"
    plugin_dir.mkdir()
    return FakePluginFactory(plugin_dir)


@pytest.fixture
def config() -> BlockDevConfig:
    """Configuration without default plugins."""
    return BlockDevConfig(default_plugins=[])


# =============================================================================
# Scripted Executor
# =============================================================================

class ScriptedExecutor(CommandExecutor):
    """
    Executor that records argument vectors and replays scripted results
    instead of running programs.
    """

    def __init__(self):
        super().__init__()
        self.calls: List[List[str]] = []
        self._results: Deque[ExecResult] = deque()

    def add_output(self, stdout: str) -> None:
        """Script a successful run printing stdout."""
        self._results.append(ExecResult(success=True, stdout=stdout, exit_code=0))

    def add_failure(self, stderr: str = "error", exit_code: int = 5) -> None:
        """Script a failed run."""
        self._results.append(ExecResult(success=False, stderr=stderr, exit_code=exit_code))

    def execute(
        self,
        argv: Sequence[str],
        cwd: Optional[str] = None,
        env: Optional[Dict[str, str]] = None,
        timeout_sec: Optional[float] = None,
    ) -> ExecResult:
        argv = list(argv)
        self.calls.append(argv)
        result = self._results.popleft() if self._results else ExecResult(success=True, exit_code=0)
        return result.model_copy(update={"argv": argv})

    @property
    def last_call(self) -> List[str]:
        return self.calls[-1]


@pytest.fixture
def scripted_executor() -> ScriptedExecutor:
    """Executor replaying scripted tool output."""
    return ScriptedExecutor()


@pytest.fixture
def plugin_context(scripted_executor):
    """Build a PluginContext around the scripted executor."""
    def make(name: str) -> PluginContext:
        return PluginContext(
            name=name,
            executor=scripted_executor,
            shared_config=SharedConfig(name),
        )
    return make
