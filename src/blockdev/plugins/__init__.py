"""
Plugin base class

All blockdev plugins must implement this interface.
"""

import shutil
from abc import ABC
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Tuple

from blockdev.config import BlockDevConfig
from blockdev.execution.executor import CommandExecutor
from blockdev.execution.shared import SharedConfig
from blockdev.utils.logger import LogFunc


@dataclass
class PluginContext:
    """
    Collaborators handed to a plugin when it is created.

    Attributes:
        name: Logical name the plugin is loaded under
        executor: Executor to run external tools with
        shared_config: Mutable configuration shared by every instance of this plugin
        config: Library configuration
        log_func: Optional caller-supplied log sink
    """

    name: str
    executor: CommandExecutor
    shared_config: SharedConfig
    config: BlockDevConfig = field(default_factory=BlockDevConfig)
    log_func: Optional[LogFunc] = None


class BlockDevPlugin(ABC):
    """
    Abstract base class for blockdev plugins.

    A plugin module exposes a ``BLOCKDEV_PLUGIN_API`` version marker and a
    ``create_plugin(context)`` factory returning an instance of a subclass.
    The subclass lists the operations it implements in ``CAPABILITIES``.
    """

    # Operations exported through the capability table
    CAPABILITIES: Tuple[str, ...] = ()

    # External programs the plugin runs
    required_tools: Tuple[str, ...] = ()

    def __init__(self, context: PluginContext):
        self.context = context
        self.executor = context.executor

    def get_capabilities(self) -> Dict[str, Callable]:
        """
        Build the capability table.

        Returns:
            Mapping of operation name to bound callable
        """
        return {name: getattr(self, name) for name in self.CAPABILITIES}

    def check_tools(self) -> List[str]:
        """
        Check that the external tools are available.

        Returns:
            Names of the required tools not found on PATH
        """
        return [tool for tool in self.required_tools if shutil.which(tool) is None]

    def close(self) -> None:
        """
        Release resources held by the plugin.

        Default implementation does nothing. Override in plugins that
        keep state beyond their instance attributes.
        """
        return None


__all__ = ["BlockDevPlugin", "PluginContext"]
