"""
blockdev: pluggable block device management

Unified access to storage-management plugins (LVM, btrfs) that drive
external command-line tools and turn their output into typed records.

The module-level functions operate on a process-wide default manager::

    import blockdev

    blockdev.try_init()
    for vg in blockdev.lvm.vgs():
        print(vg.name, vg.size)
"""

__version__ = "1.0.0"

from threading import Lock
from typing import Any, Optional

from blockdev.manager import BlockDevManager, InitState, PluginProxy
from blockdev.config import BlockDevConfig
from blockdev.types import (
    PluginSpec,
    ExecRequest,
    ExecResult,
    BtrfsDeviceInfo,
    BtrfsSubvolumeInfo,
    BtrfsFilesystemInfo,
    LVMPVdata,
    LVMVGdata,
    LVMLVdata,
)
from blockdev.execution import CommandExecutor, SharedConfig
from blockdev.plugins import BlockDevPlugin, PluginContext
from blockdev.plugins.interfaces import PLUGIN_API_VERSION
from blockdev.utils.sizes import size_from_spec
from blockdev.errors import (
    BlockDevError,
    InitError,
    PluginsFailedError,
    OperationNotImplementedError,
    PluginError,
    PluginLoadError,
    PluginValidationError,
    ExecError,
    ExecutionFailedError,
    NoOutputError,
    ParseError,
    DeviceError,
    ValidationError,
)

_default_manager: Optional[BlockDevManager] = None
_default_lock = Lock()


def get_manager() -> BlockDevManager:
    """Return the process-wide default manager (configured from BLOCKDEV_* variables)."""
    global _default_manager
    with _default_lock:
        if _default_manager is None:
            _default_manager = BlockDevManager(BlockDevConfig.from_env())
        return _default_manager


def init(specs=None, log_func=None) -> bool:
    """Initialize the default manager. See BlockDevManager.init()."""
    return get_manager().init(specs, log_func=log_func)


def try_init(specs=None, log_func=None) -> bool:
    """Initialize the default manager, tolerating failures. See BlockDevManager.try_init()."""
    return get_manager().try_init(specs, log_func=log_func)


def reinit(specs=None, reload: bool = False, log_func=None) -> bool:
    """Reinitialize the default manager. See BlockDevManager.reinit()."""
    return get_manager().reinit(specs, reload=reload, log_func=log_func)


def is_initialized() -> bool:
    return get_manager().is_initialized()


def get_plugin(name: str) -> PluginProxy:
    """Dispatch surface of a plugin of the default manager."""
    return get_manager().plugin(name)


def call(name: str, operation: str, *args: Any, **kwargs: Any) -> Any:
    """Call a plugin operation on the default manager."""
    return get_manager().call(name, operation, *args, **kwargs)


def __getattr__(name: str) -> PluginProxy:
    # blockdev.lvm / blockdev.btrfs
    if name in ("lvm", "btrfs"):
        return get_plugin(name)
    raise AttributeError(f"module 'blockdev' has no attribute '{name}'")


# Re-export core classes
__all__ = [
    "BlockDevManager",
    "BlockDevConfig",
    "InitState",
    "PluginProxy",
    # Module-level API
    "get_manager",
    "init",
    "try_init",
    "reinit",
    "is_initialized",
    "get_plugin",
    "call",
    # Types
    "PluginSpec",
    "ExecRequest",
    "ExecResult",
    "BtrfsDeviceInfo",
    "BtrfsSubvolumeInfo",
    "BtrfsFilesystemInfo",
    "LVMPVdata",
    "LVMVGdata",
    "LVMLVdata",
    # Plugin API
    "BlockDevPlugin",
    "PluginContext",
    "PLUGIN_API_VERSION",
    "CommandExecutor",
    "SharedConfig",
    "size_from_spec",
    # Exception classes
    "BlockDevError",
    "InitError",
    "PluginsFailedError",
    "OperationNotImplementedError",
    "PluginError",
    "PluginLoadError",
    "PluginValidationError",
    "ExecError",
    "ExecutionFailedError",
    "NoOutputError",
    "ParseError",
    "DeviceError",
    "ValidationError",
]
