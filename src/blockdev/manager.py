"""
blockdev core manager

The manager is the single entry point of the library: it loads the
requested plugins, tracks the initialization state and dispatches
operations to the loaded plugins.
"""

import logging
from enum import Enum
from threading import Lock, RLock
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from blockdev.config import BlockDevConfig
from blockdev.errors import (
    BlockDevError,
    OperationNotImplementedError,
    PluginsFailedError,
)
from blockdev.execution.executor import CommandExecutor
from blockdev.execution.shared import SharedConfig
from blockdev.plugins import PluginContext
from blockdev.plugins.interfaces import get_interface
from blockdev.plugins.registry import PluginHandle, PluginRegistry
from blockdev.types import PluginSpec
from blockdev.utils.logger import LogFunc, emit

logger = logging.getLogger(__name__)

PluginSpecs = Optional[Sequence[PluginSpec]]


class InitState(str, Enum):
    """Initialization state of a manager"""
    UNINITIALIZED = "uninitialized"
    INITIALIZING = "initializing"
    READY = "ready"
    REINITIALIZING = "reinitializing"
    FAILED = "failed"


class PluginProxy:
    """
    Dispatch surface of one plugin.

    Attribute access resolves the operation against the currently
    installed handle at call time, so a proxy stays valid across
    reinitialization.
    """

    def __init__(self, manager: "BlockDevManager", name: str):
        self._manager = manager
        self._name = name

    @property
    def name(self) -> str:
        return self._name

    @property
    def available(self) -> bool:
        return self._manager.is_plugin_available(self._name)

    def __getattr__(self, operation: str) -> Callable:
        if operation.startswith("_"):
            raise AttributeError(operation)

        entry = self._manager._lookup(self._name, operation)
        if entry is not None:
            return entry

        interface = get_interface(self._name)
        if interface is not None:
            known = operation in interface.operations
        else:
            # custom plugins: any operation is possible while not loaded
            known = not self._manager.is_plugin_available(self._name)

        if known:
            def not_implemented(*args, **kwargs):
                raise OperationNotImplementedError(self._name, operation)
            not_implemented.__name__ = operation
            return not_implemented

        raise AttributeError(f"Plugin '{self._name}' has no operation '{operation}'")

    def __dir__(self) -> List[str]:
        handle = self._manager._installed(self._name)
        return handle.operations if handle is not None else []

    def __repr__(self) -> str:
        return f"PluginProxy({self._name!r}, available={self.available})"


class BlockDevManager:
    """
    Main blockdev manager - single entry point for all operations.

    Responsibilities:
    - Plugin loading, validation and rollback (init/try_init)
    - Atomic plugin reloading (reinit)
    - Readiness state (is_initialized)
    - Dispatch to the plugins' capability tables
    - Ownership of the per-plugin shared configuration
    """

    def __init__(self, config: Optional[BlockDevConfig] = None):
        """
        Initialize blockdev manager.

        Args:
            config: Optional library configuration. If not provided,
                   uses default configuration.
        """
        if config is None:
            config = BlockDevConfig()

        self.config = config
        if config.log_level:
            logging.getLogger("blockdev").setLevel(config.log_level.upper())

        self._registry = PluginRegistry(config, context_factory=self._make_context)
        self._shared_configs: Dict[str, SharedConfig] = {}
        self._shared_lock = Lock()

        # init/reinit are serialized by _init_lock (held while loading);
        # readers only ever take the short _state_lock
        self._init_lock = RLock()
        self._state_lock = Lock()
        self._state = InitState.UNINITIALIZED
        self._failed: Dict[str, str] = {}
        self._log_func: Optional[LogFunc] = None

        logger.debug(f"BlockDevManager created with default plugins: {config.default_plugins}")

    # =========================================================================
    # State
    # =========================================================================

    def is_initialized(self) -> bool:
        """Whether the library is initialized (never waits for a running load)."""
        with self._state_lock:
            return self._state in (InitState.READY, InitState.REINITIALIZING)

    @property
    def state(self) -> InitState:
        with self._state_lock:
            return self._state

    @property
    def failed_plugins(self) -> Dict[str, str]:
        """Plugins that failed to load in the last (re)initialization, with reasons."""
        with self._state_lock:
            return dict(self._failed)

    def _set_state(self, state: InitState, failed: Optional[Dict[str, str]] = None) -> None:
        with self._state_lock:
            self._state = state
            if failed is not None:
                self._failed = dict(failed)

    # =========================================================================
    # Initialization protocol
    # =========================================================================

    def init(self, specs: PluginSpecs = None, log_func: Optional[LogFunc] = None) -> bool:
        """
        Initialize the library with the given plugins.

        Required plugins are all-or-nothing: if any of them fails to load,
        every plugin loaded by this call is unloaded again.

        Args:
            specs: Plugins to load; None or empty loads all default plugins
                   (as optional)
            log_func: Optional sink receiving (level, message) during loading

        Returns:
            True if initialized, False if the library was already initialized

        Raises:
            PluginsFailedError: If a required plugin failed to load
        """
        return self._init(specs, log_func, strict=True)

    def try_init(self, specs: PluginSpecs = None, log_func: Optional[LogFunc] = None) -> bool:
        """
        Initialize the library, tolerating plugin failures.

        Same as init() except that required plugins failing to load are only
        reported as warnings; their operations raise
        OperationNotImplementedError.

        Returns:
            True if initialized, False if the library was already initialized
        """
        return self._init(specs, log_func, strict=False)

    def _init(self, specs: PluginSpecs, log_func: Optional[LogFunc], strict: bool) -> bool:
        with self._init_lock:
            if self.is_initialized():
                self._log(
                    log_func, logging.WARNING,
                    "init() called more than once! Use reinit() to reinitialize "
                    "or is_initialized() to get the current state."
                )
                return False

            self._log_func = log_func
            self._set_state(InitState.INITIALIZING)
            targets = self._targets(specs)

            built, failed = self._build_all(targets, log_func, reload=False, strict=strict)
            required_failed = {
                name: reason for name, reason in failed.items() if targets[name].required
            }

            if required_failed and strict:
                for handle in built.values():
                    self._registry.discard(handle)
                self._set_state(InitState.FAILED, failed)
                error = PluginsFailedError(required_failed)
                self._log(log_func, logging.ERROR, error.message)
                raise error

            self._registry.install(built.values())
            self._set_state(InitState.READY, failed)
            self._log(
                log_func, logging.INFO,
                f"Initialized with plugins: {', '.join(sorted(built)) or '(none)'}"
            )
            return True

    def reinit(
        self,
        specs: PluginSpecs = None,
        reload: bool = False,
        log_func: Optional[LogFunc] = None,
    ) -> bool:
        """
        Reinitialize the library with a (possibly different) set of plugins.

        New handles are built first and swapped in atomically; plugins that
        are no longer requested are unloaded afterwards. Concurrent callers
        of is_initialized() never see an uninitialized library while an
        initialized one is being reloaded.

        Args:
            specs: Plugins to have loaded afterwards; None or empty means all
                   default plugins (as optional)
            reload: Reload plugins even if they are already loaded
            log_func: Optional sink receiving (level, message) during loading

        Returns:
            True when the new set of plugins is installed

        Raises:
            PluginsFailedError: If a required plugin failed to load (the
                previous state is kept)
        """
        with self._init_lock:
            previous_state = self.state
            was_ready = previous_state in (InitState.READY, InitState.REINITIALIZING)
            self._log_func = log_func
            self._set_state(InitState.REINITIALIZING if was_ready else InitState.INITIALIZING)

            targets = self._targets(specs)
            current = self._registry.snapshot()

            keep: Dict[str, PluginHandle] = {}
            to_build: Dict[str, PluginSpec] = {}
            for name, spec in targets.items():
                handle = current.get(name)
                # an explicit path pointing elsewhere forces a rebuild
                if handle is not None and not reload and spec.path in (None, handle.source):
                    keep[name] = handle
                else:
                    to_build[name] = spec

            built, failed = self._build_all(to_build, log_func, reload=reload, strict=True)
            required_failed = {
                name: reason for name, reason in failed.items() if targets[name].required
            }

            if required_failed:
                for handle in built.values():
                    self._registry.discard(handle)
                restored = previous_state if was_ready else InitState.FAILED
                self._set_state(restored)
                error = PluginsFailedError(required_failed)
                self._log(log_func, logging.ERROR, error.message)
                raise error

            new_table = dict(keep)
            new_table.update(built)
            with self._state_lock:
                # no reader sees the old state flag with the new table
                dropped = self._registry.replace_all(new_table, release=False)
                self._state = InitState.READY
                self._failed = dict(failed)

            for handle in dropped:
                self._registry.discard(handle)
                self._log(log_func, logging.DEBUG, f"Unloaded plugin '{handle.name}'")
            self._log(
                log_func, logging.INFO,
                f"Reinitialized with plugins: {', '.join(sorted(new_table)) or '(none)'}"
            )
            return True

    def close(self) -> None:
        """Unload every plugin and return to the uninitialized state."""
        with self._init_lock:
            self._registry.unload_all()
            self._set_state(InitState.UNINITIALIZED, {})

    def _targets(self, specs: PluginSpecs) -> Dict[str, PluginSpec]:
        if not specs:
            specs = [PluginSpec(name=name, required=False) for name in self.config.default_plugins]

        targets: Dict[str, PluginSpec] = {}
        for spec in specs:
            if spec.name in targets:
                logger.warning(f"Plugin '{spec.name}' requested more than once, using the first spec")
                continue
            targets[spec.name] = spec
        return targets

    def _build_all(
        self,
        targets: Dict[str, PluginSpec],
        log_func: Optional[LogFunc],
        reload: bool,
        strict: bool = True,
    ) -> Tuple[Dict[str, PluginHandle], Dict[str, str]]:
        built: Dict[str, PluginHandle] = {}
        failed: Dict[str, str] = {}
        for name, spec in targets.items():
            try:
                handle = self._registry.build(spec, reload=reload)
            except BlockDevError as e:
                failed[name] = e.message
                level = logging.ERROR if spec.required and strict else logging.WARNING
                self._log(log_func, level, f"Failed to load the '{name}' plugin: {e.message}")
                continue
            built[name] = handle
            self._log(log_func, logging.DEBUG, f"Loaded plugin '{name}' from {handle.source}")
        return built, failed

    def _log(self, log_func: Optional[LogFunc], level: int, message: str) -> None:
        logger.log(level, message)
        emit(log_func, level, message)

    def _make_context(self, name: str) -> PluginContext:
        return PluginContext(
            name=name,
            executor=CommandExecutor(
                timeout_sec=self.config.exec_timeout_sec,
                log_func=self._log_func,
            ),
            shared_config=self.shared_config(name),
            config=self.config,
            log_func=self._log_func,
        )

    # =========================================================================
    # Dispatch
    # =========================================================================

    def shared_config(self, name: str) -> SharedConfig:
        """
        Get the shared configuration of a plugin.

        The object outlives plugin reloads.
        """
        with self._shared_lock:
            if name not in self._shared_configs:
                self._shared_configs[name] = SharedConfig(name)
            return self._shared_configs[name]

    def _installed(self, name: str) -> Optional[PluginHandle]:
        if not self.is_initialized():
            return None
        return self._registry.get(name)

    def _lookup(self, name: str, operation: str) -> Optional[Callable]:
        handle = self._installed(name)
        if handle is None:
            return None
        # the table outlives a concurrent release, in-flight calls finish on the old handle
        return handle.capabilities.get(operation)

    def is_plugin_available(self, name: str) -> bool:
        """Whether a plugin is loaded and usable."""
        return self._installed(name) is not None

    def available_plugins(self) -> List[str]:
        """Names of the loaded plugins."""
        if not self.is_initialized():
            return []
        return self._registry.names()

    def get_handle(self, name: str) -> Optional[PluginHandle]:
        """Get the installed handle of a plugin, or None."""
        return self._installed(name)

    def plugin(self, name: str) -> PluginProxy:
        """
        Get the dispatch surface of a plugin.

        Operations of a plugin that is not loaded raise
        OperationNotImplementedError when called.
        """
        return PluginProxy(self, name)

    def call(self, name: str, operation: str, *args: Any, **kwargs: Any) -> Any:
        """
        Call an operation of a plugin.

        Raises:
            OperationNotImplementedError: If no loaded plugin implements it
        """
        entry = self._lookup(name, operation)
        if entry is None:
            raise OperationNotImplementedError(name, operation)
        return entry(*args, **kwargs)
