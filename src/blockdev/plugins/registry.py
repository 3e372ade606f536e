"""
Plugin Registry

Resolves logical plugin names to implementation modules, validates
them against the plugin contract and keeps the table of installed
plugin handles.
"""

import importlib
import importlib.util
import logging
import os
import sys
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from threading import RLock
from types import MappingProxyType, ModuleType
from typing import Callable, Dict, Iterable, List, Mapping, Optional

from blockdev.config import BlockDevConfig
from blockdev.errors import PluginError, PluginLoadError, PluginValidationError
from blockdev.execution.executor import CommandExecutor
from blockdev.execution.shared import SharedConfig
from blockdev.plugins import BlockDevPlugin, PluginContext
from blockdev.plugins.interfaces import PLUGIN_API_VERSION, get_interface, is_compatible
from blockdev.types import PluginSpec

logger = logging.getLogger(__name__)

# Attribute names a plugin module must define
API_MARKER = "BLOCKDEV_PLUGIN_API"
FACTORY_NAME = "create_plugin"

ContextFactory = Callable[[str], PluginContext]


@dataclass(eq=False)
class PluginHandle:
    """
    A loaded and validated plugin.

    Attributes:
        name: Logical plugin name
        source: Module name or file the implementation was loaded from
        api_version: API version declared by the implementation
        capabilities: Read-only operation table
        required: Whether the plugin was requested as required
        released: Set once the registry has unloaded the handle
    """

    name: str
    source: str
    api_version: str
    capabilities: Mapping[str, Callable]
    required: bool = True
    released: bool = False
    _plugin: Optional[BlockDevPlugin] = field(default=None, repr=False)
    _module: Optional[ModuleType] = field(default=None, repr=False)
    _module_name: Optional[str] = field(default=None, repr=False)

    def has(self, operation: str) -> bool:
        """Whether the plugin implements an operation."""
        return not self.released and operation in self.capabilities

    def get(self, operation: str) -> Optional[Callable]:
        """Return the callable for an operation, or None."""
        if self.released:
            return None
        return self.capabilities.get(operation)

    @property
    def operations(self) -> List[str]:
        return sorted(self.capabilities)


def _default_context_factory(config: BlockDevConfig) -> ContextFactory:
    def factory(name: str) -> PluginContext:
        return PluginContext(
            name=name,
            executor=CommandExecutor(timeout_sec=config.exec_timeout_sec),
            shared_config=SharedConfig(name),
            config=config,
        )
    return factory


def _is_file_source(source: str) -> bool:
    return source.endswith(".py") or os.sep in source or "/" in source


class PluginRegistry:
    """
    Registry of loaded plugins.

    At most one installed handle exists per logical name. Handles are
    immutable once installed and are replaced as a whole.
    """

    def __init__(
        self,
        config: Optional[BlockDevConfig] = None,
        context_factory: Optional[ContextFactory] = None,
    ):
        """
        Initialize the registry.

        Args:
            config: Library configuration (implementation overrides, tool checks)
            context_factory: Builds the PluginContext for a plugin name
        """
        self.config = config or BlockDevConfig()
        self._context_factory = context_factory or _default_context_factory(self.config)
        self._handles: Dict[str, PluginHandle] = {}
        self._lock = RLock()

    # =========================================================================
    # Resolution and validation
    # =========================================================================

    def resolve(self, spec: PluginSpec) -> str:
        """
        Resolve the implementation of a plugin.

        Order: explicit spec path, configured override, built-in module.

        Raises:
            PluginLoadError: If no implementation is known for the name
        """
        if spec.path:
            return spec.path
        if spec.name in self.config.plugin_modules:
            return self.config.plugin_modules[spec.name]
        interface = get_interface(spec.name)
        if interface is None:
            raise PluginLoadError(spec.name, "no implementation known for this plugin name")
        return interface.module

    def build(self, spec: PluginSpec, reload: bool = False) -> PluginHandle:
        """
        Load and validate a plugin without installing it.

        Args:
            spec: Plugin to load
            reload: Re-execute the implementation module even if already imported

        Returns:
            A validated, not yet installed handle

        Raises:
            PluginLoadError: If the implementation cannot be imported
            PluginValidationError: If it does not satisfy the plugin contract
        """
        source = self.resolve(spec)
        module, module_name = self._import(spec.name, source, reload)
        try:
            return self._validate(spec, source, module, module_name)
        except PluginError:
            if module_name is not None:
                sys.modules.pop(module_name, None)
            raise

    def _import(self, name: str, source: str, reload: bool):
        if _is_file_source(source):
            path = Path(source)
            if not path.is_file():
                raise PluginLoadError(name, f"no such file: {source}", source=source)

            module_name = f"blockdev_plugin_{name}_{uuid.uuid4().hex[:8]}"
            import_spec = importlib.util.spec_from_file_location(module_name, path)
            if import_spec is None or import_spec.loader is None:
                raise PluginLoadError(name, f"cannot import {source}", source=source)

            module = importlib.util.module_from_spec(import_spec)
            sys.modules[module_name] = module
            try:
                import_spec.loader.exec_module(module)
            except Exception as e:
                sys.modules.pop(module_name, None)
                raise PluginLoadError(name, f"{type(e).__name__}: {e}", source=source) from e
            return module, module_name

        try:
            module = importlib.import_module(source)
            if reload:
                module = importlib.reload(module)
        except Exception as e:
            raise PluginLoadError(name, f"{type(e).__name__}: {e}", source=source) from e
        return module, None

    def _validate(
        self,
        spec: PluginSpec,
        source: str,
        module: ModuleType,
        module_name: Optional[str],
    ) -> PluginHandle:
        name = spec.name

        declared = getattr(module, API_MARKER, None)
        if declared is None:
            raise PluginValidationError(name, f"missing {API_MARKER} version marker", source)
        if not is_compatible(str(declared)):
            raise PluginValidationError(
                name,
                f"incompatible API version {declared} (core implements {PLUGIN_API_VERSION})",
                source,
            )

        factory = getattr(module, FACTORY_NAME, None)
        if not callable(factory):
            raise PluginValidationError(name, f"missing {FACTORY_NAME}() factory", source)

        try:
            plugin = factory(self._context_factory(name))
        except Exception as e:
            raise PluginLoadError(name, f"{FACTORY_NAME}() failed: {e}", source=source) from e

        if not isinstance(plugin, BlockDevPlugin):
            raise PluginValidationError(
                name, f"{FACTORY_NAME}() returned {type(plugin).__name__}, not a BlockDevPlugin", source
            )

        try:
            capabilities = self._check_capabilities(name, source, plugin)
            if self.config.check_tools:
                missing_tools = plugin.check_tools()
                if missing_tools:
                    raise PluginValidationError(
                        name, f"required tools not available: {', '.join(missing_tools)}", source
                    )
        except PluginError:
            _close_quietly(name, plugin)
            raise

        return PluginHandle(
            name=name,
            source=source,
            api_version=str(declared),
            capabilities=MappingProxyType(capabilities),
            required=spec.required,
            _plugin=plugin,
            _module=module,
            _module_name=module_name,
        )

    def _check_capabilities(
        self, name: str, source: str, plugin: BlockDevPlugin
    ) -> Dict[str, Callable]:
        try:
            capabilities = dict(plugin.get_capabilities())
        except Exception as e:
            raise PluginValidationError(name, f"cannot build capability table: {e}", source) from e

        if not capabilities:
            raise PluginValidationError(name, "empty capability table", source)

        not_callable = sorted(op for op, entry in capabilities.items() if not callable(entry))
        if not_callable:
            raise PluginValidationError(
                name, f"capabilities are not callable: {', '.join(not_callable)}", source
            )

        interface = get_interface(name)
        if interface is not None:
            missing = sorted(interface.required - set(capabilities))
            if missing:
                raise PluginValidationError(
                    name, f"missing required operations: {', '.join(missing)}", source
                )
            unknown = sorted(set(capabilities) - interface.operations)
            if unknown:
                raise PluginValidationError(
                    name, f"unknown operations: {', '.join(unknown)}", source
                )

        return capabilities

    # =========================================================================
    # Installed handles
    # =========================================================================

    def load(self, spec: PluginSpec) -> PluginHandle:
        """
        Load, validate and install a plugin.

        Loading a name that is already installed returns the installed handle.

        Raises:
            PluginLoadError: If the implementation cannot be imported
            PluginValidationError: If it does not satisfy the plugin contract
        """
        with self._lock:
            existing = self._handles.get(spec.name)
        if existing is not None:
            logger.debug(f"Plugin '{spec.name}' already loaded from {existing.source}")
            return existing

        handle = self.build(spec)

        with self._lock:
            existing = self._handles.get(spec.name)
            if existing is None:
                self._handles[spec.name] = handle
        if existing is not None:
            # lost a race with another loader of the same name
            self._release(handle)
            return existing

        logger.info(f"Loaded plugin '{spec.name}' from {handle.source}")
        return handle

    def unload(self, handle: PluginHandle) -> None:
        """
        Uninstall a handle and release its resources.

        Raises:
            PluginError: If the handle is not (or no longer) installed
        """
        with self._lock:
            if handle.released or self._handles.get(handle.name) is not handle:
                raise PluginError(handle.name, f"Plugin '{handle.name}' is not loaded")
            del self._handles[handle.name]
        self._release(handle)
        logger.info(f"Unloaded plugin '{handle.name}'")

    def install(self, handles: Iterable[PluginHandle]) -> List[PluginHandle]:
        """
        Install built handles, replacing installed ones with the same name.

        Returns:
            The replaced handles (already released)
        """
        replaced = []
        with self._lock:
            for handle in handles:
                previous = self._handles.get(handle.name)
                if previous is not None and previous is not handle:
                    replaced.append(previous)
                self._handles[handle.name] = handle
        for previous in replaced:
            self._release(previous)
        return replaced

    def replace_all(
        self, handles: Mapping[str, PluginHandle], release: bool = True
    ) -> List[PluginHandle]:
        """
        Atomically replace the whole handle table.

        Args:
            handles: The new table
            release: Release the dropped handles before returning. With
                     False the caller must discard() them.

        Returns:
            The handles dropped from the table
        """
        new_table = dict(handles)
        kept = {id(h) for h in new_table.values()}
        with self._lock:
            dropped = [h for h in self._handles.values() if id(h) not in kept]
            self._handles = new_table
        if release:
            for handle in dropped:
                self._release(handle)
        return dropped

    def discard(self, handle: PluginHandle) -> None:
        """Release a handle that is not installed (never installed, or dropped by replace_all)."""
        with self._lock:
            if self._handles.get(handle.name) is handle:
                raise PluginError(handle.name, f"Plugin '{handle.name}' is installed, use unload()")
        self._release(handle)

    def unload_all(self) -> None:
        """Uninstall and release every handle."""
        self.replace_all({})

    def get(self, name: str) -> Optional[PluginHandle]:
        with self._lock:
            return self._handles.get(name)

    def is_loaded(self, name: str) -> bool:
        with self._lock:
            return name in self._handles

    def names(self) -> List[str]:
        with self._lock:
            return sorted(self._handles)

    def snapshot(self) -> Dict[str, PluginHandle]:
        """Return a copy of the installed handle table."""
        with self._lock:
            return dict(self._handles)

    def _release(self, handle: PluginHandle) -> None:
        if handle.released:
            return
        handle.released = True
        if handle._plugin is not None:
            _close_quietly(handle.name, handle._plugin)
        if handle._module_name is not None:
            sys.modules.pop(handle._module_name, None)
        handle._plugin = None
        handle._module = None


def _close_quietly(name: str, plugin: BlockDevPlugin) -> None:
    try:
        plugin.close()
    except Exception as e:
        logger.warning(f"Error while closing plugin '{name}': {e}")
