"""
blockdev error definitions

Standard exceptions used across the blockdev project.
"""

from typing import Any, Dict, List, Optional, Sequence


class BlockDevError(Exception):
    """Base exception for all blockdev errors"""

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code or "UNKNOWN"
        self.details = details or {}

    def __str__(self) -> str:
        return f"[{self.error_code}] {self.message}"


# =============================================================================
# Initialization errors
# =============================================================================

class InitError(BlockDevError):
    """Library initialization error"""

    def __init__(self, message: str, error_code: str = "INIT_ERROR", **details):
        super().__init__(message, error_code=error_code, details=details)


class PluginsFailedError(InitError):
    """One or more required plugins could not be loaded"""

    def __init__(self, failed: Dict[str, str]):
        names = ", ".join(sorted(failed))
        super().__init__(
            message=f"Failed to load required plugins: {names}",
            error_code="INIT_PLUGINS_FAILED",
            failed=dict(failed),
        )
        self.failed = dict(failed)


class OperationNotImplementedError(InitError):
    """Operation is part of the API but no loaded plugin implements it"""

    def __init__(self, plugin: str, operation: str):
        super().__init__(
            message=f"The function '{plugin}.{operation}' called, but not implemented",
            error_code="INIT_NOT_IMPLEMENTED",
            plugin=plugin,
            operation=operation,
        )
        self.plugin = plugin
        self.operation = operation


# =============================================================================
# Plugin registry errors
# =============================================================================

class PluginError(BlockDevError):
    """Plugin registry error"""

    def __init__(self, plugin: str, message: str, error_code: str = "PLUGIN_ERROR"):
        super().__init__(message, error_code=error_code, details={"plugin": plugin})
        self.plugin = plugin


class PluginLoadError(PluginError):
    """Plugin implementation could not be resolved or imported"""

    def __init__(self, plugin: str, reason: str, source: Optional[str] = None):
        super().__init__(
            plugin,
            message=f"Failed to load plugin '{plugin}': {reason}",
            error_code="PLUGIN_LOAD_FAILED",
        )
        self.reason = reason
        self.source = source
        self.details["source"] = source


class PluginValidationError(PluginLoadError):
    """Loaded implementation does not satisfy the plugin contract"""

    def __init__(self, plugin: str, reason: str, source: Optional[str] = None):
        super().__init__(plugin, reason, source=source)
        self.message = f"Plugin '{plugin}' failed validation: {reason}"
        self.error_code = "PLUGIN_INVALID"


# =============================================================================
# Execution errors
# =============================================================================

class ExecError(BlockDevError):
    """External tool execution error"""

    def __init__(
        self,
        message: str,
        argv: Sequence[str],
        error_code: str = "EXEC_ERROR",
        **details
    ):
        details["argv"] = list(argv)
        super().__init__(message, error_code=error_code, details=details)
        self.argv: List[str] = list(argv)


class ExecutionFailedError(ExecError):
    """External program could not be started or exited with failure"""

    def __init__(
        self,
        argv: Sequence[str],
        reason: str,
        exit_code: Optional[int] = None,
        stderr: str = "",
        timed_out: bool = False,
    ):
        super().__init__(
            message=f"Process reported exit code {exit_code}: {reason}"
            if exit_code is not None else f"Process failed: {reason}",
            argv=argv,
            error_code="EXEC_FAILED",
            exit_code=exit_code,
            stderr=stderr,
            timed_out=timed_out,
        )
        self.reason = reason
        self.exit_code = exit_code
        self.stderr = stderr
        self.timed_out = timed_out


class NoOutputError(ExecError):
    """External program succeeded but produced no output"""

    def __init__(self, argv: Sequence[str]):
        super().__init__(
            message=f"Expected some output, but got none from '{argv[0]}'",
            argv=argv,
            error_code="EXEC_NOOUT",
        )


# =============================================================================
# Parsing and argument errors
# =============================================================================

class ParseError(BlockDevError):
    """Tool output contained no unit satisfying the parse rule"""

    def __init__(self, what: str, rule: Optional[str] = None):
        super().__init__(
            message=f"Failed to parse information about {what}",
            error_code="PARSE_FAILED",
            details={"rule": rule},
        )
        self.what = what
        self.rule = rule


class DeviceError(BlockDevError):
    """Referenced device is missing or unusable"""

    def __init__(self, reason: str, device: Optional[str] = None):
        super().__init__(
            message=reason,
            error_code="DEVICE_ERROR",
            details={"device": device},
        )
        self.device = device


class ValidationError(BlockDevError):
    """Invalid argument passed to an operation"""

    def __init__(self, field: str, value: Any, reason: str):
        super().__init__(
            message=f"Invalid value for '{field}': {reason}",
            error_code="INVALID_ARGUMENT",
            details={"field": field, "value": value},
        )
        self.field = field
        self.value = value
        self.reason = reason


# Error codes
ERROR_CODES = {
    # Initialization errors (INIT_xxx)
    "INIT_ERROR": "Library initialization error",
    "INIT_PLUGINS_FAILED": "Required plugins failed to load",
    "INIT_NOT_IMPLEMENTED": "Operation not implemented by any loaded plugin",

    # Plugin errors (PLUGIN_xxx)
    "PLUGIN_ERROR": "Plugin registry error",
    "PLUGIN_LOAD_FAILED": "Plugin could not be loaded",
    "PLUGIN_INVALID": "Plugin failed validation",

    # Execution errors (EXEC_xxx)
    "EXEC_ERROR": "External tool error",
    "EXEC_FAILED": "External tool failed",
    "EXEC_NOOUT": "External tool produced no output",

    # Parsing errors
    "PARSE_FAILED": "Failed to parse tool output",

    # Request errors
    "DEVICE_ERROR": "Device error",
    "INVALID_ARGUMENT": "Invalid argument",
}
