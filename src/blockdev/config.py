from pydantic import BaseModel, Field
from typing import Dict, List, Optional


class BlockDevConfig(BaseModel):
    """
    Runtime configuration for blockdev.

    This configuration is loaded from:
    1. Environment variables (BLOCKDEV_*)
    2. Configuration file (if provided)
    3. Default values (hardcoded)

    Priority: Environment variables > Config file > Defaults
    """

    # Plugin selection
    default_plugins: List[str] = Field(
        default_factory=lambda: ["lvm", "btrfs"],
        description="Plugins loaded when init() is called without explicit specs"
    )

    plugin_modules: Dict[str, str] = Field(
        default_factory=dict,
        description="Implementation overrides (plugin name -> file path or dotted module name)"
    )

    check_tools: bool = Field(
        default=False,
        description="Refuse to load a plugin whose external tools are not on PATH"
    )

    # External tool execution
    exec_timeout_sec: Optional[float] = Field(
        default=None,
        gt=0,
        description="Kill external tools running longer than this (None = no timeout)"
    )

    # Logging
    log_level: Optional[str] = Field(
        default=None,
        description="Level applied to the blockdev logger by the manager "
                    "(DEBUG/INFO/WARNING/ERROR; None leaves it to the application)"
    )

    @classmethod
    def from_env(cls, base: Optional["BlockDevConfig"] = None) -> "BlockDevConfig":
        """
        Load configuration from environment variables.

        Environment variables (BLOCKDEV_*) override defaults (or the given
        base configuration):

        - BLOCKDEV_PLUGINS: Comma-separated list of default plugins
        - BLOCKDEV_PLUGIN_<NAME>: Implementation override for plugin NAME
        - BLOCKDEV_CHECK_TOOLS: Check for external tools on load (true/false)
        - BLOCKDEV_EXEC_TIMEOUT: Timeout for external tools in seconds
        - BLOCKDEV_LOG_LEVEL: Log level
        """
        import os

        kwargs = base.model_dump() if base is not None else {}

        if "BLOCKDEV_PLUGINS" in os.environ:
            plugins = os.environ["BLOCKDEV_PLUGINS"]
            kwargs["default_plugins"] = [item.strip() for item in plugins.split(",") if item.strip()]

        overrides = dict(kwargs.get("plugin_modules", {}))
        for key, value in os.environ.items():
            if key.startswith("BLOCKDEV_PLUGIN_") and value:
                overrides[key[len("BLOCKDEV_PLUGIN_"):].lower()] = value
        if overrides:
            kwargs["plugin_modules"] = overrides

        if "BLOCKDEV_CHECK_TOOLS" in os.environ:
            kwargs["check_tools"] = os.environ["BLOCKDEV_CHECK_TOOLS"].lower() == "true"
        if "BLOCKDEV_EXEC_TIMEOUT" in os.environ:
            kwargs["exec_timeout_sec"] = float(os.environ["BLOCKDEV_EXEC_TIMEOUT"])
        if "BLOCKDEV_LOG_LEVEL" in os.environ:
            kwargs["log_level"] = os.environ["BLOCKDEV_LOG_LEVEL"].upper()

        return cls(**kwargs)

    @classmethod
    def from_file(cls, config_path: str) -> "BlockDevConfig":
        """
        Load configuration from a YAML or JSON file.

        Supported formats: .yaml, .yml, .json
        """
        import yaml

        with open(config_path, "r") as f:
            if config_path.endswith((".yaml", ".yml")):
                data = yaml.safe_load(f)
            elif config_path.endswith(".json"):
                import json
                data = json.load(f)
            else:
                raise ValueError(f"Unsupported config format: {config_path}")

        return cls(**(data or {}))
