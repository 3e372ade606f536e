"""
Unit tests for blockdev configuration.
"""

import json

import pytest
from pydantic import ValidationError as PydanticValidationError

from blockdev.config import BlockDevConfig


class TestBlockDevConfig:
    """Tests for BlockDevConfig"""

    def test_defaults(self):
        config = BlockDevConfig()

        assert config.default_plugins == ["lvm", "btrfs"]
        assert config.plugin_modules == {}
        assert config.check_tools is False
        assert config.exec_timeout_sec is None
        assert config.log_level is None

    def test_timeout_must_be_positive(self):
        with pytest.raises(PydanticValidationError):
            BlockDevConfig(exec_timeout_sec=0)


class TestFromEnv:
    """Tests for BlockDevConfig.from_env()"""

    def test_env_overrides(self, monkeypatch):
        monkeypatch.setenv("BLOCKDEV_PLUGINS", "lvm, custom")
        monkeypatch.setenv("BLOCKDEV_PLUGIN_CUSTOM", "/opt/plugins/custom.py")
        monkeypatch.setenv("BLOCKDEV_CHECK_TOOLS", "true")
        monkeypatch.setenv("BLOCKDEV_EXEC_TIMEOUT", "2.5")
        monkeypatch.setenv("BLOCKDEV_LOG_LEVEL", "debug")

        config = BlockDevConfig.from_env()

        assert config.default_plugins == ["lvm", "custom"]
        assert config.plugin_modules == {"custom": "/opt/plugins/custom.py"}
        assert config.check_tools is True
        assert config.exec_timeout_sec == 2.5
        assert config.log_level == "DEBUG"

    def test_env_over_base(self, monkeypatch):
        """Test that unset variables keep the base configuration."""
        monkeypatch.delenv("BLOCKDEV_PLUGINS", raising=False)
        monkeypatch.setenv("BLOCKDEV_EXEC_TIMEOUT", "10")
        base = BlockDevConfig(default_plugins=["btrfs"], plugin_modules={"lvm": "my.lvm"})

        config = BlockDevConfig.from_env(base)

        assert config.default_plugins == ["btrfs"]
        assert config.plugin_modules == {"lvm": "my.lvm"}
        assert config.exec_timeout_sec == 10


class TestFromFile:
    """Tests for BlockDevConfig.from_file()"""

    def test_yaml(self, tmp_path):
        path = tmp_path / "blockdev.yaml"
        path.write_text(
            "default_plugins:\n"
            "  - lvm\n"
            "exec_timeout_sec: 30\n"
            "plugin_modules:\n"
            "  btrfs: /srv/btrfs_plugin.py\n"
        )

        config = BlockDevConfig.from_file(str(path))

        assert config.default_plugins == ["lvm"]
        assert config.exec_timeout_sec == 30
        assert config.plugin_modules["btrfs"] == "/srv/btrfs_plugin.py"

    def test_json(self, tmp_path):
        path = tmp_path / "blockdev.json"
        path.write_text(json.dumps({"check_tools": True}))

        assert BlockDevConfig.from_file(str(path)).check_tools is True

    def test_empty_yaml(self, tmp_path):
        path = tmp_path / "empty.yml"
        path.write_text("")

        assert BlockDevConfig.from_file(str(path)) == BlockDevConfig()

    def test_unsupported_format(self, tmp_path):
        path = tmp_path / "blockdev.ini"
        path.write_text("[blockdev]\n")

        with pytest.raises(ValueError, match="Unsupported config format"):
            BlockDevConfig.from_file(str(path))
