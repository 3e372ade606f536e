"""
Plugin base module

Re-exports the plugin base class and the API version marker for plugin
implementations.
"""

from blockdev.plugins import BlockDevPlugin, PluginContext
from blockdev.plugins.interfaces import PLUGIN_API_VERSION

__all__ = ["BlockDevPlugin", "PluginContext", "PLUGIN_API_VERSION"]
