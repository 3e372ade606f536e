"""
Plugin interfaces known to the core.

Each known plugin name has a default implementation module, the full
set of operations callers may ask for and the subset an implementation
must provide to be accepted.
"""

from dataclasses import dataclass
from typing import Dict, FrozenSet, Optional, Tuple

# Version of the plugin contract implemented by the core ("major.minor").
# A plugin is compatible if it declares the same major version and a
# minor version not newer than the core's.
PLUGIN_API_VERSION = "1.0"


@dataclass(frozen=True)
class PluginInterface:
    """Operation surface of a known plugin."""

    name: str
    module: str
    operations: FrozenSet[str]
    required: FrozenSet[str]


LVM_OPERATIONS = frozenset({
    # size helpers
    "is_supported_pe_size", "get_supported_pe_sizes", "get_max_lv_size",
    "round_size_to_pe", "get_lv_physical_size", "get_thpool_padding",
    "is_valid_thpool_md_size", "is_valid_thpool_chunk_size",
    # physical volumes
    "pvcreate", "pvresize", "pvremove", "pvmove", "pvscan", "pvinfo", "pvs",
    # volume groups
    "vgcreate", "vgremove", "vgactivate", "vgdeactivate", "vgextend",
    "vgreduce", "vginfo", "vgs",
    # logical volumes
    "lvorigin", "lvcreate", "lvremove", "lvresize", "lvactivate",
    "lvdeactivate", "lvsnapshotcreate", "lvsnapshotmerge", "lvinfo", "lvs",
    # thin provisioning
    "thpoolcreate", "thlvcreate", "thlvpoolname", "thsnapshotcreate",
    # shared configuration
    "set_global_config", "get_global_config",
})

BTRFS_OPERATIONS = frozenset({
    "create_volume", "mkfs", "add_device", "remove_device",
    "create_subvolume", "delete_subvolume", "get_default_subvolume_id",
    "set_default_subvolume", "create_snapshot", "list_devices",
    "list_subvolumes", "filesystem_info", "resize", "check", "repair",
    "change_label",
})

KNOWN_PLUGINS: Dict[str, PluginInterface] = {
    "lvm": PluginInterface(
        name="lvm",
        module="blockdev.plugins.lvm",
        operations=LVM_OPERATIONS,
        required=frozenset({
            "pvs", "pvinfo", "vgs", "vginfo", "lvs", "lvinfo",
            "set_global_config", "get_global_config",
        }),
    ),
    "btrfs": PluginInterface(
        name="btrfs",
        module="blockdev.plugins.btrfs",
        operations=BTRFS_OPERATIONS,
        required=frozenset({"list_devices", "list_subvolumes", "filesystem_info"}),
    ),
}


def get_interface(name: str) -> Optional[PluginInterface]:
    """Return the interface of a known plugin, or None for custom plugins."""
    return KNOWN_PLUGINS.get(name)


def parse_api_version(version: str) -> Tuple[int, int]:
    """
    Parse a "major.minor" version string.

    Raises:
        ValueError: If the string is not of that form
    """
    major, _, minor = str(version).partition(".")
    return int(major), int(minor or 0)


def is_compatible(version: str, core_version: str = PLUGIN_API_VERSION) -> bool:
    """Check a plugin's declared API version against the core's."""
    try:
        major, minor = parse_api_version(version)
    except ValueError:
        return False
    core_major, core_minor = parse_api_version(core_version)
    return major == core_major and minor <= core_minor
