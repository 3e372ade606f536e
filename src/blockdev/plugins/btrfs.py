"""
Btrfs plugin

Drives the ``btrfs`` and ``mkfs.btrfs`` command-line tools and parses
their human-readable output with regular expressions.
"""

import logging
import os
from typing import List, Optional, Sequence

from blockdev.errors import DeviceError
from blockdev.execution.parser import RegexRule, parse, parse_int, parse_one, parse_size
from blockdev.plugins import BlockDevPlugin, PluginContext
from blockdev.plugins.interfaces import PLUGIN_API_VERSION
from blockdev.types import BtrfsDeviceInfo, BtrfsFilesystemInfo, BtrfsSubvolumeInfo

BLOCKDEV_PLUGIN_API = PLUGIN_API_VERSION

logger = logging.getLogger(__name__)

# "devid    1 size 1.00GiB used 126.38MiB path /dev/sdb"
DEVICE_RULE = RegexRule(
    "devices",
    r"devid[ \t]+(?P<id>\d+)[ \t]+"
    r"size[ \t]+(?P<size>\S+)[ \t]+"
    r"used[ \t]+(?P<used>\S+)[ \t]+"
    r"path[ \t]+(?P<path>\S+)",
)

# "ID 257 gen 8 cgen 8 parent 5 top level 5 otime 2015-03-05 10:43:21 path snap"
SUBVOLUME_RULE = RegexRule(
    "subvolumes",
    r"ID\s+(?P<id>\d+)\s+gen\s+\d+\s+(?:cgen\s+\d+\s+)?"
    r"parent\s+(?P<parent_id>\d+)\s+top\s+level\s+\d+\s+"
    r"(?:otime\s+\d{4}-\d{2}-\d{2}\s+\d\d:\d\d:\d\d\s+)?"
    r"path\s+(?P<path>\S+)",
)

# matched against the whole "btrfs filesystem show" output
FILESYSTEM_RULE = RegexRule(
    "filesystem",
    r"Label:\s+'(?P<label>\S+)'\s+"
    r"uuid:\s+(?P<uuid>\S+)\s+"
    r"Total\sdevices\s+(?P<num_devices>\d+)\s+"
    r"FS\sbytes\sused\s+(?P<used>\S+)",
    per_line=False,
)

DEFAULT_SUBVOLUME_RULE = RegexRule("subvolume ID", r"ID (?P<id>\d+) .*")


def _join(mountpoint: str, name: str) -> str:
    if mountpoint.endswith("/"):
        return f"{mountpoint}{name}"
    return f"{mountpoint}/{name}"


class BtrfsPlugin(BlockDevPlugin):
    """
    Btrfs plugin.

    Every method returning a bool returns True on success and raises
    ExecutionFailedError otherwise.
    """

    CAPABILITIES = (
        "create_volume", "mkfs", "add_device", "remove_device",
        "create_subvolume", "delete_subvolume", "get_default_subvolume_id",
        "set_default_subvolume", "create_snapshot", "list_devices",
        "list_subvolumes", "filesystem_info", "resize", "check", "repair",
        "change_label",
    )

    required_tools = ("btrfs", "mkfs.btrfs")

    def _run(self, argv: Sequence[str]) -> bool:
        return self.executor.exec_and_report_error(list(argv))

    def _output(self, argv: Sequence[str]) -> str:
        return self.executor.exec_and_capture_output(list(argv))

    # =========================================================================
    # Volumes and devices
    # =========================================================================

    def create_volume(
        self,
        devices: Sequence[str],
        label: Optional[str] = None,
        data_level: Optional[str] = None,
        md_level: Optional[str] = None,
    ) -> bool:
        """
        Create a new btrfs volume.

        Args:
            devices: Devices to create the volume from
            label: Label for the volume
            data_level: RAID level for data (None = mkfs.btrfs default)
            md_level: RAID level for metadata (None = mkfs.btrfs default)

        Returns:
            True if the volume was created

        Raises:
            DeviceError: If no devices are given or one of them does not exist
            ExecutionFailedError: If mkfs.btrfs failed
        """
        if isinstance(devices, str):
            devices = [devices]
        if not devices:
            raise DeviceError("No devices given")

        for device in devices:
            if not os.path.exists(device):
                raise DeviceError(f"Device {device} does not exist", device=device)

        argv = ["mkfs.btrfs"]
        if label:
            argv.extend(["--label", label])
        if data_level:
            argv.extend(["--data", data_level])
        if md_level:
            argv.extend(["--metadata", md_level])
        argv.extend(devices)
        logger.debug(f"Creating btrfs volume on {', '.join(devices)}")

        return self._run(argv)

    def mkfs(
        self,
        devices: Sequence[str],
        label: Optional[str] = None,
        data_level: Optional[str] = None,
        md_level: Optional[str] = None,
    ) -> bool:
        """Same as create_volume()."""
        return self.create_volume(devices, label, data_level, md_level)

    def add_device(self, mountpoint: str, device: str) -> bool:
        return self._run(["btrfs", "device", "add", device, mountpoint])

    def remove_device(self, mountpoint: str, device: str) -> bool:
        return self._run(["btrfs", "device", "delete", device, mountpoint])

    def list_devices(self, device: str) -> List[BtrfsDeviceInfo]:
        """
        List the devices of the btrfs volume containing device.

        Raises:
            ExecutionFailedError: If btrfs failed
            NoOutputError: If btrfs printed nothing
            ParseError: If no device line could be parsed
        """
        output = self._output(["btrfs", "filesystem", "show", device])
        return [
            BtrfsDeviceInfo(
                id=parse_int(record["id"], "id"),
                path=record["path"],
                size=parse_size(record["size"], "size"),
                used=parse_size(record["used"], "used"),
            )
            for record in parse(output, DEVICE_RULE)
        ]

    def filesystem_info(self, device: str) -> BtrfsFilesystemInfo:
        """Get information about the filesystem of the volume containing device."""
        output = self._output(["btrfs", "filesystem", "show", device])
        record = parse_one(output, FILESYSTEM_RULE)
        return BtrfsFilesystemInfo(
            label=record["label"],
            uuid=record["uuid"],
            num_devices=parse_int(record["num_devices"], "num_devices"),
            used=parse_size(record["used"], "used"),
        )

    # =========================================================================
    # Subvolumes
    # =========================================================================

    def create_subvolume(self, mountpoint: str, name: str) -> bool:
        """Create the subvolume mountpoint/name."""
        return self._run(["btrfs", "subvol", "create", _join(mountpoint, name)])

    def delete_subvolume(self, mountpoint: str, name: str) -> bool:
        return self._run(["btrfs", "subvol", "delete", _join(mountpoint, name)])

    def get_default_subvolume_id(self, mountpoint: str) -> int:
        """
        Get the ID of the default subvolume of the volume at mountpoint.

        Raises:
            ParseError: If the ID could not be found in the output
        """
        output = self._output(["btrfs", "subvol", "get-default", mountpoint])
        return parse_int(parse_one(output, DEFAULT_SUBVOLUME_RULE)["id"], "id")

    def set_default_subvolume(self, mountpoint: str, subvol_id: int) -> bool:
        return self._run(["btrfs", "subvol", "set-default", str(subvol_id), mountpoint])

    def create_snapshot(self, source: str, dest: str, ro: bool = False) -> bool:
        """
        Create a snapshot of a subvolume.

        Args:
            source: Path to the source subvolume
            dest: Path of the new snapshot
            ro: Create a read-only snapshot
        """
        argv = ["btrfs", "subvol", "snapshot"]
        if ro:
            argv.append("-r")
        argv.extend([source, dest])
        return self._run(argv)

    def list_subvolumes(self, mountpoint: str, snapshots_only: bool = False) -> List[BtrfsSubvolumeInfo]:
        """
        List the subvolumes of the volume at mountpoint.

        Args:
            mountpoint: Mountpoint of the volume
            snapshots_only: List only snapshots
        """
        argv = ["btrfs", "subvol", "list", "-p"]
        if snapshots_only:
            argv.append("-s")
        argv.append(mountpoint)

        output = self._output(argv)
        return [
            BtrfsSubvolumeInfo(
                id=parse_int(record["id"], "id"),
                parent_id=parse_int(record["parent_id"], "parent_id"),
                path=record["path"],
            )
            for record in parse(output, SUBVOLUME_RULE)
        ]

    # =========================================================================
    # Maintenance
    # =========================================================================

    def resize(self, mountpoint: str, size: int) -> bool:
        """Resize the filesystem at mountpoint to size bytes."""
        return self._run(["btrfs", "filesystem", "resize", str(size), mountpoint])

    def check(self, device: str) -> bool:
        return self._run(["btrfs", "check", device])

    def repair(self, device: str) -> bool:
        return self._run(["btrfs", "check", "--repair", device])

    def change_label(self, mountpoint: str, label: str) -> bool:
        return self._run(["btrfs", "filesystem", "label", mountpoint, label])


def create_plugin(context: PluginContext) -> BtrfsPlugin:
    """Plugin factory"""
    return BtrfsPlugin(context)
