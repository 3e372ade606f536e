"""
LVM plugin

Drives the ``lvm`` command-line tool. Report commands are run with
``--nameprefixes --unquoted --noheadings`` so that every line of output
is a list of ``LVM2_FIELD=value`` tokens, with sizes in bytes.

A global LVM configuration string (``--config``) can be set through
``set_global_config`` and is appended to every command this plugin runs.
"""

import logging
from fractions import Fraction
from typing import Callable, List, Optional, Sequence, TypeVar

from blockdev.errors import NoOutputError
from blockdev.execution.parser import KeyValueRule, ParsedRecord, parse, parse_int, parse_one
from blockdev.plugins import BlockDevPlugin, PluginContext
from blockdev.plugins.interfaces import PLUGIN_API_VERSION
from blockdev.types import LVMLVdata, LVMPVdata, LVMVGdata
from blockdev.utils.sizes import EiB, GiB, KiB, MiB

BLOCKDEV_PLUGIN_API = PLUGIN_API_VERSION

logger = logging.getLogger(__name__)

# =============================================================================
# Size limits
# =============================================================================

DEFAULT_PE_SIZE = 4 * MiB
MIN_PE_SIZE = 1 * KiB
MAX_PE_SIZE = 16 * GiB
MAX_LV_SIZE = 8 * EiB

MIN_THPOOL_MD_SIZE = 2 * MiB
MAX_THPOOL_MD_SIZE = 16 * GiB
MIN_THPOOL_CHUNK_SIZE = 64 * KiB
MAX_THPOOL_CHUNK_SIZE = 1 * GiB

# Metadata size of a thin pool relative to its data size
THPOOL_MD_FACTOR_NEW = Fraction(1, 5)
THPOOL_MD_FACTOR_EXISTS = Fraction(1, 6)

# =============================================================================
# Report formats
# =============================================================================

_REPORT_OPTS = ["--noheadings", "--nosuffix", "--nameprefixes", "--unquoted", "--units=b"]

_PV_FIELDS = "pv_name,pv_uuid,pe_start,vg_name,vg_uuid,vg_size,vg_free," \
             "vg_extent_size,vg_extent_count,vg_free_count,pv_count"
_VG_FIELDS = "name,uuid,size,free,extent_size,extent_count,free_count,pv_count"
_LV_FIELDS = "vg_name,lv_name,lv_uuid,lv_size,lv_attr,segtype"

PV_RULE = KeyValueRule("PVs", [
    "LVM2_PV_NAME", "LVM2_PV_UUID", "LVM2_PE_START", "LVM2_VG_NAME", "LVM2_VG_UUID",
    "LVM2_VG_SIZE", "LVM2_VG_FREE", "LVM2_VG_EXTENT_SIZE", "LVM2_VG_EXTENT_COUNT",
    "LVM2_VG_FREE_COUNT", "LVM2_PV_COUNT",
])
VG_RULE = KeyValueRule("VGs", [
    "LVM2_VG_NAME", "LVM2_VG_UUID", "LVM2_VG_SIZE", "LVM2_VG_FREE", "LVM2_VG_EXTENT_SIZE",
    "LVM2_VG_EXTENT_COUNT", "LVM2_VG_FREE_COUNT", "LVM2_PV_COUNT",
])
LV_RULE = KeyValueRule("LVs", [
    "LVM2_VG_NAME", "LVM2_LV_NAME", "LVM2_LV_UUID", "LVM2_LV_SIZE", "LVM2_LV_ATTR",
    "LVM2_SEGTYPE",
])

T = TypeVar("T")


def resolve_pe_size(pe_size: int) -> int:
    """Return pe_size, or the default PE size if it is 0."""
    return pe_size or DEFAULT_PE_SIZE


def _str(record: ParsedRecord, key: str) -> Optional[str]:
    return record.get(key)


def _int(record: ParsedRecord, key: str) -> int:
    # orphan PVs report empty VG fields
    return parse_int(record.get(key) or None, key)


def _pv_data(record: ParsedRecord) -> LVMPVdata:
    return LVMPVdata(
        pv_name=_str(record, "LVM2_PV_NAME"),
        pv_uuid=_str(record, "LVM2_PV_UUID"),
        pe_start=_int(record, "LVM2_PE_START"),
        vg_name=_str(record, "LVM2_VG_NAME"),
        vg_uuid=_str(record, "LVM2_VG_UUID"),
        vg_size=_int(record, "LVM2_VG_SIZE"),
        vg_free=_int(record, "LVM2_VG_FREE"),
        vg_extent_size=_int(record, "LVM2_VG_EXTENT_SIZE"),
        vg_extent_count=_int(record, "LVM2_VG_EXTENT_COUNT"),
        vg_free_count=_int(record, "LVM2_VG_FREE_COUNT"),
        vg_pv_count=_int(record, "LVM2_PV_COUNT"),
    )


def _vg_data(record: ParsedRecord) -> LVMVGdata:
    return LVMVGdata(
        name=_str(record, "LVM2_VG_NAME"),
        uuid=_str(record, "LVM2_VG_UUID"),
        size=_int(record, "LVM2_VG_SIZE"),
        free=_int(record, "LVM2_VG_FREE"),
        extent_size=_int(record, "LVM2_VG_EXTENT_SIZE"),
        extent_count=_int(record, "LVM2_VG_EXTENT_COUNT"),
        free_count=_int(record, "LVM2_VG_FREE_COUNT"),
        pv_count=_int(record, "LVM2_PV_COUNT"),
    )


def _lv_data(record: ParsedRecord) -> LVMLVdata:
    return LVMLVdata(
        lv_name=_str(record, "LVM2_LV_NAME"),
        vg_name=_str(record, "LVM2_VG_NAME"),
        uuid=_str(record, "LVM2_LV_UUID"),
        size=_int(record, "LVM2_LV_SIZE"),
        attr=_str(record, "LVM2_LV_ATTR"),
        segtype=_str(record, "LVM2_SEGTYPE"),
    )


class LVMPlugin(BlockDevPlugin):
    """
    LVM plugin.

    Every method returning a bool returns True on success and raises
    ExecutionFailedError otherwise.
    """

    CAPABILITIES = (
        "is_supported_pe_size", "get_supported_pe_sizes", "get_max_lv_size",
        "round_size_to_pe", "get_lv_physical_size", "get_thpool_padding",
        "is_valid_thpool_md_size", "is_valid_thpool_chunk_size",
        "pvcreate", "pvresize", "pvremove", "pvmove", "pvscan", "pvinfo", "pvs",
        "vgcreate", "vgremove", "vgactivate", "vgdeactivate", "vgextend",
        "vgreduce", "vginfo", "vgs",
        "lvorigin", "lvcreate", "lvremove", "lvresize", "lvactivate",
        "lvdeactivate", "lvsnapshotcreate", "lvsnapshotmerge", "lvinfo", "lvs",
        "thpoolcreate", "thlvcreate", "thlvpoolname", "thsnapshotcreate",
        "set_global_config", "get_global_config",
    )

    required_tools = ("lvm",)

    def __init__(self, context: PluginContext):
        super().__init__(context)
        self.global_config = context.shared_config

    # =========================================================================
    # Tool invocation
    # =========================================================================

    def _argv(self, args: Sequence[str]) -> List[str]:
        argv = ["lvm", *args]
        # one snapshot per invocation; set_global_config may run concurrently
        config = self.global_config.snapshot()
        if config:
            argv.append(f"--config={config}")
        return argv

    def _run(self, args: Sequence[str]) -> bool:
        return self.executor.exec_and_report_error(self._argv(args))

    def _output(self, args: Sequence[str]) -> str:
        return self.executor.exec_and_capture_output(self._argv(args))

    def _report(
        self,
        args: Sequence[str],
        rule: KeyValueRule,
        convert: Callable[[ParsedRecord], T],
    ) -> List[T]:
        try:
            output = self._output(args)
        except NoOutputError:
            # no output means no objects of this kind
            return []
        return [convert(record) for record in parse(output, rule)]

    def _report_one(
        self,
        args: Sequence[str],
        rule: KeyValueRule,
        convert: Callable[[ParsedRecord], T],
    ) -> T:
        return convert(parse_one(self._output(args), rule))

    # =========================================================================
    # Size helpers
    # =========================================================================

    def is_supported_pe_size(self, size: int) -> bool:
        """Whether size is a PE size supported by LVM."""
        return size % 2 == 0 and MIN_PE_SIZE <= size <= MAX_PE_SIZE

    def get_supported_pe_sizes(self) -> List[int]:
        """All supported PE sizes, in ascending order."""
        sizes = []
        size = MIN_PE_SIZE
        while size <= MAX_PE_SIZE:
            sizes.append(size)
            size *= 2
        return sizes

    def get_max_lv_size(self) -> int:
        return MAX_LV_SIZE

    def round_size_to_pe(self, size: int, pe_size: int = 0, roundup: bool = True) -> int:
        """
        Round size to a multiple of the PE size.

        Args:
            size: Size in bytes
            pe_size: PE size (0 means the default PE size)
            roundup: Round up (True) or down (False)
        """
        pe_size = resolve_pe_size(pe_size)
        delta = size % pe_size
        if delta == 0:
            return size
        if roundup:
            return size + (pe_size - delta)
        return size - delta

    def get_lv_physical_size(self, lv_size: int, pe_size: int = 0) -> int:
        """Space taken by an LV of lv_size, including one PE of metadata."""
        pe_size = resolve_pe_size(pe_size)
        return self.round_size_to_pe(lv_size, pe_size, True) + pe_size

    def get_thpool_padding(self, size: int, pe_size: int = 0, included: bool = False) -> int:
        """
        Get the space needed for the metadata of a thin pool.

        Args:
            size: Size of the thin pool
            pe_size: PE size (0 means the default PE size)
            included: Whether the metadata is already included in size

        Returns:
            Metadata size in bytes, rounded up to the PE size
        """
        pe_size = resolve_pe_size(pe_size)
        factor = THPOOL_MD_FACTOR_EXISTS if included else THPOOL_MD_FACTOR_NEW
        raw_md_size = -(-size * factor.numerator // factor.denominator)

        return min(
            self.round_size_to_pe(raw_md_size, pe_size, True),
            self.round_size_to_pe(MAX_THPOOL_MD_SIZE, pe_size, True),
        )

    def is_valid_thpool_md_size(self, size: int) -> bool:
        return MIN_THPOOL_MD_SIZE <= size <= MAX_THPOOL_MD_SIZE

    def is_valid_thpool_chunk_size(self, size: int, discard: bool = False) -> bool:
        """
        Whether size is a valid thin pool chunk size.

        With discard support the chunk size must be a power of two,
        otherwise a multiple of 64 KiB.
        """
        if size < MIN_THPOOL_CHUNK_SIZE or size > MAX_THPOOL_CHUNK_SIZE:
            return False
        if discard:
            return size & (size - 1) == 0
        return size % (64 * KiB) == 0

    # =========================================================================
    # Physical volumes
    # =========================================================================

    def pvcreate(self, device: str, data_alignment: int = 0, metadata_size: int = 0) -> bool:
        """
        Initialize a device as a PV.

        Args:
            device: Device to initialize
            data_alignment: Data alignment in bytes (0 = LVM default)
            metadata_size: Metadata area size in bytes (0 = LVM default)
        """
        args = ["pvcreate", device]
        if data_alignment:
            args.append(f"--dataalignment={data_alignment}b")
        if metadata_size:
            args.append(f"--metadatasize={metadata_size}b")
        return self._run(args)

    def pvresize(self, device: str, size: int) -> bool:
        """Resize a PV to size bytes (0 = use the whole device)."""
        args = ["pvresize"]
        if size:
            args.extend(["--setphysicalvolumesize", f"{size}b"])
        args.append(device)
        return self._run(args)

    def pvremove(self, device: str) -> bool:
        # the double --force is required to remove a PV that is in use
        return self._run(["pvremove", "--force", "--force", "--yes", device])

    def pvmove(self, src: str, dest: Optional[str] = None) -> bool:
        """Move extents from src to dest (or to any free PV in the VG)."""
        args = ["pvmove", src]
        if dest:
            args.append(dest)
        return self._run(args)

    def pvscan(self, device: Optional[str] = None, update_cache: bool = False) -> bool:
        """
        Scan for PVs.

        Args:
            device: Device to scan (only used with update_cache)
            update_cache: Update the lvmetad cache
        """
        args = ["pvscan"]
        if update_cache:
            args.append("--cache")
            if device:
                args.append(device)
        elif device:
            logger.warning("Ignoring the device argument in pvscan (cache update not requested)")
        return self._run(args)

    def pvinfo(self, device: str) -> LVMPVdata:
        """
        Get information about a PV.

        Raises:
            ExecutionFailedError: If lvm failed
            NoOutputError: If lvm printed nothing
            ParseError: If the output contains no complete record
        """
        return self._report_one(["pvs", *_REPORT_OPTS, "-o", _PV_FIELDS, device], PV_RULE, _pv_data)

    def pvs(self) -> List[LVMPVdata]:
        """List all PVs (empty if there are none)."""
        return self._report(["pvs", *_REPORT_OPTS, "-o", _PV_FIELDS], PV_RULE, _pv_data)

    # =========================================================================
    # Volume groups
    # =========================================================================

    def vgcreate(self, name: str, pv_list: Sequence[str], pe_size: int = 0) -> bool:
        """
        Create a VG.

        Args:
            name: Name of the new VG
            pv_list: PVs to create the VG from
            pe_size: PE size in bytes (0 means the default PE size)
        """
        pe_size = resolve_pe_size(pe_size)
        return self._run(["vgcreate", "-s", f"{pe_size}b", name, *pv_list])

    def vgremove(self, vg_name: str) -> bool:
        return self._run(["vgremove", "--force", vg_name])

    def vgactivate(self, vg_name: str) -> bool:
        return self._run(["vgchange", "-ay", vg_name])

    def vgdeactivate(self, vg_name: str) -> bool:
        return self._run(["vgchange", "-an", vg_name])

    def vgextend(self, vg_name: str, device: str) -> bool:
        return self._run(["vgextend", vg_name, device])

    def vgreduce(self, vg_name: str, device: Optional[str] = None) -> bool:
        """Remove device from a VG, or all missing PVs if device is None."""
        if device is None:
            return self._run(["vgreduce", "--removemissing", "--force", vg_name])
        return self._run(["vgreduce", vg_name, device])

    def vginfo(self, vg_name: str) -> LVMVGdata:
        """Get information about a VG."""
        return self._report_one(["vgs", *_REPORT_OPTS, "-o", _VG_FIELDS, vg_name], VG_RULE, _vg_data)

    def vgs(self) -> List[LVMVGdata]:
        return self._report(["vgs", *_REPORT_OPTS, "-o", _VG_FIELDS], VG_RULE, _vg_data)

    # =========================================================================
    # Logical volumes
    # =========================================================================

    def lvorigin(self, vg_name: str, lv_name: str) -> str:
        """Name of the origin volume of a snapshot LV."""
        return self._output(["lvs", "--noheadings", "-o", "origin", f"{vg_name}/{lv_name}"]).strip()

    def lvcreate(
        self,
        vg_name: str,
        lv_name: str,
        size: int,
        pv_list: Optional[Sequence[str]] = None,
    ) -> bool:
        """
        Create an LV.

        Args:
            vg_name: VG to create the LV in
            lv_name: Name of the new LV
            size: Size in bytes
            pv_list: PVs to allocate the LV on (None = any)
        """
        args = ["lvcreate", "-n", lv_name, "-L", f"{size // 1024}K", "-y", vg_name]
        args.extend(pv_list or [])
        return self._run(args)

    def lvremove(self, vg_name: str, lv_name: str, force: bool = False) -> bool:
        args = ["lvremove"]
        if force:
            args.extend(["--force", "--yes"])
        args.append(f"{vg_name}/{lv_name}")
        return self._run(args)

    def lvresize(self, vg_name: str, lv_name: str, size: int) -> bool:
        return self._run(["lvresize", "--force", "-L", f"{size}b", f"{vg_name}/{lv_name}"])

    def lvactivate(self, vg_name: str, lv_name: str, ignore_skip: bool = False) -> bool:
        """Activate an LV, optionally ignoring its activation skip flag."""
        args = ["lvchange", "-ay"]
        if ignore_skip:
            args.append("-K")
        args.append(f"{vg_name}/{lv_name}")
        return self._run(args)

    def lvdeactivate(self, vg_name: str, lv_name: str) -> bool:
        return self._run(["lvchange", "-an", f"{vg_name}/{lv_name}"])

    def lvsnapshotcreate(self, vg_name: str, origin_name: str, snapshot_name: str, size: int) -> bool:
        return self._run([
            "lvcreate", "-s", "-L", f"{size}b", "-n", snapshot_name, f"{vg_name}/{origin_name}",
        ])

    def lvsnapshotmerge(self, vg_name: str, snapshot_name: str) -> bool:
        return self._run(["lvconvert", "--merge", f"{vg_name}/{snapshot_name}"])

    def lvinfo(self, vg_name: str, lv_name: str) -> LVMLVdata:
        """Get information about an LV."""
        return self._report_one(
            ["lvs", *_REPORT_OPTS, "-o", _LV_FIELDS, f"{vg_name}/{lv_name}"], LV_RULE, _lv_data
        )

    def lvs(self, vg_name: Optional[str] = None) -> List[LVMLVdata]:
        """List LVs, optionally only those of vg_name (empty if there are none)."""
        args = ["lvs", *_REPORT_OPTS, "-o", _LV_FIELDS]
        if vg_name:
            args.append(vg_name)
        return self._report(args, LV_RULE, _lv_data)

    # =========================================================================
    # Thin provisioning
    # =========================================================================

    def thpoolcreate(
        self,
        vg_name: str,
        lv_name: str,
        size: int,
        md_size: int = 0,
        chunk_size: int = 0,
        profile: Optional[str] = None,
    ) -> bool:
        """
        Create a thin pool.

        Args:
            vg_name: VG to create the pool in
            lv_name: Name of the pool
            size: Data size in bytes
            md_size: Metadata size in bytes (0 = LVM default)
            chunk_size: Chunk size in bytes (0 = LVM default)
            profile: LVM profile to use
        """
        args = ["lvcreate", "-T", "-L", f"{size}b"]
        if md_size:
            args.append(f"--poolmetadatasize={md_size}b")
        if chunk_size:
            args.append(f"--chunksize={chunk_size}b")
        if profile:
            args.append(f"--profile={profile}")
        args.append(f"{vg_name}/{lv_name}")
        return self._run(args)

    def thlvcreate(self, vg_name: str, pool_name: str, lv_name: str, size: int) -> bool:
        """Create a thin LV of virtual size bytes in a thin pool."""
        return self._run([
            "lvcreate", "-T", f"{vg_name}/{pool_name}", "-V", f"{size}b", "-n", lv_name,
        ])

    def thlvpoolname(self, vg_name: str, lv_name: str) -> str:
        """Name of the pool a thin LV belongs to."""
        return self._output(["lvs", "--noheadings", "-o", "pool_lv", f"{vg_name}/{lv_name}"]).strip()

    def thsnapshotcreate(
        self,
        vg_name: str,
        origin_name: str,
        snapshot_name: str,
        pool_name: Optional[str] = None,
    ) -> bool:
        args = ["lvcreate", "-s", "-n", snapshot_name]
        if pool_name:
            args.extend(["--thinpool", pool_name])
        args.append(f"{vg_name}/{origin_name}")
        return self._run(args)

    # =========================================================================
    # Global configuration
    # =========================================================================

    def set_global_config(self, new_config: Optional[str]) -> bool:
        """
        Set the LVM configuration passed to every lvm command.

        Args:
            new_config: LVM configuration string, or None to clear it
        """
        return self.global_config.set(new_config)

    def get_global_config(self) -> str:
        """Current LVM configuration string ("" if none is set)."""
        return self.global_config.get()


def create_plugin(context: PluginContext) -> LVMPlugin:
    """Plugin factory"""
    return LVMPlugin(context)
