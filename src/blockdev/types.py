"""
blockdev type definitions

Common types used across the blockdev project.
"""

from pydantic import BaseModel, ConfigDict, Field, field_validator
from typing import Dict, List, Optional

__all__ = [
    "PluginSpec",
    "ExecRequest",
    "ExecResult",
    "BtrfsDeviceInfo",
    "BtrfsSubvolumeInfo",
    "BtrfsFilesystemInfo",
    "LVMPVdata",
    "LVMVGdata",
    "LVMLVdata",
]


class PluginSpec(BaseModel):
    """Identifies a requested plugin"""

    model_config = ConfigDict(frozen=True)

    name: str = Field(..., min_length=1, description="Logical plugin name (e.g. lvm, btrfs)")

    path: Optional[str] = Field(
        default=None,
        description="Explicit implementation (file path or dotted module name), used verbatim"
    )

    required: bool = Field(
        default=True,
        description="Whether failing to load this plugin fails initialization"
    )


class ExecRequest(BaseModel):
    """External program invocation request"""

    argv: List[str] = Field(..., min_length=1, description="Program name followed by its arguments")

    cwd: Optional[str] = Field(None, description="Working directory for the child process")

    env: Dict[str, str] = Field(
        default_factory=dict,
        description="Environment overrides merged over the current environment"
    )

    timeout_sec: Optional[float] = Field(
        None,
        gt=0,
        description="Kill the child after this many seconds (None = wait forever)"
    )

    @field_validator("argv")
    @classmethod
    def _program_not_empty(cls, value: List[str]) -> List[str]:
        if not value[0]:
            raise ValueError("program name must not be empty")
        return value


class ExecResult(BaseModel):
    """External program invocation result"""

    success: bool = Field(..., description="Program started and exited with status 0")

    stdout: str = Field(default="", description="Captured standard output")

    stderr: str = Field(default="", description="Captured diagnostic output")

    exit_code: Optional[int] = Field(None, description="Exit code (None if the program never ran)")

    duration_ms: int = Field(default=0, description="Wall-clock duration in milliseconds")

    argv: List[str] = Field(default_factory=list, description="Argument vector that was run")

    timed_out: bool = Field(default=False, description="Child was killed after the timeout")


# =============================================================================
# Btrfs records
# =============================================================================

class BtrfsDeviceInfo(BaseModel):
    """Device that is part of a btrfs volume"""

    id: int
    path: str
    size: int = Field(..., description="Size in bytes")
    used: int = Field(..., description="Used space in bytes")


class BtrfsSubvolumeInfo(BaseModel):
    """btrfs subvolume"""

    id: int
    parent_id: int
    path: str


class BtrfsFilesystemInfo(BaseModel):
    """btrfs filesystem"""

    label: str
    uuid: str
    num_devices: int
    used: int = Field(..., description="Used space in bytes")


# =============================================================================
# LVM records
# =============================================================================

class LVMPVdata(BaseModel):
    """LVM physical volume (with data about its VG)"""

    pv_name: Optional[str] = None
    pv_uuid: Optional[str] = None
    pe_start: int = 0
    vg_name: Optional[str] = None
    vg_uuid: Optional[str] = None
    vg_size: int = 0
    vg_free: int = 0
    vg_extent_size: int = 0
    vg_extent_count: int = 0
    vg_free_count: int = 0
    vg_pv_count: int = 0


class LVMVGdata(BaseModel):
    """LVM volume group"""

    name: Optional[str] = None
    uuid: Optional[str] = None
    size: int = 0
    free: int = 0
    extent_size: int = 0
    extent_count: int = 0
    free_count: int = 0
    pv_count: int = 0


class LVMLVdata(BaseModel):
    """LVM logical volume"""

    lv_name: Optional[str] = None
    vg_name: Optional[str] = None
    uuid: Optional[str] = None
    size: int = 0
    attr: Optional[str] = None
    segtype: Optional[str] = None
