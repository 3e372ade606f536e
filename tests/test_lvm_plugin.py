"""
Unit tests for the LVM plugin.

The lvm tool is never run; a scripted executor records the argument
vectors and replays canned report output.
"""

import pytest

from blockdev.errors import ExecutionFailedError, NoOutputError, ParseError
from blockdev.plugins.lvm import (
    DEFAULT_PE_SIZE,
    MAX_PE_SIZE,
    MAX_THPOOL_MD_SIZE,
    MIN_PE_SIZE,
    LVMPlugin,
    create_plugin,
)
from blockdev.utils.sizes import GiB, KiB, MiB

PV_LINE = (
    "  LVM2_PV_NAME=/dev/sdb1 LVM2_PV_UUID=pv-uuid-1 LVM2_PE_START=1048576 "
    "LVM2_VG_NAME=vg0 LVM2_VG_UUID=vg-uuid LVM2_VG_SIZE=21470642176 "
    "LVM2_VG_FREE=10733223936 LVM2_VG_EXTENT_SIZE=4194304 LVM2_VG_EXTENT_COUNT=5119 "
    "LVM2_VG_FREE_COUNT=2559 LVM2_PV_COUNT=2\n"
)
ORPHAN_PV_LINE = (
    "  LVM2_PV_NAME=/dev/sdc LVM2_PV_UUID=pv-uuid-2 LVM2_PE_START=0 "
    "LVM2_VG_NAME= LVM2_VG_UUID= LVM2_VG_SIZE= LVM2_VG_FREE= LVM2_VG_EXTENT_SIZE= "
    "LVM2_VG_EXTENT_COUNT= LVM2_VG_FREE_COUNT= LVM2_PV_COUNT=\n"
)
VG_LINE = (
    "  LVM2_VG_NAME=vg0 LVM2_VG_UUID=vg-uuid LVM2_VG_SIZE=21470642176 "
    "LVM2_VG_FREE=10733223936 LVM2_VG_EXTENT_SIZE=4194304 LVM2_VG_EXTENT_COUNT=5119 "
    "LVM2_VG_FREE_COUNT=2559 LVM2_PV_COUNT=2\n"
)
LV_LINE = (
    "  LVM2_VG_NAME=vg0 LVM2_LV_NAME={name} LVM2_LV_UUID=lv-{name} "
    "LVM2_LV_SIZE=1073741824 LVM2_LV_ATTR=-wi-a----- LVM2_SEGTYPE=linear\n"
)


@pytest.fixture
def lvm(plugin_context) -> LVMPlugin:
    return create_plugin(plugin_context("lvm"))


class TestSizeHelpers:
    """Tests for the pure size helpers"""

    def test_supported_pe_sizes(self, lvm):
        sizes = lvm.get_supported_pe_sizes()

        assert sizes[0] == MIN_PE_SIZE
        assert sizes[-1] == MAX_PE_SIZE
        assert all(b == 2 * a for a, b in zip(sizes, sizes[1:]))
        assert all(lvm.is_supported_pe_size(size) for size in sizes)

    @pytest.mark.parametrize("size,supported", [
        (4 * MiB, True),
        (512, False),
        (4 * MiB + 1, False),
        (32 * GiB, False),
    ])
    def test_is_supported_pe_size(self, lvm, size, supported):
        assert lvm.is_supported_pe_size(size) is supported

    def test_get_max_lv_size(self, lvm):
        assert lvm.get_max_lv_size() == 2 ** 63

    @pytest.mark.parametrize("size,roundup,expected", [
        (13 * MiB, True, 16 * MiB),
        (13 * MiB, False, 12 * MiB),
        (12 * MiB, True, 12 * MiB),
    ])
    def test_round_size_to_pe(self, lvm, size, roundup, expected):
        assert lvm.round_size_to_pe(size, 4 * MiB, roundup) == expected

    def test_zero_pe_size_means_default(self, lvm):
        assert lvm.round_size_to_pe(1, 0, True) == DEFAULT_PE_SIZE

    def test_lv_physical_size(self, lvm):
        """Test that one PE is added for metadata."""
        assert lvm.get_lv_physical_size(10 * MiB, 4 * MiB) == 16 * MiB

    def test_thpool_padding(self, lvm):
        assert lvm.get_thpool_padding(100 * MiB, 4 * MiB, included=False) == 20 * MiB
        assert lvm.get_thpool_padding(120 * MiB, 4 * MiB, included=True) == 20 * MiB
        assert lvm.get_thpool_padding(101 * MiB, 4 * MiB) == 24 * MiB

    def test_thpool_padding_capped(self, lvm):
        assert lvm.get_thpool_padding(1024 * GiB) == MAX_THPOOL_MD_SIZE

    def test_thpool_md_size(self, lvm):
        assert lvm.is_valid_thpool_md_size(2 * MiB)
        assert lvm.is_valid_thpool_md_size(16 * GiB)
        assert not lvm.is_valid_thpool_md_size(1 * MiB)
        assert not lvm.is_valid_thpool_md_size(17 * GiB)

    @pytest.mark.parametrize("size,discard,valid", [
        (64 * KiB, False, True),
        (192 * KiB, False, True),
        (192 * KiB, True, False),
        (256 * KiB, True, True),
        (32 * KiB, False, False),
        (2 * GiB, True, False),
        (100 * KiB, False, False),
    ])
    def test_thpool_chunk_size(self, lvm, size, discard, valid):
        assert lvm.is_valid_thpool_chunk_size(size, discard) is valid


class TestCommands:
    """Tests for the argument vectors of the lvm commands"""

    def test_pvcreate(self, lvm, scripted_executor):
        assert lvm.pvcreate("/dev/sdb", data_alignment=1 * MiB, metadata_size=4 * MiB) is True

        assert scripted_executor.last_call == [
            "lvm", "pvcreate", "/dev/sdb", "--dataalignment=1048576b", "--metadatasize=4194304b",
        ]

    def test_pvresize(self, lvm, scripted_executor):
        lvm.pvresize("/dev/sdb", 0)
        assert scripted_executor.last_call == ["lvm", "pvresize", "/dev/sdb"]

        lvm.pvresize("/dev/sdb", 1 * GiB)
        assert scripted_executor.last_call == [
            "lvm", "pvresize", "--setphysicalvolumesize", "1073741824b", "/dev/sdb",
        ]

    def test_pvremove(self, lvm, scripted_executor):
        lvm.pvremove("/dev/sdb")

        assert scripted_executor.last_call == ["lvm", "pvremove", "--force", "--force", "--yes", "/dev/sdb"]

    def test_pvscan(self, lvm, scripted_executor):
        lvm.pvscan("/dev/sdb", update_cache=True)
        assert scripted_executor.last_call == ["lvm", "pvscan", "--cache", "/dev/sdb"]

        lvm.pvscan("/dev/sdb")
        assert scripted_executor.last_call == ["lvm", "pvscan"]

    def test_vgcreate_default_pe_size(self, lvm, scripted_executor):
        lvm.vgcreate("vg0", ["/dev/sdb", "/dev/sdc"])

        assert scripted_executor.last_call == [
            "lvm", "vgcreate", "-s", "4194304b", "vg0", "/dev/sdb", "/dev/sdc",
        ]

    def test_vgreduce(self, lvm, scripted_executor):
        lvm.vgreduce("vg0")
        assert scripted_executor.last_call == ["lvm", "vgreduce", "--removemissing", "--force", "vg0"]

        lvm.vgreduce("vg0", "/dev/sdc")
        assert scripted_executor.last_call == ["lvm", "vgreduce", "vg0", "/dev/sdc"]

    def test_vg_activation(self, lvm, scripted_executor):
        lvm.vgactivate("vg0")
        lvm.vgdeactivate("vg0")

        assert scripted_executor.calls == [
            ["lvm", "vgchange", "-ay", "vg0"],
            ["lvm", "vgchange", "-an", "vg0"],
        ]

    def test_lvcreate_size_in_kib(self, lvm, scripted_executor):
        lvm.lvcreate("vg0", "data", 1 * GiB + 100, ["/dev/sdb"])

        assert scripted_executor.last_call == [
            "lvm", "lvcreate", "-n", "data", "-L", "1048576K", "-y", "vg0", "/dev/sdb",
        ]

    def test_lvremove_force(self, lvm, scripted_executor):
        lvm.lvremove("vg0", "data", force=True)

        assert scripted_executor.last_call == ["lvm", "lvremove", "--force", "--yes", "vg0/data"]

    def test_lvactivate_ignore_skip(self, lvm, scripted_executor):
        lvm.lvactivate("vg0", "data", ignore_skip=True)

        assert scripted_executor.last_call == ["lvm", "lvchange", "-ay", "-K", "vg0/data"]

    def test_snapshots(self, lvm, scripted_executor):
        lvm.lvsnapshotcreate("vg0", "data", "snap", 512 * MiB)
        lvm.lvsnapshotmerge("vg0", "snap")

        assert scripted_executor.calls == [
            ["lvm", "lvcreate", "-s", "-L", "536870912b", "-n", "snap", "vg0/data"],
            ["lvm", "lvconvert", "--merge", "vg0/snap"],
        ]

    def test_thpoolcreate(self, lvm, scripted_executor):
        lvm.thpoolcreate("vg0", "pool", 1 * GiB, md_size=4 * MiB, chunk_size=64 * KiB, profile="thin-perf")

        assert scripted_executor.last_call == [
            "lvm", "lvcreate", "-T", "-L", "1073741824b", "--poolmetadatasize=4194304b",
            "--chunksize=65536b", "--profile=thin-perf", "vg0/pool",
        ]

    def test_thin_volumes(self, lvm, scripted_executor):
        lvm.thlvcreate("vg0", "pool", "thin", 10 * GiB)
        lvm.thsnapshotcreate("vg0", "thin", "snap", pool_name="pool")

        assert scripted_executor.calls == [
            ["lvm", "lvcreate", "-T", "vg0/pool", "-V", "10737418240b", "-n", "thin"],
            ["lvm", "lvcreate", "-s", "-n", "snap", "--thinpool", "pool", "vg0/thin"],
        ]

    def test_lvorigin_and_poolname(self, lvm, scripted_executor):
        scripted_executor.add_output("  data\n")
        scripted_executor.add_output("  pool\n")

        assert lvm.lvorigin("vg0", "snap") == "data"
        assert lvm.thlvpoolname("vg0", "thin") == "pool"
        assert scripted_executor.calls[1] == ["lvm", "lvs", "--noheadings", "-o", "pool_lv", "vg0/thin"]

    def test_failure_raises(self, lvm, scripted_executor):
        scripted_executor.add_failure("Volume group \"vg9\" not found", exit_code=5)

        with pytest.raises(ExecutionFailedError) as exc_info:
            lvm.vgremove("vg9")

        assert exc_info.value.details["exit_code"] == 5
        assert "vg9" in exc_info.value.message


class TestReports:
    """Tests for the report (info/listing) operations"""

    def test_pvs(self, lvm, scripted_executor):
        scripted_executor.add_output("  WARNING: something\n" + PV_LINE + ORPHAN_PV_LINE)

        pvs = lvm.pvs()

        assert [pv.pv_name for pv in pvs] == ["/dev/sdb1", "/dev/sdc"]
        assert pvs[0].vg_size == 21470642176
        assert pvs[0].vg_pv_count == 2
        assert pvs[1].vg_name == ""
        assert pvs[1].vg_size == 0
        assert "--nameprefixes" in scripted_executor.last_call

    def test_pvinfo(self, lvm, scripted_executor):
        scripted_executor.add_output(PV_LINE)

        pv = lvm.pvinfo("/dev/sdb1")

        assert pv.pv_uuid == "pv-uuid-1"
        assert pv.pe_start == 1048576
        assert scripted_executor.last_call[-1] == "/dev/sdb1"

    def test_vgs(self, lvm, scripted_executor):
        scripted_executor.add_output(VG_LINE)

        (vg,) = lvm.vgs()

        assert vg.name == "vg0"
        assert vg.extent_size == 4 * MiB
        assert vg.free_count == 2559

    def test_vginfo(self, lvm, scripted_executor):
        scripted_executor.add_output(VG_LINE)

        assert lvm.vginfo("vg0").uuid == "vg-uuid"

    def test_lvs(self, lvm, scripted_executor):
        scripted_executor.add_output(LV_LINE.format(name="root") + LV_LINE.format(name="home"))

        lvs = lvm.lvs("vg0")

        assert [lv.lv_name for lv in lvs] == ["root", "home"]
        assert lvs[0].size == 1 * GiB
        assert lvs[0].segtype == "linear"
        assert scripted_executor.last_call[-1] == "vg0"

    def test_lvinfo(self, lvm, scripted_executor):
        scripted_executor.add_output(LV_LINE.format(name="root"))

        lv = lvm.lvinfo("vg0", "root")

        assert lv.attr == "-wi-a-----"
        assert scripted_executor.last_call[-1] == "vg0/root"

    def test_listing_without_output_is_empty(self, lvm, scripted_executor):
        """Test that listing operations return [] when lvm prints nothing."""
        scripted_executor.add_output("")
        scripted_executor.add_output("  \n")
        scripted_executor.add_output("")

        assert lvm.pvs() == []
        assert lvm.vgs() == []
        assert lvm.lvs() == []

    def test_info_without_output_raises(self, lvm, scripted_executor):
        scripted_executor.add_output("")

        with pytest.raises(NoOutputError):
            lvm.vginfo("vg0")

    def test_unparsable_report(self, lvm, scripted_executor):
        scripted_executor.add_output("  LVM2_VG_NAME=vg0 LVM2_VG_SIZE=1\n")

        with pytest.raises(ParseError):
            lvm.vgs()

    def test_bad_numeric_field_kept(self, lvm, scripted_executor):
        scripted_executor.add_output(VG_LINE.replace("LVM2_PV_COUNT=2", "LVM2_PV_COUNT=many"))

        (vg,) = lvm.vgs()

        assert vg.pv_count == 0
        assert vg.name == "vg0"


class TestGlobalConfig:
    """Tests for the global LVM configuration"""

    def test_default_empty(self, lvm):
        assert lvm.get_global_config() == ""

    def test_config_appended_to_commands(self, lvm, scripted_executor):
        assert lvm.set_global_config("devices { filter=[\"a|sdb|\", \"r|.*|\"] }") is True

        lvm.vgactivate("vg0")

        assert scripted_executor.last_call == [
            "lvm", "vgchange", "-ay", "vg0", "--config=devices { filter=[\"a|sdb|\", \"r|.*|\"] }",
        ]

    def test_config_reset(self, lvm, scripted_executor):
        lvm.set_global_config("global { use_lvmetad=0 }")
        lvm.set_global_config(None)

        lvm.vgactivate("vg0")

        assert lvm.get_global_config() == ""
        assert scripted_executor.last_call == ["lvm", "vgchange", "-ay", "vg0"]

    def test_config_shared_between_instances(self, plugin_context, scripted_executor):
        """Test that the configuration lives in the shared context object."""
        context = plugin_context("lvm")
        first = LVMPlugin(context)
        first.set_global_config("global { locking_type=1 }")

        second = LVMPlugin(context)

        assert second.get_global_config() == "global { locking_type=1 }"
