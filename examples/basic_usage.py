# Basic usage example

import logging

import blockdev
from blockdev import PluginSpec
from blockdev.utils import configure_logging


def log(level, message):
    print(f"[{logging.getLevelName(level)}] {message}")


def main():
    configure_logging(level=logging.INFO)

    # LVM is required, btrfs is nice to have
    blockdev.init(
        [PluginSpec(name="lvm"), PluginSpec(name="btrfs", required=False)],
        log_func=log,
    )

    try:
        vgs = blockdev.lvm.vgs()
        print(f"✓ Found {len(vgs)} volume group(s)")
        for vg in vgs:
            print(f"  {vg.name}: {vg.free} of {vg.size} bytes free")

        # Only look at sdb and sdc from now on
        blockdev.lvm.set_global_config('devices { filter=["a|/dev/sd[bc]|", "r|.*|"] }')
        for pv in blockdev.lvm.pvs():
            print(f"  PV {pv.pv_name} in VG {pv.vg_name or '-'}")

        if blockdev.get_manager().is_plugin_available("btrfs"):
            info = blockdev.btrfs.filesystem_info("/dev/sdb")
            print(f"✓ btrfs '{info.label}' on {info.num_devices} device(s)")

    except blockdev.BlockDevError as e:
        print(f"\n❗ Error: {e}")

    finally:
        # Pick up changed plugin implementations without going uninitialized
        blockdev.reinit(reload=True)
        print(f"Initialized: {blockdev.is_initialized()}")


if __name__ == "__main__":
    main()
