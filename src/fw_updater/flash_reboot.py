# Copyright 2022 TIER IV, INC. All rights reserved.
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
"""Reallocate the root partition and reboot into the environment that writes it.

The actual writing of the root partition happens in the next boot environment
    prepared by the prepare-next-boot hook, out of the lifetime of this process.
"""


from __future__ import annotations

import logging
import os
import time
from subprocess import CalledProcessError
from typing import Optional

from typing_extensions import NoReturn

from fw_updater._utils import raise_mount_failed
from fw_updater.configs.cfg import cfg
from fw_updater.device import DeviceLayout, detect_device_layout
from fw_updater.errors import NothingExtracted, RebootFailed
from fw_updater.flash_boot import reboot_inhibited
from fw_updater.hooks import run_optional_hook
from fw_updater.partition import PartitionTable, SfdiskPartitionTable, reallocate
from fw_updater.workspace import Workspace
from fw_updater_common import cmdhelper
from fw_updater_common._typing import StrOrPath

logger = logging.getLogger(__name__)


def reboot_system(
    *,
    reboot_bin: StrOrPath = cfg.REBOOT_BIN,
    grace_period: float = cfg.REBOOT_GRACE_PERIOD,
    sysrq_fpath: StrOrPath = cfg.SYSRQ_TRIGGER_FPATH,
) -> NoReturn:
    """Request a graceful reboot, force it via sysrq if the system doesn't go down in time."""
    os.sync()
    try:
        cmdhelper.request_reboot(reboot_bin)
        time.sleep(grace_period)
        logger.error(f"system is still up {grace_period=}s after reboot is requested")
    except CalledProcessError as e:
        logger.error(f"graceful reboot failed: {e!r}")

    logger.warning("force reboot via sysrq!")
    cmdhelper.sysrq_trigger("b", sysrq_fpath=sysrq_fpath)
    time.sleep(grace_period)
    raise RebootFailed("system is still up after forced reboot", module=__name__)


def flash_reboot(
    workspace: Workspace,
    *,
    layout: Optional[DeviceLayout] = None,
    disk_table: Optional[PartitionTable] = None,
    boot_mount_point: StrOrPath = cfg.BOOT_MOUNT_POINT,
    root_mount_point: StrOrPath = cfg.ROOT_MOUNT_POINT,
    reboot_bin: StrOrPath = cfg.REBOOT_BIN,
    prepare_hook: StrOrPath = cfg.PREPARE_NEXT_BOOT_HOOK,
    grace_period: float = cfg.REBOOT_GRACE_PERIOD,
    sysrq_fpath: StrOrPath = cfg.SYSRQ_TRIGGER_FPATH,
) -> NoReturn:
    """Reallocate the root partition to the recorded layout and reboot.

    This function never returns, calling it is terminal for the caller.

    Raises:
        NothingExtracted if no root geometry is recorded, nothing is changed.
        PartitionOverlap if the root partition would overlap the data partition.
        HookFailed if the prepare-next-boot hook failed.
        RebootFailed if the system doesn't go down.
    """
    root_geometry = workspace.read_root_geometry()
    if root_geometry is None:
        raise NothingExtracted(
            f"no root geometry is recorded in {workspace.root}, flash boot first",
            module=__name__,
        )

    layout = layout or detect_device_layout(boot_mount_point)
    disk_table = disk_table or SfdiskPartitionTable(layout.disk_dev)

    with reboot_inhibited(
        boot_dev=layout.boot_dev,
        boot_mount_point=boot_mount_point,
        root_mount_point=root_mount_point,
        reboot_bin=reboot_bin,
    ):
        reallocate(
            disk_table,
            cfg.ROOT_PARTITION_ID,
            root_geometry,
            neighbor_id=cfg.DATA_PARTITION_ID,
        )

    with raise_mount_failed(f"remount {boot_mount_point} rw", module=__name__):
        cmdhelper.remount(boot_mount_point, "rw")
    run_optional_hook(prepare_hook, ignore_error=False)

    logger.warning("root partition will be written in the next boot environment")
    reboot_system(
        reboot_bin=reboot_bin, grace_period=grace_period, sysrq_fpath=sysrq_fpath
    )
