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
"""Discovery of the live device: boot device, disk, board and running firmware version."""


from __future__ import annotations

import logging
from dataclasses import dataclass

from fw_updater.configs.cfg import cfg
from fw_updater.errors import BoardUnknown, BootDeviceNotFound
from fw_updater_common import cmdhelper
from fw_updater_common._io import read_str_from_file
from fw_updater_common._typing import StrOrPath

logger = logging.getLogger(__name__)

UNKNOWN_VERSION = "unknown"


@dataclass(frozen=True)
class DeviceLayout:
    boot_dev: str
    """The boot partition device, i.e., /dev/mmcblk0p1."""
    disk_dev: str
    """The disk holding the boot/root/data partitions, i.e., /dev/mmcblk0."""


def detect_device_layout(
    boot_mount_point: StrOrPath = cfg.BOOT_MOUNT_POINT,
) -> DeviceLayout:
    """Detect the boot device by its mount point, and the disk it belongs to.

    Raises:
        BootDeviceNotFound if boot partition is not mounted or its disk cannot be found.
    """
    boot_dev = cmdhelper.get_dev_by_mount_point(boot_mount_point, raise_exception=False)
    if not boot_dev:
        _err_msg = f"no device is mounted at {boot_mount_point}"
        logger.error(_err_msg)
        raise BootDeviceNotFound(_err_msg, module=__name__)

    disk_dev = cmdhelper.get_parent_dev(boot_dev, raise_exception=False)
    if not disk_dev:
        _err_msg = f"failed to find the disk of {boot_dev=}"
        logger.error(_err_msg)
        raise BootDeviceNotFound(_err_msg, module=__name__)

    logger.info(f"detected {boot_dev=} on {disk_dev=}")
    return DeviceLayout(boot_dev=boot_dev, disk_dev=disk_dev)


def get_board() -> str:
    if cfg.BOARD:
        return cfg.BOARD
    if board := read_str_from_file(cfg.BOARD_FPATH, _default=""):
        return board
    raise BoardUnknown(
        f"board is neither configured nor recorded at {cfg.BOARD_FPATH}",
        module=__name__,
    )


def get_current_version() -> str:
    return read_str_from_file(cfg.CURRENT_VERSION_FPATH, _default="") or UNKNOWN_VERSION
