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
"""fw-updater internal uses consts, should not be changed from external."""

from __future__ import annotations


class Consts:

    #
    # ------ paths ------ #
    #
    # the single update workspace, placed on the data partition
    #   so that it survives the root partition being reflashed.
    WORKSPACE_DPATH = "/data/fw-update"

    BOOT_MOUNT_POINT = "/boot"
    ROOT_MOUNT_POINT = "/"

    REBOOT_BIN = "/sbin/reboot"
    SYSRQ_TRIGGER_FPATH = "/proc/sysrq-trigger"

    BOARD_FPATH = "/etc/board"
    CURRENT_VERSION_FPATH = "/etc/fw-version"

    #
    # ------ hooks ------ #
    #
    # relative to the root of the firmware image's boot partition
    PRE_UPGRADE_HOOKS_DNAME = "pre-upgrade.d"
    BOOT_CONFIG_MIGRATION_HOOK = "/usr/lib/fw-updater/migrate-boot-config"
    PREPARE_NEXT_BOOT_HOOK = "/usr/lib/fw-updater/prepare-next-boot"

    #
    # ------ disk layout ------ #
    #
    BOOT_PARTITION_ID = 1
    ROOT_PARTITION_ID = 2
    DATA_PARTITION_ID = 3

    #
    # ------ workspace artifacts ------ #
    #
    VERSION_FNAME = "version"
    IMAGE_RAW_FNAME = "firmware.img"
    IMAGE_GZ_FNAME = "firmware.img.gz"
    IMAGE_XZ_FNAME = "firmware.img.xz"
    ROOT_GEOMETRY_FNAME = "root_geometry"
    BOOT_READY_FNAME = "boot_ready"
    BOOT_BACKUP_DNAME = "boot.bak"
    IMAGE_MNT_DNAME = "mnt"
    JOB_LOG_SUFFIX = ".log"
    JOB_MARKER_SUFFIX = ".pid"
    PARTIAL_SUFFIX = ".part"

    #
    # ------ env vars passed to the catalog helper ------ #
    #
    CATALOG_REPO_ENV = "RELEASES_REPO"
    CATALOG_TOKEN_ENV = "RELEASES_TOKEN"


cfg_consts = Consts()
