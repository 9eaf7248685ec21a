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
"""Flash the boot partition of the live device from the extracted firmware image.

The boot partition is overwritten live, so the flashing runs inside the
    reboot-inhibited section, see `reboot_inhibited` for more details.
"""


from __future__ import annotations

import contextlib
import logging
import os
import shutil
import signal
from pathlib import Path
from typing import Generator, Optional

from fw_updater._types import JobKind, JobState, PartitionGeometry, PhaseStatus
from fw_updater._utils import raise_mount_failed
from fw_updater.configs.cfg import cfg
from fw_updater.device import DeviceLayout, detect_device_layout, get_current_version
from fw_updater.errors import (
    FlashInterrupted,
    InvalidFirmwareImage,
    NothingExtracted,
    PartitionTableError,
)
from fw_updater.hooks import (
    CURRENT_VERSION_ENV,
    NEW_VERSION_ENV,
    mount_image_partition,
    run_optional_hook,
    run_pre_upgrade_hooks,
)
from fw_updater.job_supervisor import JobSupervisor
from fw_updater.partition import PartitionTable, SfdiskPartitionTable, reallocate
from fw_updater.phase import current_phase
from fw_updater.workspace import Workspace
from fw_updater_common import cmdhelper
from fw_updater_common._io import write_str_to_file_atomic
from fw_updater_common._typing import StrOrPath

logger = logging.getLogger(__name__)

REBOOT_SHIM = "#!/bin/sh\necho 'reboot is inhibited by fw-updater' >&2\nexit 0\n"
REBOOT_BACKUP_SUFFIX = ".fw-updater-orig"
INHIBITED_SIGNALS = (signal.SIGTERM, signal.SIGHUP, signal.SIGINT)


#
# ------ reboot inhibition ------ #
#


def _reboot_backup_of(reboot_bin: Path) -> Path:
    return Path(f"{reboot_bin}{REBOOT_BACKUP_SUFFIX}")


def _exists(fpath: Path) -> bool:
    return fpath.exists() or fpath.is_symlink()


def restore_reboot_bin(reboot_bin: StrOrPath) -> bool:
    """Put the original reboot entry point back if it is moved aside.

    Returns:
        True if the original reboot entry point is restored.
    """
    reboot_bin = Path(reboot_bin)
    backup = _reboot_backup_of(reboot_bin)
    if not _exists(backup):
        return False

    os.replace(backup, reboot_bin)
    logger.info(f"{reboot_bin} is restored")
    return True


def install_reboot_shim(reboot_bin: StrOrPath) -> bool:
    """Move the reboot entry point aside and install a no-op one.

    If the backup of the original entry point is left by a previous run that got
        killed in the middle, the backup is restored first, so the original
        entry point is never overwritten by the shim.

    Returns:
        True if the original entry point is moved aside, False if there is none.
    """
    reboot_bin = Path(reboot_bin)
    if restore_reboot_bin(reboot_bin):
        logger.warning(f"stale backup of {reboot_bin} from previous run is restored")

    moved = _exists(reboot_bin)
    if moved:
        os.replace(reboot_bin, _reboot_backup_of(reboot_bin))
    write_str_to_file_atomic(reboot_bin, REBOOT_SHIM, follow_symlink=False)
    os.chmod(reboot_bin, 0o755)
    logger.info(f"reboot shim is installed at {reboot_bin}")
    return moved


def _raise_on_signal(signum, _frame) -> None:
    raise FlashInterrupted(
        f"interrupted by {signal.Signals(signum).name}", module=__name__
    )


@contextlib.contextmanager
def reboot_inhibited(
    *,
    boot_dev: str,
    boot_mount_point: StrOrPath = cfg.BOOT_MOUNT_POINT,
    root_mount_point: StrOrPath = cfg.ROOT_MOUNT_POINT,
    reboot_bin: StrOrPath = cfg.REBOOT_BIN,
) -> Generator[None, None, None]:
    """The guarded section in which the system cannot be rebooted by the reboot command.

    On enter:
        1. SIGTERM/SIGHUP/SIGINT are turned into FlashInterrupted.
        2. rootfs is remounted rw if it is mounted ro.
        3. the reboot entry point is replaced by a no-op shim.

    On exit, whatever happens inside:
        1. the original reboot entry point is restored.
        2. the boot partition is mounted if it is not.
        3. rootfs is remounted ro if it was.
        4. the previous signal handlers are restored.
    """
    reboot_bin = Path(reboot_bin)
    root_was_ro = cmdhelper.is_mounted_ro(root_mount_point)
    prev_handlers = {}
    shim_installed = False
    try:
        for _signum in INHIBITED_SIGNALS:
            prev_handlers[_signum] = signal.signal(_signum, _raise_on_signal)

        if root_was_ro:
            logger.info(f"remount {root_mount_point} rw to install the reboot shim")
            with raise_mount_failed(f"remount {root_mount_point} rw", module=__name__):
                cmdhelper.remount(root_mount_point, "rw")
        install_reboot_shim(reboot_bin)
        shim_installed = True
        yield
    finally:
        # the cleanup itself must not be interrupted, signals arrive
        #   during it are delivered after the previous handlers are restored.
        signal.pthread_sigmask(signal.SIG_BLOCK, INHIBITED_SIGNALS)
        try:
            if not restore_reboot_bin(reboot_bin) and shim_installed:
                # no original entry point to restore
                reboot_bin.unlink(missing_ok=True)
        finally:
            try:
                if not cmdhelper.is_target_mounted(boot_mount_point):
                    logger.info(f"mount {boot_dev} back to {boot_mount_point}")
                    cmdhelper.mount(boot_dev, boot_mount_point)
            finally:
                if root_was_ro:
                    cmdhelper.remount(root_mount_point, "ro", raise_exception=False)
                for _signum, _handler in prev_handlers.items():
                    if _handler is not None:
                        signal.signal(_signum, _handler)
                signal.pthread_sigmask(signal.SIG_UNBLOCK, INHIBITED_SIGNALS)


#
# ------ boot flashing ------ #
#


def boot_write_cmd(
    raw_image: StrOrPath, boot_dev: str, geometry: PartitionGeometry
) -> list[str]:
    """Copy the byte range of <geometry> of <raw_image> onto <boot_dev>."""
    # fmt: off
    return [
        "dd",
        f"if={raw_image}", f"of={boot_dev}", "bs=1M",
        f"skip={geometry.start_mb}", f"count={geometry.size_mb}",
        "conv=fsync",
    ]
    # fmt: on


class BootFlasher:
    """Flash the boot partition, and record the root partition layout for next boot."""

    def __init__(
        self,
        workspace: Workspace,
        supervisor: JobSupervisor,
        *,
        layout: Optional[DeviceLayout] = None,
        disk_table: Optional[PartitionTable] = None,
        image_table: Optional[PartitionTable] = None,
        boot_mount_point: StrOrPath = cfg.BOOT_MOUNT_POINT,
        root_mount_point: StrOrPath = cfg.ROOT_MOUNT_POINT,
        reboot_bin: StrOrPath = cfg.REBOOT_BIN,
        migration_hook: StrOrPath = cfg.BOOT_CONFIG_MIGRATION_HOOK,
    ) -> None:
        self._ws = workspace
        self._supervisor = supervisor
        self._layout = layout
        self._disk_table = disk_table
        self._image_table = image_table or SfdiskPartitionTable(
            workspace.raw_image, is_block_device=False
        )
        self.boot_mount_point = Path(boot_mount_point)
        self.root_mount_point = Path(root_mount_point)
        self.reboot_bin = Path(reboot_bin)
        self.migration_hook = Path(migration_hook)

    def _read_image_geometry(self, partition_id: int) -> PartitionGeometry:
        """Read the image's partition geometry, aligned to whole megabytes."""
        try:
            _geometry = self._image_table.read_geometry(partition_id)
        except PartitionTableError as e:
            _err_msg = f"failed to read partition#{partition_id} of the image: {e!r}"
            logger.error(_err_msg)
            raise InvalidFirmwareImage(_err_msg, module=__name__) from e
        return PartitionGeometry.from_mb(_geometry.start_mb, _geometry.size_mb)

    def _check_pre_upgrade_hooks(self, boot_geometry: PartitionGeometry) -> None:
        _env = {
            NEW_VERSION_ENV: self._ws.read_version(),
            CURRENT_VERSION_ENV: get_current_version(),
        }
        with mount_image_partition(
            self._ws.raw_image, boot_geometry, self._ws.image_mnt_dpath
        ) as _mnt:
            run_pre_upgrade_hooks(_mnt / cfg.PRE_UPGRADE_HOOKS_DNAME, env=_env)

    def _backup_boot(self) -> Path:
        backup = self._ws.boot_backup_dpath
        shutil.rmtree(backup, ignore_errors=True)
        shutil.copytree(self.boot_mount_point, backup, symlinks=True)
        logger.info(f"{self.boot_mount_point} is backed up to {backup}")
        return backup

    def flash(self) -> PhaseStatus:
        """Flash the boot partition.

        Raises:
            NothingExtracted, InvalidFirmwareImage, BootDeviceNotFound, HookAborted before
                any change to the device.
            PartitionOverlap, JobFailed, FlashInterrupted from the guarded section.
        """
        if not self._ws.raw_image.is_file():
            raise NothingExtracted(
                f"no firmware image found at {self._ws.raw_image}", module=__name__
            )

        layout = self._layout or detect_device_layout(self.boot_mount_point)
        disk_table = self._disk_table or SfdiskPartitionTable(layout.disk_dev)

        boot_geometry = self._read_image_geometry(cfg.BOOT_PARTITION_ID)
        root_geometry = self._read_image_geometry(cfg.ROOT_PARTITION_ID)
        logger.info(f"firmware image: boot={boot_geometry}, root={root_geometry}")

        self._check_pre_upgrade_hooks(boot_geometry)

        self._ws.clear_boot_ready()
        backup = self._backup_boot()
        with raise_mount_failed(f"umount {self.boot_mount_point}", module=__name__):
            cmdhelper.ensure_umount(self.boot_mount_point, ignore_error=False)

        with reboot_inhibited(
            boot_dev=layout.boot_dev,
            boot_mount_point=self.boot_mount_point,
            root_mount_point=self.root_mount_point,
            reboot_bin=self.reboot_bin,
        ):
            self._ws.write_root_geometry(root_geometry)
            reallocate(
                disk_table,
                cfg.BOOT_PARTITION_ID,
                boot_geometry,
                neighbor_id=cfg.ROOT_PARTITION_ID,
            )

            self._supervisor.start(
                JobKind.BOOT_WRITE,
                boot_write_cmd(self._ws.raw_image, layout.boot_dev, boot_geometry),
            )
            self._supervisor.wait(JobKind.BOOT_WRITE)

            _action = f"mount {layout.boot_dev} rw at {self.boot_mount_point}"
            with raise_mount_failed(_action, module=__name__):
                cmdhelper.mount_rw(layout.boot_dev, self.boot_mount_point)
            run_optional_hook(self.migration_hook, str(backup), ignore_error=True)
            self._ws.mark_boot_ready()

        logger.info("boot partition is flashed")
        return current_phase(self._ws, self._supervisor)

    def status(self) -> JobState:
        return self._supervisor.query(JobKind.BOOT_WRITE)
