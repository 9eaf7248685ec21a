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
"""Hook scripts execution.

Three kinds of hooks are supported:
1. pre-upgrade hooks: executables under <PRE_UPGRADE_HOOKS_DNAME> in the boot
    partition of the new firmware image. Any of them exits non-zero rejects the update.
2. boot config migration hook: carries environment-specific boot settings
    from the backup of the old /boot to the new one, its failure is ignored.
3. prepare next boot hook: arranges the next boot environment to write the root
    partition, its failure is fatal.
"""


from __future__ import annotations

import contextlib
import logging
import os
from pathlib import Path
from subprocess import CalledProcessError
from typing import Generator, Optional

from fw_updater._types import PartitionGeometry
from fw_updater._utils import raise_mount_failed
from fw_updater.errors import HookAborted, HookFailed
from fw_updater_common import cmdhelper
from fw_updater_common.common import subprocess_call
from fw_updater_common._typing import StrOrPath

logger = logging.getLogger(__name__)

NEW_VERSION_ENV = "FW_NEW_VERSION"
CURRENT_VERSION_ENV = "FW_CURRENT_VERSION"


def _is_executable(fpath: Path) -> bool:
    return fpath.is_file() and os.access(fpath, os.X_OK)


def run_optional_hook(
    hook: StrOrPath,
    *args: str,
    ignore_error: bool,
    env: Optional[dict[str, str]] = None,
) -> bool:
    """Run <hook> with <args> if it is installed.

    Returns:
        True if the hook is executed successfully, False if the hook is not installed,
            or it failed and <ignore_error> is True.

    Raises:
        HookFailed if the hook failed and <ignore_error> is False.
    """
    hook = Path(hook)
    if not _is_executable(hook):
        logger.info(f"{hook} is not installed, skip")
        return False

    logger.info(f"run hook {hook} {args=}")
    try:
        subprocess_call([str(hook), *args], raise_exception=True, env=env)
        return True
    except CalledProcessError as e:
        _err_msg = (
            f"hook {hook} failed(retcode={e.returncode}): "
            f"{e.stderr.decode() if e.stderr else ''}"
        )
        if ignore_error:
            logger.warning(f"{_err_msg}, ignored")
            return False
        logger.error(_err_msg)
        raise HookFailed(_err_msg, module=__name__) from e


def run_pre_upgrade_hooks(
    hooks_dpath: StrOrPath, *, env: Optional[dict[str, str]] = None
) -> None:
    """Run all the executables under <hooks_dpath> in name order.

    Raises:
        HookAborted on the first hook that exits non-zero.
    """
    hooks_dpath = Path(hooks_dpath)
    if not hooks_dpath.is_dir():
        logger.info(f"no pre-upgrade hooks found at {hooks_dpath}")
        return

    for _hook in sorted(hooks_dpath.iterdir()):
        if not _is_executable(_hook):
            continue

        logger.info(f"run pre-upgrade hook {_hook.name}")
        try:
            subprocess_call([str(_hook)], raise_exception=True, env=env)
        except CalledProcessError as e:
            _err_msg = (
                f"pre-upgrade hook {_hook.name} rejected the update(retcode={e.returncode}): "
                f"{e.stderr.decode() if e.stderr else ''}"
            )
            logger.error(_err_msg)
            raise HookAborted(_err_msg, module=__name__) from e


@contextlib.contextmanager
def mount_image_partition(
    image: StrOrPath, geometry: PartitionGeometry, mnt_point: StrOrPath
) -> Generator[Path, None, None]:
    """Read-only mount the partition at <geometry> of the raw disk <image>.

    The loop device and the mount are always released on exit.
    """
    with raise_mount_failed(f"attach {image} to a loop device", module=__name__):
        loop_dev = cmdhelper.losetup_attach(
            image, offset=geometry.start, sizelimit=geometry.size
        )
    logger.debug(f"attach {image} {geometry} to {loop_dev}")
    try:
        cmdhelper.ensure_mount_point(mnt_point, ignore_error=False)
        with raise_mount_failed(f"mount {loop_dev} ro at {mnt_point}", module=__name__):
            cmdhelper.mount_ro(loop_dev, mnt_point)
        try:
            yield Path(mnt_point)
        finally:
            cmdhelper.ensure_umount(mnt_point, ignore_error=True, max_retry=2)
    finally:
        cmdhelper.losetup_detach(loop_dev)
