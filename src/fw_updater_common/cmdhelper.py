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
"""Subprocess call collections for fw-updater use.

When underlying subprocess call failed and <raise_exception> is True,
    functions defined in this module will raise the original CalledProcessError
    to the upper caller.
"""


from __future__ import annotations

import logging
import time
from pathlib import Path
from subprocess import CalledProcessError
from typing import Literal

from fw_updater_common.common import subprocess_call, subprocess_check_output
from fw_updater_common._typing import StrOrPath

logger = logging.getLogger(__name__)


def get_dev_by_mount_point(
    mount_point: StrOrPath, *, raise_exception: bool = True
) -> str:  # pragma: no cover
    """Return the source dev of the given <mount_point>.

    This is implemented by calling:
        findmnt -nfo SOURCE <mount_point>

    Args:
        mount_point (StrOrPath): mount_point to check against.
        raise_exception (bool, optional): raise exception on subprocess call failed.
            Defaults to True.

    Returns:
        str: the source device of <mount_point>.
    """
    cmd = ["findmnt", "-nfo", "SOURCE", str(mount_point)]
    return subprocess_check_output(cmd, raise_exception=raise_exception)


def get_mount_options(
    mount_point: StrOrPath, *, raise_exception: bool = True
) -> list[str]:  # pragma: no cover
    """Return the mount options of the given <mount_point>.

    This is implemented by calling:
        findmnt -nfo OPTIONS <mount_point>
    """
    cmd = ["findmnt", "-nfo", "OPTIONS", str(mount_point)]
    raw_res = subprocess_check_output(cmd, raise_exception=raise_exception)
    return raw_res.split(",") if raw_res else []


def is_mounted_ro(mount_point: StrOrPath) -> bool:
    """Check whether <mount_point> is currently mounted read-only."""
    return "ro" in get_mount_options(mount_point, raise_exception=False)


def get_parent_dev(
    child_device: str, *, raise_exception: bool = True
) -> str:  # pragma: no cover
    """Get the parent devpath from <child_device>.

    When `/dev/mmcblk0p1` is specified as child_device, /dev/mmcblk0 is returned.

    This function is implemented by calling:
        lsblk -idpno PKNAME <child_device>

    Args:
        child_device (str): the device to find parent device from.
        raise_exception (bool, optional): raise exception on subprocess call failed.
            Defaults to True.

    Returns:
        str: the parent device of the specific <child_device>.
    """
    cmd = ["lsblk", "-idpno", "PKNAME", child_device]
    return subprocess_check_output(cmd, raise_exception=raise_exception)


def is_target_mounted(
    target: StrOrPath, *, raise_exception: bool = False
) -> bool:  # pragma: no cover
    """Check if <target> is mounted or not. <target> can be a dev or a mount point.

    This is implemented by calling:
        findmnt <target>

    Returns:
        Return True if the target has at least one mount_point. Return False if <raise_exception> is False and
            <target> is not a mount point or not mounted.
    """
    cmd = ["findmnt", str(target)]
    try:
        subprocess_call(cmd, raise_exception=True)
        return True
    except CalledProcessError:
        if raise_exception:
            raise
        return False


#
# ------ mount related helpers ------ #
#

MAX_RETRY_COUNT = 6
RETRY_INTERVAL = 2


def mount(
    target: StrOrPath,
    mount_point: StrOrPath,
    *,
    options: list[str] | None = None,
    params: list[str] | None = None,
    raise_exception: bool = True,
) -> None:  # pragma: no cover
    """Thin wrapper to call mount using subprocess.

    This will call the following:
        mount [-o <option1>,[<option2>[,...]] [<param1> [<param2>[...]]] <target> <mount_point>
    """
    cmd = ["mount"]
    if options:
        cmd.extend(["-o", ",".join(options)])
    if params:
        cmd.extend(params)
    cmd = [*cmd, str(target), str(mount_point)]
    subprocess_call(cmd, raise_exception=raise_exception)


def mount_rw(
    target: StrOrPath, mount_point: StrOrPath, *, raise_exception: bool = True
) -> None:  # pragma: no cover
    """Mount the <target> to <mount_point> read-write.

    This is implemented by calling:
        mount -o rw <target> <mount_point>
    """
    mount(target, mount_point, options=["rw"], raise_exception=raise_exception)


def mount_ro(
    target: StrOrPath, mount_point: StrOrPath, *, raise_exception: bool = True
) -> None:  # pragma: no cover
    """Mount the <target> to <mount_point> read-only.

    This is implemented by calling:
        mount -o ro <target> <mount_point>
    """
    mount(target, mount_point, options=["ro"], raise_exception=raise_exception)


def remount(
    mount_point: StrOrPath,
    mode: Literal["rw", "ro"],
    *,
    raise_exception: bool = True,
) -> None:  # pragma: no cover
    """Remount an already mounted <mount_point> with <mode>.

    This is implemented by calling:
        mount -o remount,<mode> <mount_point>
    """
    cmd = ["mount", "-o", f"remount,{mode}", str(mount_point)]
    subprocess_call(cmd, raise_exception=raise_exception)


def umount(
    target: StrOrPath, *, raise_exception: bool = True
) -> None:  # pragma: no cover
    """Try to umount the <target>.

    Before calling umount, the <target> will be check whether it is mounted,
        if it is not mounted, this function will return directly.
    """
    if not is_target_mounted(target, raise_exception=False):
        return

    _cmd = ["umount", str(target)]
    subprocess_call(_cmd, raise_exception=raise_exception)


def ensure_umount(
    mnt_point: StrOrPath,
    *,
    ignore_error: bool,
    max_retry: int = MAX_RETRY_COUNT,
    retry_interval: int = RETRY_INTERVAL,
) -> None:  # pragma: no cover
    """Try to umount the <mnt_point> at our best.

    Raises:
        If <ignore_error> is False, raises the last failed attemp's CalledProcessError.
    """
    for _retry in range(max_retry + 1):
        try:
            if not is_target_mounted(mnt_point, raise_exception=False):
                break
            umount(mnt_point, raise_exception=True)
        except CalledProcessError as e:
            logger.warning(f"retry#{_retry} failed to umount {mnt_point}: {e!r}")
            logger.warning(f"{e.stderr}\n{e.stdout}")

            if _retry >= max_retry:
                logger.error(f"reached max retry on umounting {mnt_point}, abort")
                if not ignore_error:
                    raise
                return

            time.sleep(retry_interval)
            continue


def ensure_mount_point(
    mnt_point: StrOrPath, *, ignore_error: bool
) -> None:  # pragma: no cover
    """Ensure the <mnt_point> exists, has no mount on it and ready for mount."""
    mnt_point = Path(mnt_point)
    if mnt_point.is_symlink() or not mnt_point.is_dir():
        mnt_point.unlink(missing_ok=True)

    if not mnt_point.exists():
        mnt_point.mkdir(exist_ok=True, parents=True)
        return

    try:
        ensure_umount(mnt_point, ignore_error=False)
    except Exception as e:
        if not ignore_error:
            logger.error(f"failed to prepare {mnt_point=}: {e!r}")
            raise
        logger.warning(
            f"failed to prepare {mnt_point=}: {e!r} \n"
            f"But still use {mnt_point} and override the previous mount"
        )


#
# ------ loop device helpers ------ #
#


def losetup_attach(
    image: StrOrPath, *, offset: int, sizelimit: int, read_only: bool = True
) -> str:  # pragma: no cover
    """Attach the byte range [<offset>, <offset>+<sizelimit>) of <image> to a free loop device.

    This is implemented by calling:
        losetup --find --show [--read-only] --offset <offset> --sizelimit <sizelimit> <image>

    Returns:
        str: the attached loop device path.
    """
    cmd = ["losetup", "--find", "--show"]
    if read_only:
        cmd.append("--read-only")
    cmd.extend(["--offset", str(offset), "--sizelimit", str(sizelimit), str(image)])
    return subprocess_check_output(cmd, raise_exception=True)


def losetup_detach(
    loop_dev: str, *, raise_exception: bool = False
) -> None:  # pragma: no cover
    """Detach <loop_dev>.

    This is implemented by calling:
        losetup --detach <loop_dev>
    """
    subprocess_call(["losetup", "--detach", loop_dev], raise_exception=raise_exception)


#
# ------ reboot helpers ------ #
#


def request_reboot(reboot_bin: StrOrPath) -> None:  # pragma: no cover
    """Ask the system to reboot gracefully.

    This is implemented by calling:
        <reboot_bin>

    NOTE: the graceful reboot returns once the init system accepts the request,
        the system goes down asynchronously.
    """
    logger.warning("system will reboot now!")
    subprocess_call([str(reboot_bin)], raise_exception=True)


def sysrq_trigger(cmd: str, *, sysrq_fpath: StrOrPath = "/proc/sysrq-trigger") -> None:
    """Write <cmd> into the magic sysrq trigger.

    For example, "b" reboots the kernel immediately without syncing or
        unmounting the filesystems.
    """
    logger.warning(f"write {cmd!r} to {sysrq_fpath}")
    with open(sysrq_fpath, "w") as f:
        f.write(cmd)
