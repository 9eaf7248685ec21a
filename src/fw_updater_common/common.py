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
"""Utils that shared between modules are listed here."""


from __future__ import annotations

import logging
import subprocess
from typing import Optional

from fw_updater_common.linux import subprocess_run_wrapper

logger = logging.getLogger(__name__)


def subprocess_check_output(
    cmd: str | list[str],
    *,
    raise_exception: bool = False,
    default: str = "",
    env: Optional[dict[str, str]] = None,
    timeout: Optional[float] = None,
) -> str:
    """Run the <cmd> and return UTF-8 decoded stripped stdout.

    Args:
        cmd (str | list[str]): command to be executed.
        raise_exception (bool, optional): raise the underlying CalledProcessError. Defaults to False.
        default (str, optional): if <raise_exception> is False, return <default> on underlying
            subprocess call failed. Defaults to "".
        env (Optional[dict[str, str]]): extra envs for the subprocess. Defaults to None.
        timeout (Optional[float], optional): timeout for execution. Defaults to None.

    Returns:
        str: UTF-8 decoded stripped stdout.
    """
    try:
        res = subprocess_run_wrapper(
            cmd, check=True, check_output=True, env=env, timeout=timeout
        )
        return res.stdout.decode().strip()
    except subprocess.CalledProcessError as e:
        _err_msg = (
            f"command({cmd=}) failed(retcode={e.returncode}: \n"
            f"stderr={e.stderr.decode()}"
        )
        logger.debug(_err_msg)

        if raise_exception:
            raise
        return default


def subprocess_call(
    cmd: str | list[str],
    *,
    raise_exception: bool = False,
    input: Optional[bytes] = None,
    env: Optional[dict[str, str]] = None,
    timeout: Optional[float] = None,
) -> None:
    """Run the <cmd>.

    Args:
        cmd (str | list[str]): command to be executed.
        raise_exception (bool, optional): raise the underlying CalledProcessError. Defaults to False.
        input (Optional[bytes]): data passed to the stdin of the subprocess.
        env (Optional[dict[str, str]]): extra envs for the subprocess. Defaults to None.
        timeout (Optional[float], optional): timeout for execution. Defaults to None.
    """
    try:
        subprocess_run_wrapper(
            cmd, check=True, check_output=False, input=input, env=env, timeout=timeout
        )
    except subprocess.CalledProcessError as e:
        _err_msg = (
            f"command({cmd=}) failed(retcode={e.returncode}: \n"
            f"stderr={e.stderr.decode()}"
        )
        logger.debug(_err_msg)

        if raise_exception:
            raise
