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


from __future__ import annotations

import logging
import os
import shlex
import subprocess
from pathlib import Path
from typing import Optional

from fw_updater_common._typing import StrOrPath

logger = logging.getLogger(__name__)

#
# ------ process liveness ------ #
#

# the index of <state> and <starttime> in /proc/<pid>/stat,
#   counted from the field right after the ")" of <comm>.
_STAT_STATE_IDX = 0
_STAT_STARTTIME_IDX = 19
_DEAD_STATES = ("Z", "X", "x")


def _read_proc_stat(pid: int) -> Optional[list[str]]:
    try:
        raw = Path(f"/proc/{pid}/stat").read_text()
    except (FileNotFoundError, ProcessLookupError):
        return None
    # NOTE: <comm> might contain spaces and parentheses, always
    #       split the fields after the last ")".
    return raw[raw.rindex(")") + 2 :].split()


def get_proc_starttime(pid: int) -> Optional[int]:
    """Get the starttime(in clock ticks since boot) of process <pid>.

    Together with the pid, the starttime identifies a process uniquely
        across pid reuse.

    Returns:
        The starttime of the process, or None if process <pid> doesn't exist.
    """
    if (fields := _read_proc_stat(pid)) is None:
        return None
    return int(fields[_STAT_STARTTIME_IDX])


def is_proc_alive(pid: int, starttime: Optional[int] = None) -> bool:
    """Check whether process <pid> is alive.

    A zombie process is treated as dead. If <starttime> is specified, a process
        with the same pid but different starttime is a different process
        that reuses the pid, and is also treated as our process being dead.
    """
    if pid <= 0 or (fields := _read_proc_stat(pid)) is None:
        return False
    if fields[_STAT_STATE_IDX] in _DEAD_STATES:
        return False
    if starttime is not None and int(fields[_STAT_STARTTIME_IDX]) != starttime:
        return False
    return True


#
# ------ subprocess call ------ #
#


def subprocess_run_wrapper(
    cmd: str | list[str],
    *,
    check: bool,
    check_output: bool,
    env: Optional[dict[str, str]] = None,
    input: Optional[bytes] = None,
    timeout: Optional[float] = None,
) -> subprocess.CompletedProcess[bytes]:
    """A wrapper for subprocess.run method.

    Args:
        cmd (str | list[str]): command to be executed.
        check (bool): if True, raise CalledProcessError on non 0 return code.
        check_output (bool): if True, the stdout will be captured.
        env (Optional[dict[str, str]]): extra envs merged into the current environ.
        input (Optional[bytes]): data passed to the stdin of the subprocess.
        timeout (Optional[float], optional): timeout for execution. Defaults to None.

    Returns:
        subprocess.CompletedProcess[bytes]: the result of the execution.
    """
    if isinstance(cmd, str):
        cmd = shlex.split(cmd)

    logger.debug(f"subprocess call: {cmd}")
    _env = None
    if env:
        _env = {**os.environ, **env}

    return subprocess.run(
        cmd,
        check=check,
        stderr=subprocess.PIPE,
        stdout=subprocess.PIPE if check_output else subprocess.DEVNULL,
        input=input,
        timeout=timeout,
        env=_env,
    )


def spawn_detached(
    cmd: list[str], *, log_fpath: StrOrPath, env: Optional[dict[str, str]] = None
) -> subprocess.Popen[bytes]:
    """Launch <cmd> in a new session, with combined stdout/stderr
    redirected to <log_fpath>.

    The spawned process survives the exit of the caller.
    """
    logger.debug(f"spawn detached: {cmd}, log to {log_fpath}")
    _env = None
    if env:
        _env = {**os.environ, **env}

    with open(log_fpath, "wb") as log_f:
        return subprocess.Popen(
            cmd,
            stdin=subprocess.DEVNULL,
            stdout=log_f,
            stderr=subprocess.STDOUT,
            start_new_session=True,
            env=_env,
        )
