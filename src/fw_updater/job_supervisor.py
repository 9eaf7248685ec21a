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
"""Supervise long-running external operations as detached jobs.

A job is tracked by a marker file holding the identity of its process, and by
    its output artifact. The process identity is "<pid>:<starttime>", so that a
    stale marker pointing at a pid that has been reused by the OS is never
    mistaken for our still-running job.

Markers are not cleaned up after the job finishes, query of the job state always
    falls through to the artifact check once the recorded process is dead.
"""


from __future__ import annotations

import logging
import subprocess
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from fw_updater._types import JobKind, JobState
from fw_updater.configs.cfg import cfg
from fw_updater.errors import JobFailed
from fw_updater.workspace import Workspace
from fw_updater_common._io import read_str_from_file, write_str_to_file_atomic
from fw_updater_common.linux import get_proc_starttime, is_proc_alive, spawn_detached

logger = logging.getLogger(__name__)

_MARKER_SEP = ":"
_UNKNOWN_STARTTIME = -1


@dataclass(frozen=True)
class Job:
    kind: JobKind
    pid: int
    starttime: Optional[int]
    log_fpath: Path

    @property
    def marker(self) -> str:
        _starttime = _UNKNOWN_STARTTIME if self.starttime is None else self.starttime
        return f"{self.pid}{_MARKER_SEP}{_starttime}"

    @classmethod
    def parse_marker(cls, kind: JobKind, raw: str, log_fpath: Path) -> Optional[Job]:
        _pid, _, _starttime = raw.strip().partition(_MARKER_SEP)
        try:
            return cls(
                kind=kind,
                pid=int(_pid),
                starttime=int(_starttime) if _starttime else None,
                log_fpath=log_fpath,
            )
        except ValueError:
            logger.warning(f"invalid job marker for {kind}: {raw!r}, ignored")
            return None

    def is_alive(self) -> bool:
        return is_proc_alive(self.pid, self.starttime)


class JobSupervisor:
    """Launch and track detached jobs, one active job per job kind."""

    def __init__(
        self, workspace: Workspace, *, poll_interval: float = cfg.JOB_POLL_INTERVAL
    ) -> None:
        self._ws = workspace
        self._poll_interval = poll_interval
        # jobs started by this controller process
        self._procs: dict[JobKind, subprocess.Popen[bytes]] = {}

    def start(self, kind: JobKind, cmd: list[str]) -> Job:
        """Launch <cmd> detached as job <kind>.

        Tracking of any previous job of the same kind is replaced.
        """
        self._ws.ensure()
        log_fpath = self._ws.job_log(kind)
        proc = spawn_detached(cmd, log_fpath=log_fpath)

        job = Job(
            kind=kind,
            pid=proc.pid,
            starttime=get_proc_starttime(proc.pid),
            log_fpath=log_fpath,
        )
        write_str_to_file_atomic(self._ws.job_marker(kind), job.marker)
        self._procs[kind] = proc
        logger.info(f"job {kind} started: {job.pid=}, {cmd=}, log at {log_fpath}")
        return job

    def get_job(self, kind: JobKind) -> Optional[Job]:
        """Load the job <kind> recorded in the workspace, if any."""
        _raw = read_str_from_file(self._ws.job_marker(kind), _default="")
        if not _raw:
            return None
        return Job.parse_marker(kind, _raw, self._ws.job_log(kind))

    def is_running(self, kind: JobKind) -> bool:
        return bool((job := self.get_job(kind)) and job.is_alive())

    def query(self, kind: JobKind) -> JobState:
        if self.is_running(kind):
            return JobState.RUNNING
        if self._ws.job_artifact(kind) is not None:
            return JobState.DONE
        return JobState.ABSENT

    def read_log(self, kind: JobKind) -> str:
        return read_str_from_file(self._ws.job_log(kind), _default="")

    def wait(self, kind: JobKind) -> None:
        """Block until job <kind> exits.

        Raises:
            JobFailed with the captured log if the job failed.
        """
        if (proc := self._procs.pop(kind, None)) is not None:
            retcode = proc.wait()
            if retcode != 0:
                _log = self.read_log(kind)
                logger.error(f"job {kind} failed with {retcode=}")
                raise JobFailed(
                    f"job {kind} exited with {retcode=}", module=__name__, log=_log
                )
            logger.info(f"job {kind} finished")
            return

        # the job is started by a previous controller process, we cannot
        #   get its exit status, judge by the presence of its artifact instead.
        if (job := self.get_job(kind)) is None:
            raise JobFailed(f"no job {kind} is recorded", module=__name__)

        logger.info(f"wait for job {kind}({job.pid=}) started by other process ...")
        while job.is_alive():
            time.sleep(self._poll_interval)

        if self._ws.job_artifact(kind) is None:
            raise JobFailed(
                f"job {kind} exited without producing its output",
                module=__name__,
                log=self.read_log(kind),
            )
        logger.info(f"job {kind} finished")
