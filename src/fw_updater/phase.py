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
"""Derive the current update phase from the workspace and the jobs.

The phase is never stored. It is re-derived on every query, so it is safe to
    query at any point, including right after the controller restarts.
"""


from __future__ import annotations

from fw_updater._types import (
    JobKind,
    JobState,
    JobStatus,
    PhaseStatus,
    UpdatePhase,
    WorkspaceSnapshot,
)
from fw_updater.job_supervisor import JobSupervisor
from fw_updater.workspace import Workspace


def derive_phase(snapshot: WorkspaceSnapshot, jobs: JobStatus) -> PhaseStatus:
    """Evaluate the phase by precedence, first match wins.

    A later phase always dominates an earlier one:
        1. boot write: running -> flashing boot, done -> boot ready.
        2. decompress: running -> extracting, done -> extracted.
        3. download: running -> downloading, artifact presented -> downloaded.
        4. otherwise idle.
    """
    if jobs.boot_write == JobState.RUNNING:
        phase = UpdatePhase.FLASHING_BOOT
    elif jobs.boot_write == JobState.DONE:
        phase = UpdatePhase.BOOT_READY
    elif jobs.decompress == JobState.RUNNING:
        phase = UpdatePhase.EXTRACTING
    elif jobs.decompress == JobState.DONE:
        phase = UpdatePhase.EXTRACTED
    elif jobs.download == JobState.RUNNING:
        phase = UpdatePhase.DOWNLOADING
    elif jobs.download == JobState.DONE or snapshot.compressed_image:
        phase = UpdatePhase.DOWNLOADED
    else:
        return PhaseStatus(UpdatePhase.IDLE)
    return PhaseStatus(phase, snapshot.version)


def current_phase(workspace: Workspace, supervisor: JobSupervisor) -> PhaseStatus:
    jobs = JobStatus(
        download=supervisor.query(JobKind.DOWNLOAD),
        decompress=supervisor.query(JobKind.DECOMPRESS),
        boot_write=supervisor.query(JobKind.BOOT_WRITE),
    )
    return derive_phase(workspace.snapshot(), jobs)
