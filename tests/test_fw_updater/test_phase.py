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

import itertools

import pytest

from fw_updater._types import (
    Compression,
    JobKind,
    JobState,
    JobStatus,
    PhaseStatus,
    UpdatePhase,
    WorkspaceSnapshot,
)
from fw_updater.job_supervisor import JobSupervisor
from fw_updater.phase import current_phase, derive_phase
from fw_updater.workspace import Workspace

VERSION = "v1.0"


def _expected(snapshot: WorkspaceSnapshot, jobs: JobStatus) -> UpdatePhase:
    for _state, _running, _done in (
        (jobs.boot_write, UpdatePhase.FLASHING_BOOT, UpdatePhase.BOOT_READY),
        (jobs.decompress, UpdatePhase.EXTRACTING, UpdatePhase.EXTRACTED),
        (jobs.download, UpdatePhase.DOWNLOADING, UpdatePhase.DOWNLOADED),
    ):
        if _state == JobState.RUNNING:
            return _running
        if _state == JobState.DONE:
            return _done
    if snapshot.compressed_image:
        return UpdatePhase.DOWNLOADED
    return UpdatePhase.IDLE


@pytest.mark.parametrize(
    "download, decompress, boot_write, compressed_image",
    itertools.product(JobState, JobState, JobState, (True, False)),
)
def test_precedence_is_total(download, decompress, boot_write, compressed_image):
    snapshot = WorkspaceSnapshot(version=VERSION, compressed_image=compressed_image)
    jobs = JobStatus(download=download, decompress=decompress, boot_write=boot_write)

    res = derive_phase(snapshot, jobs)
    assert res.phase == _expected(snapshot, jobs)
    if res.phase == UpdatePhase.IDLE:
        assert str(res) == "idle"
    else:
        assert str(res) == f"{res.phase} {VERSION}"


@pytest.mark.parametrize(
    "jobs, expected",
    (
        (JobStatus(), "idle"),
        (JobStatus(download=JobState.RUNNING), "downloading v1.0"),
        (JobStatus(download=JobState.DONE), "downloaded v1.0"),
        (
            JobStatus(download=JobState.DONE, decompress=JobState.RUNNING),
            "extracting v1.0",
        ),
        (
            JobStatus(download=JobState.DONE, decompress=JobState.DONE),
            "extracted v1.0",
        ),
        (
            JobStatus(
                download=JobState.DONE,
                decompress=JobState.DONE,
                boot_write=JobState.RUNNING,
            ),
            "flashing boot v1.0",
        ),
        (
            JobStatus(
                download=JobState.DONE,
                decompress=JobState.DONE,
                boot_write=JobState.DONE,
            ),
            "boot ready v1.0",
        ),
    ),
)
def test_status_vocabulary(jobs: JobStatus, expected: str):
    assert str(derive_phase(WorkspaceSnapshot(version=VERSION), jobs)) == expected


def test_idle_after_reset(workspace: Workspace, supervisor: JobSupervisor):
    workspace.write_version(VERSION)
    workspace.compressed_image_path(Compression.XZ).write_bytes(b"xz")
    workspace.raw_image.write_bytes(b"raw")
    workspace.reset()

    assert str(current_phase(workspace, supervisor)) == "idle"


def test_current_phase_from_workspace(workspace: Workspace, supervisor: JobSupervisor):
    workspace.write_version(VERSION)
    workspace.compressed_image_path(Compression.XZ).write_bytes(b"xz")
    assert current_phase(workspace, supervisor) == PhaseStatus(
        UpdatePhase.DOWNLOADED, VERSION
    )

    workspace.raw_image.write_bytes(b"raw")
    assert str(current_phase(workspace, supervisor)) == "extracted v1.0"

    workspace.mark_boot_ready()
    assert str(current_phase(workspace, supervisor)) == "boot ready v1.0"
    assert supervisor.query(JobKind.BOOT_WRITE) == JobState.DONE
