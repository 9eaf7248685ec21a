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
"""fw-updater internal used types."""


from __future__ import annotations

from dataclasses import dataclass

from fw_updater_common._typing import StrEnum


class JobKind(StrEnum):
    DOWNLOAD = "download"
    DECOMPRESS = "decompress"
    BOOT_WRITE = "boot_write"


class JobState(StrEnum):
    RUNNING = "running"
    DONE = "done"
    ABSENT = "absent"


class UpdatePhase(StrEnum):
    IDLE = "idle"
    DOWNLOADING = "downloading"
    DOWNLOADED = "downloaded"
    EXTRACTING = "extracting"
    EXTRACTED = "extracted"
    FLASHING_BOOT = "flashing boot"
    BOOT_READY = "boot ready"


class Compression(StrEnum):
    GZ = "gz"
    XZ = "xz"


@dataclass(frozen=True)
class PhaseStatus:
    phase: UpdatePhase
    version: str = ""

    def __str__(self) -> str:
        if self.phase == UpdatePhase.IDLE:
            return str(self.phase)
        return f"{self.phase} {self.version}"


@dataclass(frozen=True)
class WorkspaceSnapshot:
    """What the workspace holds at the time of taking the snapshot."""

    version: str = ""
    compressed_image: bool = False
    raw_image: bool = False
    boot_ready: bool = False


@dataclass(frozen=True)
class JobStatus:
    download: JobState = JobState.ABSENT
    decompress: JobState = JobState.ABSENT
    boot_write: JobState = JobState.ABSENT


#
# ------ partition geometry ------ #
#

MiB = 1024**2


@dataclass(frozen=True)
class PartitionGeometry:
    """Geometry of one partition, in bytes.

    <end> is inclusive, the same as how partition tools report it.
    """

    start: int
    end: int

    @property
    def size(self) -> int:
        return self.end - self.start + 1

    @property
    def start_mb(self) -> int:
        return self.start // MiB

    @property
    def size_mb(self) -> int:
        return self.size // MiB

    @classmethod
    def from_mb(cls, start_mb: int, size_mb: int) -> PartitionGeometry:
        start = start_mb * MiB
        return cls(start=start, end=start + size_mb * MiB - 1)

    def __str__(self) -> str:
        return f"[{self.start}, {self.end}]({self.size} bytes)"
