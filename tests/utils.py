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

from fw_updater._types import MiB, PartitionGeometry


def geometry_mb(start_mb: int, size_mb: int) -> PartitionGeometry:
    return PartitionGeometry.from_mb(start_mb, size_mb)


class FakePartitionTable:
    """In-memory partition table, records every mutation."""

    def __init__(self, partitions: dict[int, PartitionGeometry]) -> None:
        self.partitions = dict(partitions)
        self.recreated: list[tuple[int, PartitionGeometry]] = []
        self.synced = 0

    def __repr__(self) -> str:
        return "<FakePartitionTable>"

    def read_geometry(self, partition_id: int) -> PartitionGeometry:
        return self.partitions[partition_id]

    def recreate(self, partition_id: int, geometry: PartitionGeometry) -> None:
        self.recreated.append((partition_id, geometry))
        self.partitions[partition_id] = geometry

    def sync(self) -> None:
        self.synced += 1


# a typical device: 256MiB boot, 4GiB root, data till the end
DEVICE_LAYOUT = {
    1: geometry_mb(4, 256),
    2: geometry_mb(260, 4096),
    3: geometry_mb(4356, 8192),
}

__all__ = ["MiB", "geometry_mb", "FakePartitionTable", "DEVICE_LAYOUT"]
