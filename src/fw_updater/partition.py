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
"""Partition reallocation: make the live disk's partition match the firmware image's.

The live geometry is always read fresh before planning, as the disk might have
    been changed between calls. A plan is either NoOp, or Repartition which
    deletes and recreates the partition at the new location. A Repartition that
    would overlap the next partition on the disk is never returned.

NOTE: applying a Repartition plan is destructive and irreversible, it should only
    be done right before the corresponding flash write.
"""


from __future__ import annotations

import json
import logging
import os
import re
from dataclasses import dataclass
from subprocess import CalledProcessError
from typing import Any, Protocol, Union

from fw_updater._types import PartitionGeometry
from fw_updater.errors import PartitionOverlap, PartitionTableError
from fw_updater_common.common import subprocess_call, subprocess_check_output
from fw_updater_common._typing import StrOrPath

logger = logging.getLogger(__name__)

DEFAULT_SECTOR_SIZE = 512
_PARTITION_NUM_PA = re.compile(r"(\d+)$")


#
# ------ reallocation plan ------ #
#


@dataclass(frozen=True)
class NoOp:
    """Current geometry already matches the desired one."""


@dataclass(frozen=True)
class Repartition:
    start: int
    end: int

    @property
    def geometry(self) -> PartitionGeometry:
        return PartitionGeometry(start=self.start, end=self.end)


ReallocationPlan = Union[NoOp, Repartition]


def plan_reallocation(
    live: PartitionGeometry,
    desired: PartitionGeometry,
    neighbor: PartitionGeometry,
) -> ReallocationPlan:
    """Compute the reallocation needed to move <live> to <desired>.

    Args:
        live: the partition's current geometry on the disk.
        desired: the partition's geometry in the firmware image.
        neighbor: the geometry of the partition right after it on the disk.

    Raises:
        PartitionOverlap if the desired end reaches the neighbor's start.
    """
    if live.start == desired.start and live.end == desired.end:
        return NoOp()

    if desired.end >= neighbor.start:
        _err_msg = f"desired {desired} overlaps the next partition {neighbor}"
        logger.error(_err_msg)
        raise PartitionOverlap(_err_msg, module=__name__)
    return Repartition(start=desired.start, end=desired.end)


#
# ------ partition table access ------ #
#


class PartitionTable(Protocol):
    """Read/write primitives of a partition table."""

    def read_geometry(self, partition_id: int) -> PartitionGeometry: ...

    def recreate(self, partition_id: int, geometry: PartitionGeometry) -> None:
        """Delete partition <partition_id> and create it again at <geometry>."""

    def sync(self) -> None:
        """Make the changes reach the disk."""


class SfdiskPartitionTable:
    """PartitionTable backed by sfdisk.

    Works with both block devices and raw disk image files.
    """

    def __init__(self, target: StrOrPath, *, is_block_device: bool = True) -> None:
        self.target = str(target)
        self.is_block_device = is_block_device

    def __repr__(self) -> str:
        return f"<SfdiskPartitionTable of {self.target}>"

    def _dump(self) -> dict[str, Any]:
        """
        This is implemented by calling:
            sfdisk --json <target>
        """
        try:
            _raw = subprocess_check_output(
                ["sfdisk", "--json", self.target], raise_exception=True
            )
            return json.loads(_raw)["partitiontable"]
        except (CalledProcessError, ValueError, KeyError) as e:
            _err_msg = f"failed to read partition table of {self.target}: {e!r}"
            logger.error(_err_msg)
            raise PartitionTableError(_err_msg, module=__name__) from e

    def _find_partition(
        self, ptable: dict[str, Any], partition_id: int
    ) -> dict[str, Any]:
        for _part in ptable.get("partitions", []):
            _ma = _PARTITION_NUM_PA.search(_part.get("node", ""))
            if _ma and int(_ma.group(1)) == partition_id:
                return _part
        raise PartitionTableError(
            f"partition#{partition_id} not found in {self.target}", module=__name__
        )

    def read_geometry(self, partition_id: int) -> PartitionGeometry:
        ptable = self._dump()
        sector_size = int(ptable.get("sectorsize", DEFAULT_SECTOR_SIZE))
        _part = self._find_partition(ptable, partition_id)

        start = int(_part["start"]) * sector_size
        size = int(_part["size"]) * sector_size
        return PartitionGeometry(start=start, end=start + size - 1)

    def recreate(self, partition_id: int, geometry: PartitionGeometry) -> None:
        """
        This is implemented by calling:
            sfdisk --no-reread --no-tell-kernel --delete <target> <partition_id>
            echo "start=<start>, size=<size>, ..." | sfdisk --no-reread --no-tell-kernel -N <partition_id> <target>

        The partition type, bootable flag and GPT uuid/name of the partition are preserved.
        """
        ptable = self._dump()
        sector_size = int(ptable.get("sectorsize", DEFAULT_SECTOR_SIZE))
        _part = self._find_partition(ptable, partition_id)

        if geometry.start % sector_size or geometry.size % sector_size:
            raise PartitionTableError(
                f"{geometry} is not aligned to {sector_size=}", module=__name__
            )

        _fields = [
            f"start={geometry.start // sector_size}",
            f"size={geometry.size // sector_size}",
        ]
        if _ptype := _part.get("type"):
            _fields.append(f"type={_ptype}")
        if _uuid := _part.get("uuid"):
            _fields.append(f"uuid={_uuid}")
        if _name := _part.get("name"):
            _fields.append(f'name="{_name}"')
        if _part.get("bootable"):
            _fields.append("bootable")
        _script = ", ".join(_fields)

        logger.warning(
            f"recreate partition#{partition_id} on {self.target}: {_script}"
        )
        base_cmd = ["sfdisk", "--no-reread", "--no-tell-kernel"]
        try:
            subprocess_call(
                [*base_cmd, "--delete", self.target, str(partition_id)],
                raise_exception=True,
            )
            subprocess_call(
                [*base_cmd, "-N", str(partition_id), self.target],
                input=f"{_script}\n".encode(),
                raise_exception=True,
            )
        except CalledProcessError as e:
            _err_msg = (
                f"failed to recreate partition#{partition_id} on {self.target}: {e!r}, "
                f"{e.stderr.decode() if e.stderr else ''}"
            )
            logger.error(_err_msg)
            raise PartitionTableError(_err_msg, module=__name__) from e

    def sync(self) -> None:
        """
        This is implemented by calling:
            sync
            partx -u <target>
        """
        os.sync()
        if not self.is_block_device:
            return

        # NOTE: kernel might refuse to update the in-use partitions, the
        #       new table is already on the disk and will be picked up on next boot.
        try:
            subprocess_call(["partx", "-u", self.target], raise_exception=True)
        except CalledProcessError as e:
            logger.warning(
                f"failed to inform kernel of the new partition table of {self.target}: {e!r}"
            )


def apply_plan(
    table: PartitionTable, partition_id: int, plan: ReallocationPlan
) -> None:
    if isinstance(plan, NoOp):
        logger.info(f"partition#{partition_id} of {table} matches, no reallocation")
        return

    logger.warning(f"reallocate partition#{partition_id} of {table} to {plan.geometry}")
    table.recreate(partition_id, plan.geometry)
    table.sync()


def reallocate(
    table: PartitionTable,
    partition_id: int,
    desired: PartitionGeometry,
    *,
    neighbor_id: int,
) -> ReallocationPlan:
    """Plan against the freshly read live geometry and apply the plan.

    Raises:
        PartitionOverlap with the partition table untouched.
    """
    live = table.read_geometry(partition_id)
    neighbor = table.read_geometry(neighbor_id)
    logger.info(
        f"partition#{partition_id}: {live=}, {desired=}, next partition: {neighbor}"
    )

    plan = plan_reallocation(live, desired, neighbor)
    apply_plan(table, partition_id, plan)
    return plan
