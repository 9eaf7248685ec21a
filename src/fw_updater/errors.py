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
"""fw-updater error definitions."""


from __future__ import annotations

import traceback
from enum import Enum, unique
from typing import ClassVar


@unique
class ErrorCode(int, Enum):
    E_UNSPECIFIC = 0

    #
    # ------ preflight errors, raised before any mutation ------
    #
    E_PREFLIGHT = 100
    E_NO_SUCH_VERSION = 101
    E_INSUFFICIENT_SPACE = 102
    E_BOOT_DEVICE_NOT_FOUND = 103
    E_BOARD_UNKNOWN = 104
    E_NOTHING_DOWNLOADED = 105
    E_NOTHING_EXTRACTED = 106
    E_WORKSPACE_BUSY = 107
    E_CATALOG_UNAVAILABLE = 108
    E_INVALID_IMAGE = 109

    #
    # ------ supervised job errors ------
    #
    E_JOB_FAILED = 200

    #
    # ------ partition geometry errors ------
    #
    E_PARTITION_OVERLAP = 300
    E_PARTITION_TABLE = 301

    #
    # ------ hook errors ------
    #
    E_HOOK_ABORTED = 400
    E_HOOK_FAILED = 401

    #
    # ------ flashing/reboot errors ------
    #
    E_FLASH_INTERRUPTED = 500
    E_REBOOT_FAILED = 501
    E_MOUNT_FAILED = 502

    def to_errcode_str(self) -> str:
        return f"{self.value:0>3}"


class FWUpdateError(Exception):
    """Errors that happen during fw-updater code executing.

    Every error here is terminal for the current invocation, no retry
        is done in-process.
    """

    ERROR_PREFIX: ClassVar[str] = "E"

    failure_errcode: ErrorCode = ErrorCode.E_UNSPECIFIC
    failure_description: str = "no description available for this error"

    def __init__(self, *args: object, module: str) -> None:
        self.module = module
        super().__init__(*args)

    @property
    def failure_errcode_str(self) -> str:
        return f"{self.ERROR_PREFIX}{self.failure_errcode.to_errcode_str()}"

    def get_failure_traceback(self, *, splitter="\n") -> str:
        return splitter.join(
            traceback.format_exception(type(self), self, self.__traceback__)
        )

    def get_failure_reason(self) -> str:
        """Return the failure_reason str."""
        return f"{self.failure_errcode_str}: {self.failure_description}: {self}"

    def get_error_report(self, title: str = "") -> str:
        """The detailed failure report for debug use."""
        return (
            f"\n{title}\n"
            f"@module: {self.module}"
            "\n------ failure_reason ------\n"
            f"{self.get_failure_reason()}"
            "\n------ end of failure_reason ------\n"
            "\n------ exception traceback ------\n"
            f"{self.get_failure_traceback()}"
            "\n------ end of exception traceback ------\n"
        )


#
# ------ preflight errors ------
#


class PreflightError(FWUpdateError):
    failure_errcode: ErrorCode = ErrorCode.E_PREFLIGHT
    failure_description: str = "preflight check failed, nothing has been changed"


class NoSuchVersion(PreflightError):
    failure_errcode: ErrorCode = ErrorCode.E_NO_SUCH_VERSION
    failure_description: str = "no such version"


class InsufficientSpace(PreflightError):
    failure_errcode: ErrorCode = ErrorCode.E_INSUFFICIENT_SPACE
    failure_description: str = "insufficient free space for the update workspace"


class BootDeviceNotFound(PreflightError):
    failure_errcode: ErrorCode = ErrorCode.E_BOOT_DEVICE_NOT_FOUND
    failure_description: str = "failed to identify the boot device"


class BoardUnknown(PreflightError):
    failure_errcode: ErrorCode = ErrorCode.E_BOARD_UNKNOWN
    failure_description: str = "failed to identify the board of this device"


class NothingDownloaded(PreflightError):
    failure_errcode: ErrorCode = ErrorCode.E_NOTHING_DOWNLOADED
    failure_description: str = "nothing downloaded"


class NothingExtracted(PreflightError):
    failure_errcode: ErrorCode = ErrorCode.E_NOTHING_EXTRACTED
    failure_description: str = "nothing extracted"


class WorkspaceBusy(PreflightError):
    failure_errcode: ErrorCode = ErrorCode.E_WORKSPACE_BUSY
    failure_description: str = "another fw-updater instance is operating on the workspace"


class CatalogUnavailable(PreflightError):
    failure_errcode: ErrorCode = ErrorCode.E_CATALOG_UNAVAILABLE
    failure_description: str = "failed to retrieve the version catalog"


class InvalidFirmwareImage(PreflightError):
    failure_errcode: ErrorCode = ErrorCode.E_INVALID_IMAGE
    failure_description: str = "the firmware image doesn't have the expected partitions"


#
# ------ supervised job errors ------
#


class JobFailed(FWUpdateError):
    """A supervised job exits with non-zero return code.

    The captured log of the job is kept as <log> and surfaced verbatim.
    """

    failure_errcode: ErrorCode = ErrorCode.E_JOB_FAILED
    failure_description: str = "supervised job failed"

    def __init__(self, *args: object, module: str, log: str = "") -> None:
        self.log = log
        super().__init__(*args, module=module)


#
# ------ partition geometry errors ------
#


class PartitionOverlap(FWUpdateError):
    failure_errcode: ErrorCode = ErrorCode.E_PARTITION_OVERLAP
    failure_description: str = (
        "reallocation would overlap the next partition, partition table is untouched"
    )


class PartitionTableError(FWUpdateError):
    failure_errcode: ErrorCode = ErrorCode.E_PARTITION_TABLE
    failure_description: str = "failed to read or write the partition table"


#
# ------ hook errors ------
#


class HookAborted(FWUpdateError):
    failure_errcode: ErrorCode = ErrorCode.E_HOOK_ABORTED
    failure_description: str = "pre-upgrade hook rejected the update"


class HookFailed(FWUpdateError):
    failure_errcode: ErrorCode = ErrorCode.E_HOOK_FAILED
    failure_description: str = "hook script failed"


#
# ------ flashing/reboot errors ------
#


class FlashInterrupted(FWUpdateError):
    failure_errcode: ErrorCode = ErrorCode.E_FLASH_INTERRUPTED
    failure_description: str = "flashing interrupted by signal"


class RebootFailed(FWUpdateError):
    failure_errcode: ErrorCode = ErrorCode.E_REBOOT_FAILED
    failure_description: str = "device didn't go down after reboot was requested"


class MountFailed(FWUpdateError):
    failure_errcode: ErrorCode = ErrorCode.E_MOUNT_FAILED
    failure_description: str = "failed to mount or remount a partition"
