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
"""One-shot upgrade: download, extract, flash boot and reboot."""


from __future__ import annotations

import logging
from typing import Callable

from typing_extensions import NoReturn

from fw_updater._types import PhaseStatus
from fw_updater.download import download, extract
from fw_updater.flash_boot import BootFlasher
from fw_updater.flash_reboot import flash_reboot
from fw_updater.job_supervisor import JobSupervisor
from fw_updater.workspace import Workspace

logger = logging.getLogger(__name__)


def upgrade(
    source: str,
    *,
    workspace: Workspace,
    supervisor: JobSupervisor,
    report: Callable[[PhaseStatus], object] = print,
    boot_flasher: BootFlasher | None = None,
    reboot: Callable[[Workspace], NoReturn] = flash_reboot,
) -> NoReturn:
    """Run all the phases in order, the first failure aborts the upgrade.

    No rollback is done on failure, the progress so far is left in the workspace,
        and the upgrade can be resumed by running the remaining phases one by one.
    """
    logger.info(f"upgrade to {source}")
    report(download(source, workspace=workspace, supervisor=supervisor))
    report(extract(workspace=workspace, supervisor=supervisor))

    boot_flasher = boot_flasher or BootFlasher(workspace, supervisor)
    report(boot_flasher.flash())

    reboot(workspace)
