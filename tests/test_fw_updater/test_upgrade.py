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

from unittest import mock

import pytest
import pytest_mock

from fw_updater._types import PhaseStatus, UpdatePhase
from fw_updater.errors import HookAborted, JobFailed, RebootFailed
from fw_updater.job_supervisor import JobSupervisor
from fw_updater.upgrade import upgrade
from fw_updater.workspace import Workspace

MODULE = "fw_updater.upgrade"
VERSION = "v2.0"


class TestUpgrade:
    @pytest.fixture(autouse=True)
    def setup_upgrade(self, mocker: pytest_mock.MockerFixture):
        self.tracker = mock.Mock()
        self.tracker.download.return_value = PhaseStatus(
            UpdatePhase.DOWNLOADED, VERSION
        )
        self.tracker.extract.return_value = PhaseStatus(UpdatePhase.EXTRACTED, VERSION)
        self.tracker.flasher.flash.return_value = PhaseStatus(
            UpdatePhase.BOOT_READY, VERSION
        )
        self.tracker.reboot.side_effect = RebootFailed("still up", module=__name__)
        mocker.patch(f"{MODULE}.download", self.tracker.download)
        mocker.patch(f"{MODULE}.extract", self.tracker.extract)

    def _upgrade(self, workspace: Workspace, supervisor: JobSupervisor):
        upgrade(
            VERSION,
            workspace=workspace,
            supervisor=supervisor,
            report=self.tracker.report,
            boot_flasher=self.tracker.flasher,
            reboot=self.tracker.reboot,
        )

    def test_phases_in_order(self, workspace: Workspace, supervisor: JobSupervisor):
        with pytest.raises(RebootFailed):
            self._upgrade(workspace, supervisor)

        assert [_call[0] for _call in self.tracker.mock_calls] == [
            "download",
            "report",
            "extract",
            "report",
            "flasher.flash",
            "report",
            "reboot",
        ]
        assert [str(_call.args[0]) for _call in self.tracker.report.call_args_list] == [
            f"downloaded {VERSION}",
            f"extracted {VERSION}",
            f"boot ready {VERSION}",
        ]
        self.tracker.reboot.assert_called_once_with(workspace)

    def test_stop_on_extract_failure(
        self, workspace: Workspace, supervisor: JobSupervisor
    ):
        self.tracker.extract.side_effect = JobFailed(
            "decompress failed", module=__name__, log="corrupted"
        )
        with pytest.raises(JobFailed):
            self._upgrade(workspace, supervisor)

        self.tracker.report.assert_called_once()
        self.tracker.flasher.flash.assert_not_called()
        self.tracker.reboot.assert_not_called()

    def test_stop_on_flash_failure(
        self, workspace: Workspace, supervisor: JobSupervisor
    ):
        self.tracker.flasher.flash.side_effect = HookAborted(
            "rejected", module=__name__
        )
        with pytest.raises(HookAborted):
            self._upgrade(workspace, supervisor)

        assert self.tracker.report.call_count == 2
        self.tracker.reboot.assert_not_called()
