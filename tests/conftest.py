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
import sys
from pathlib import Path

import pytest

from fw_updater.job_supervisor import JobSupervisor
from fw_updater.workspace import Workspace

logger = logging.getLogger(__name__)

TEST_DIR = Path(__file__).parent


@pytest.fixture
def workspace(tmp_path: Path) -> Workspace:
    _ws = Workspace(tmp_path / "fw-update")
    _ws.ensure()
    return _ws


@pytest.fixture
def supervisor(workspace: Workspace) -> JobSupervisor:
    return JobSupervisor(workspace, poll_interval=0.05)


@pytest.fixture
def py_cmd():
    """Build a command that runs python code <code> with the current interpreter."""

    def _cmd(code: str) -> list[str]:
        return [sys.executable, "-c", code]

    return _cmd
