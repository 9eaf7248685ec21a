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
"""Common shared utils, only used by fw_updater package."""


from __future__ import annotations

import contextlib
import logging
from subprocess import CalledProcessError
from typing import Generator

from fw_updater.errors import MountFailed

logger = logging.getLogger(__name__)


@contextlib.contextmanager
def raise_mount_failed(action: str, *, module: str) -> Generator[None, None, None]:
    """Re-raise the CalledProcessError of the mount helpers as MountFailed.

    The stderr of the failed command is kept in the error message.
    """
    try:
        yield
    except CalledProcessError as e:
        _err_msg = (
            f"failed to {action}(retcode={e.returncode}): "
            f"{e.stderr.decode().strip() if e.stderr else ''}"
        )
        logger.error(_err_msg)
        raise MountFailed(_err_msg, module=module) from e
