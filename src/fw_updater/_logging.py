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
"""Configure the logging for fw-updater."""


from __future__ import annotations

import logging

from fw_updater.configs.cfg import cfg


def configure_logging() -> None:
    """Configure logging for fw-updater.

    Logs go to stderr, stdout is reserved for the command output.
    """
    # NOTE: for the root logger, set to CRITICAL to filter away logs from other
    #       external modules unless reached CRITICAL level.
    logging.basicConfig(level=logging.CRITICAL, format=cfg.LOG_FORMAT, force=True)

    for logger_name, loglevel in cfg.LOG_LEVEL_TABLE.items():
        _logger = logging.getLogger(logger_name)
        _logger.setLevel(loglevel)
