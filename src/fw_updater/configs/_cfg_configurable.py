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
"""Runtime configurable configs for fw-updater."""

from __future__ import annotations

import logging
from typing import Dict, Literal

from pydantic import BaseModel
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

ENV_PREFIX = "FWUPDATER_"
LOG_LEVEL_LITERAL = Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]


class _LoggingSettings(BaseModel):
    LOG_LEVEL_TABLE: Dict[str, LOG_LEVEL_LITERAL] = {
        "fw_updater": "INFO",
        "fw_updater_common": "INFO",
    }
    LOG_FORMAT: str = (
        "[%(asctime)s][%(levelname)s]-%(name)s:%(funcName)s:%(lineno)d,%(message)s"
    )


class _CatalogSettings(BaseModel):
    # an executable that prints the available releases,
    #   one <version>|<prerelease>|<board>|<url>|<date> row per line.
    CATALOG_HELPER: str = "/usr/lib/fw-updater/list-releases"
    CATALOG_REPO: str = ""
    CATALOG_TOKEN: str = ""
    CATALOG_TIMEOUT: int = 60  # seconds

    # if not set, the board name is read from <BOARD_FPATH>
    BOARD: str = ""
    ENABLE_PRERELEASE: bool = False


class _UpdateSettings(BaseModel):
    # free space required on the workspace filesystem before downloading
    MIN_FREE_SPACE_IN_MB: int = 2048  # MiB

    DOWNLOAD_CHUNK_SIZE: int = 1024 * 1024  # 1MiB
    DOWNLOAD_CONNECT_TIMEOUT: int = 30  # seconds
    DOWNLOAD_READ_TIMEOUT: int = 5 * 60  # seconds

    JOB_POLL_INTERVAL: float = 1  # seconds

    # how long to wait for the graceful reboot before escalating to sysrq
    REBOOT_GRACE_PERIOD: int = 60  # seconds


class ConfigurableSettings(_LoggingSettings, _CatalogSettings, _UpdateSettings):
    """fw-updater runtime configuration settings."""


def set_configs() -> ConfigurableSettings:
    try:

        class _SettingParser(ConfigurableSettings, BaseSettings):
            model_config = SettingsConfigDict(
                validate_default=True,
                env_prefix=ENV_PREFIX,
            )

        _parsed_setting = _SettingParser()
        return ConfigurableSettings.model_construct(**_parsed_setting.model_dump())
    except Exception as e:
        logger.error(f"failed to parse fw-updater configurable settings: {e!r}")
        logger.warning("use default settings ...")
        return ConfigurableSettings()
