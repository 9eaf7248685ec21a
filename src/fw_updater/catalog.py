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
"""Version catalog of the available firmware releases.

The catalog is retrieved by an external helper, which prints one release per line:
    <version>|<prerelease(true/false)>|<board>|<url>|<date>
"""


from __future__ import annotations

import logging
from subprocess import CalledProcessError, TimeoutExpired
from typing import List, Optional

from pydantic import BaseModel, TypeAdapter

from fw_updater.configs.cfg import cfg
from fw_updater.errors import CatalogUnavailable, NoSuchVersion
from fw_updater_common.common import subprocess_check_output

logger = logging.getLogger(__name__)

_FIELD_SEP = "|"
_FIELDS_NUM = 5


class Release(BaseModel):
    version: str
    url: str
    board: str
    prerelease: bool = False
    date: str = ""


ReleaseList = TypeAdapter(List[Release])


def parse_catalog(raw: str) -> list[Release]:
    """Parse the output of the catalog helper, malformed lines are skipped."""
    res: list[Release] = []
    for _line in raw.splitlines():
        if not (_line := _line.strip()):
            continue

        _fields = _line.split(_FIELD_SEP)
        if len(_fields) != _FIELDS_NUM:
            logger.warning(f"skip malformed catalog entry: {_line!r}")
            continue

        version, prerelease, board, url, date = (_f.strip() for _f in _fields)
        res.append(
            Release(
                version=version,
                url=url,
                board=board,
                prerelease=prerelease.lower() == "true",
                date=date,
            )
        )
    return res


def filter_releases(
    releases: list[Release], *, board: str, include_prerelease: bool
) -> list[Release]:
    return [
        _release
        for _release in releases
        if _release.board == board and (include_prerelease or not _release.prerelease)
    ]


def fetch_catalog(
    helper: str = cfg.CATALOG_HELPER,
    *,
    repo: str = cfg.CATALOG_REPO,
    token: str = cfg.CATALOG_TOKEN,
) -> str:
    """Run the catalog helper and return its raw output.

    Raises:
        CatalogUnavailable if the helper failed.
    """
    _env = {cfg.CATALOG_REPO_ENV: repo}
    if token:
        _env[cfg.CATALOG_TOKEN_ENV] = token

    try:
        return subprocess_check_output(
            [helper], raise_exception=True, env=_env, timeout=cfg.CATALOG_TIMEOUT
        )
    except (CalledProcessError, TimeoutExpired, OSError) as e:
        _err_msg = f"catalog helper {helper} failed: {e!r}"
        logger.error(_err_msg)
        raise CatalogUnavailable(_err_msg, module=__name__) from e


def list_releases(
    board: str,
    *,
    include_prerelease: bool = cfg.ENABLE_PRERELEASE,
    raw_catalog: Optional[str] = None,
) -> list[Release]:
    if raw_catalog is None:
        raw_catalog = fetch_catalog()
    return filter_releases(
        parse_catalog(raw_catalog),
        board=board,
        include_prerelease=include_prerelease,
    )


def find_release(version: str, releases: list[Release]) -> Release:
    """
    Raises:
        NoSuchVersion if <version> is not in <releases>.
    """
    for _release in releases:
        if _release.version == version:
            return _release
    raise NoSuchVersion(f"no such version: {version}", module=__name__)


def dump_releases_json(releases: list[Release]) -> str:
    return ReleaseList.dump_json(releases).decode()
