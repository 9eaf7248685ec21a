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
"""Common shared libs for fw-updater."""


from __future__ import annotations

from math import ceil
from pathlib import Path
from typing import Optional

from typing_extensions import Literal

_MultiUnits = Literal["GiB", "MiB", "KiB", "Bytes"]
# fmt: off
_multiplier: dict[_MultiUnits, int] = {
    "GiB": 1024 ** 3, "MiB": 1024 ** 2, "KiB": 1024 ** 1,
    "Bytes": 1,
}
# fmt: on

MiB = _multiplier["MiB"]


def get_file_size(fpath: str | Path, units: _MultiUnits = "Bytes") -> Optional[int]:
    """Helper for get file size with <units>."""
    fpath = Path(fpath)
    if fpath.is_file():
        return ceil(fpath.stat().st_size / _multiplier[units])


def get_dir_size(dpath: str | Path) -> int:
    """Sum up the size of all regular files under <dpath>, in bytes.

    Symlinks are not followed. Return 0 if <dpath> doesn't exist.
    """
    dpath = Path(dpath)
    if not dpath.is_dir():
        return 0
    return sum(
        _f.stat().st_size
        for _f in dpath.rglob("*")
        if _f.is_file() and not _f.is_symlink()
    )
