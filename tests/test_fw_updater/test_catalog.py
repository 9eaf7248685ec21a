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

import json
from pathlib import Path

import pytest

from fw_updater.catalog import (
    Release,
    dump_releases_json,
    fetch_catalog,
    filter_releases,
    find_release,
    list_releases,
    parse_catalog,
)
from fw_updater.errors import CatalogUnavailable, NoSuchVersion

RAW_CATALOG = """\
v2.2|false|rpi4|https://example.com/rpi4/v2.2.img.xz|2024-01-10
v2.3-rc1|true|rpi4|https://example.com/rpi4/v2.3-rc1.img.xz|2024-02-01

v2.3|false|cm4|https://example.com/cm4/v2.3.img.gz|2024-02-20
broken line
v2.1|FALSE|rpi4|https://example.com/rpi4/v2.1.img.gz|2023-11-30
"""


def test_parse_catalog():
    releases = parse_catalog(RAW_CATALOG)
    assert [_r.version for _r in releases] == ["v2.2", "v2.3-rc1", "v2.3", "v2.1"]
    assert releases[0] == Release(
        version="v2.2",
        url="https://example.com/rpi4/v2.2.img.xz",
        board="rpi4",
        prerelease=False,
        date="2024-01-10",
    )
    assert releases[1].prerelease
    assert not releases[3].prerelease


@pytest.mark.parametrize(
    "board, include_prerelease, expected",
    (
        ("rpi4", False, ["v2.2", "v2.1"]),
        ("rpi4", True, ["v2.2", "v2.3-rc1", "v2.1"]),
        ("cm4", False, ["v2.3"]),
        ("unknown", True, []),
    ),
)
def test_filter_releases(board: str, include_prerelease: bool, expected: list[str]):
    res = filter_releases(
        parse_catalog(RAW_CATALOG), board=board, include_prerelease=include_prerelease
    )
    assert [_r.version for _r in res] == expected


def test_find_release():
    releases = list_releases("rpi4", include_prerelease=False, raw_catalog=RAW_CATALOG)
    assert find_release("v2.2", releases).url == "https://example.com/rpi4/v2.2.img.xz"

    # exists, but for another board
    with pytest.raises(NoSuchVersion):
        find_release("v2.3", releases)
    # prerelease is filtered out
    with pytest.raises(NoSuchVersion):
        find_release("v2.3-rc1", releases)


def test_dump_releases_json():
    releases = list_releases("cm4", include_prerelease=False, raw_catalog=RAW_CATALOG)
    assert json.loads(dump_releases_json(releases)) == [
        {
            "version": "v2.3",
            "url": "https://example.com/cm4/v2.3.img.gz",
            "board": "cm4",
            "prerelease": False,
            "date": "2024-02-20",
        }
    ]
    assert json.loads(dump_releases_json([])) == []


class TestFetchCatalog:
    @pytest.fixture
    def helper(self, tmp_path: Path) -> Path:
        _helper = tmp_path / "list-releases"
        _helper.write_text(
            "#!/bin/sh\n"
            'echo "v1|false|${RELEASES_REPO}|https://example.com/v1.img.gz|${RELEASES_TOKEN:-none}"\n'
        )
        _helper.chmod(0o755)
        return _helper

    def test_envs_passed_to_helper(self, helper: Path):
        _raw = fetch_catalog(str(helper), repo="rpi4", token="secret")
        (release,) = parse_catalog(_raw)
        assert release.board == "rpi4"
        assert release.date == "secret"

    def test_no_token(self, helper: Path, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.delenv("RELEASES_TOKEN", raising=False)
        _raw = fetch_catalog(str(helper), repo="rpi4", token="")
        assert parse_catalog(_raw)[0].date == "none"

    def test_helper_failed(self, tmp_path: Path):
        _helper = tmp_path / "list-releases"
        _helper.write_text("#!/bin/sh\necho 'unauthorized' >&2\nexit 1\n")
        _helper.chmod(0o755)
        with pytest.raises(CatalogUnavailable):
            fetch_catalog(str(_helper), repo="rpi4", token="")

    def test_helper_not_found(self, tmp_path: Path):
        with pytest.raises(CatalogUnavailable):
            fetch_catalog(str(tmp_path / "not_existed"), repo="rpi4", token="")
