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

import gzip
import lzma
import sys
from pathlib import Path

import pytest

from fw_updater import _job_worker
from fw_updater._types import Compression
from fw_updater.workspace import Workspace

DATA = b"firmware" * 4096


@pytest.mark.parametrize(
    "compression, compress",
    ((Compression.GZ, gzip.compress), (Compression.XZ, lzma.compress)),
)
def test_decompress(tmp_path: Path, compression: Compression, compress):
    _src = tmp_path / f"firmware.img.{compression}"
    _src.write_bytes(compress(DATA))
    _dst = tmp_path / "firmware.img"

    _job_worker.main(["decompress", str(compression), str(_src), str(_dst)])
    assert _dst.read_bytes() == DATA
    assert not Workspace.partial_of(_dst).exists()


def test_decompress_mismatched_compression(tmp_path: Path):
    _src = tmp_path / "firmware.img.xz"
    _src.write_bytes(gzip.compress(DATA))
    _dst = tmp_path / "firmware.img"

    with pytest.raises(SystemExit) as exc_info:
        _job_worker.main(["decompress", "xz", str(_src), str(_dst)])
    assert exc_info.value.code == 1
    # nothing is published on failure
    assert not _dst.exists()
    assert not Workspace.partial_of(_dst).exists()


def test_copy(tmp_path: Path):
    _src = tmp_path / "custom.img.xz"
    _src.write_bytes(DATA)
    _dst = tmp_path / "firmware.img.xz"

    _job_worker.main(["copy", str(_src), str(_dst)])
    assert _dst.read_bytes() == DATA


def test_copy_missing_source(tmp_path: Path):
    _dst = tmp_path / "firmware.img.xz"
    with pytest.raises(SystemExit):
        _job_worker.main(["copy", str(tmp_path / "not_existed"), str(_dst)])
    assert not _dst.exists()


def test_worker_cmd():
    assert _job_worker.worker_cmd("copy", "a", "b") == [
        sys.executable,
        "-m",
        "fw_updater._job_worker",
        "copy",
        "a",
        "b",
    ]


def test_overlapping_workers_publish_own_output(tmp_path: Path):
    _dst = tmp_path / "firmware.img"
    _first_ctx = _job_worker._publish_atomic(_dst, owner=1001)
    _rerun_ctx = _job_worker._publish_atomic(_dst, owner=1002)
    _first, _rerun = _first_ctx.__enter__(), _rerun_ctx.__enter__()

    _first.write(DATA)
    _rerun.write(DATA[:100])
    _first_ctx.__exit__(None, None, None)
    # the rerun's unfinished output is not published
    assert _dst.read_bytes() == DATA
    assert Workspace.partials_of(_dst) == [Workspace.partial_of(_dst, 1002)]

    _rerun.write(DATA[100:])
    _rerun_ctx.__exit__(None, None, None)
    assert _dst.read_bytes() == DATA
    assert not Workspace.partials_of(_dst)
