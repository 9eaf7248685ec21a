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
import os
import threading
import time
from functools import partial
from http.server import SimpleHTTPRequestHandler, ThreadingHTTPServer
from pathlib import Path
from typing import Generator

import pytest
import pytest_mock

from fw_updater._types import Compression, JobKind, JobState, MiB, UpdatePhase
from fw_updater.configs.cfg import cfg_configurable
from fw_updater.download import (
    FirmwareSource,
    compression_of,
    download,
    extract,
    resolve_source,
    version_label_of,
)
from fw_updater.errors import (
    InsufficientSpace,
    JobFailed,
    NoSuchVersion,
    NothingDownloaded,
)
from fw_updater.job_supervisor import JobSupervisor
from fw_updater.workspace import Workspace

RAW_IMAGE = os.urandom(64 * 1024) * 4
BOARD = "rpi4"


@pytest.fixture(autouse=True)
def mock_cfg(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setattr(cfg_configurable, "MIN_FREE_SPACE_IN_MB", 1)
    monkeypatch.setattr(cfg_configurable, "BOARD", BOARD)


@pytest.fixture
def image_server(tmp_path: Path) -> Generator[str, None, None]:
    webroot = tmp_path / "webroot"
    webroot.mkdir()
    (webroot / "v1.0.img.gz").write_bytes(gzip.compress(RAW_IMAGE))
    (webroot / "v1.1.img.xz").write_bytes(lzma.compress(RAW_IMAGE))

    handler = partial(SimpleHTTPRequestHandler, directory=str(webroot))
    server = ThreadingHTTPServer(("127.0.0.1", 0), handler)
    _t = threading.Thread(target=server.serve_forever, daemon=True)
    _t.start()
    try:
        yield f"http://127.0.0.1:{server.server_address[1]}"
    finally:
        server.shutdown()
        server.server_close()


@pytest.mark.parametrize(
    "source, version, compression",
    (
        ("custom.img.xz", "custom", Compression.XZ),
        ("/tmp/custom.img.gz", "custom", Compression.GZ),
        ("https://example.com/fw/v1.2.xz", "v1.2", Compression.XZ),
        ("https://example.com/fw/v1.2.gz", "v1.2", Compression.GZ),
        ("https://example.com/fw/v1.2.img", "v1.2", Compression.GZ),
        ("https://example.com/fw/v1.2", "v1.2", Compression.GZ),
    ),
)
def test_version_label_and_compression(source, version, compression):
    assert version_label_of(source) == version
    assert compression_of(source) == compression


class TestResolveSource:
    def test_local_file(self, tmp_path: Path):
        _local = tmp_path / "custom.img.xz"
        _local.write_bytes(b"xz")
        assert resolve_source(str(_local)) == FirmwareSource(
            version="custom", compression=Compression.XZ, local_fpath=_local
        )

    def test_url(self):
        assert resolve_source("http://example.com/v1.0.img.gz") == FirmwareSource(
            version="v1.0",
            compression=Compression.GZ,
            url="http://example.com/v1.0.img.gz",
        )

    def test_catalog_version(self, mocker: pytest_mock.MockerFixture):
        mocker.patch(
            "fw_updater.catalog.fetch_catalog",
            return_value=f"v1.1|false|{BOARD}|http://example.com/v1.1.img.xz|2024-01-01",
        )
        assert resolve_source("v1.1") == FirmwareSource(
            version="v1.1",
            compression=Compression.XZ,
            url="http://example.com/v1.1.img.xz",
        )


class TestDownloadLocalFile:
    def test_custom_xz(
        self, tmp_path: Path, workspace: Workspace, supervisor: JobSupervisor
    ):
        _local = tmp_path / "custom.img.xz"
        _local.write_bytes(lzma.compress(RAW_IMAGE))

        status = download(str(_local), workspace=workspace, supervisor=supervisor)
        assert str(status) == "downloaded custom"
        assert workspace.read_version() == "custom"
        assert workspace.compressed_image_path(Compression.XZ).is_file()
        assert not workspace.compressed_image_path(Compression.GZ).exists()

        status = extract(workspace=workspace, supervisor=supervisor)
        assert str(status) == "extracted custom"
        assert workspace.raw_image.read_bytes() == RAW_IMAGE
        assert not Workspace.partials_of(workspace.raw_image)

    def test_previous_workspace_is_destroyed(
        self, tmp_path: Path, workspace: Workspace, supervisor: JobSupervisor
    ):
        workspace.write_version("old")
        workspace.raw_image.write_bytes(b"old raw")
        workspace.mark_boot_ready()

        _local = tmp_path / "new.img.gz"
        _local.write_bytes(gzip.compress(RAW_IMAGE))
        status = download(str(_local), workspace=workspace, supervisor=supervisor)
        assert str(status) == "downloaded new"
        assert not workspace.raw_image.exists()
        assert not workspace.is_boot_ready()


class TestDownloadRemote:
    def test_url(
        self, image_server: str, workspace: Workspace, supervisor: JobSupervisor
    ):
        status = download(
            f"{image_server}/v1.0.img.gz", workspace=workspace, supervisor=supervisor
        )
        assert str(status) == "downloaded v1.0"
        _gz = workspace.compressed_image_path(Compression.GZ)
        assert gzip.decompress(_gz.read_bytes()) == RAW_IMAGE

    def test_catalog_version(
        self,
        image_server: str,
        workspace: Workspace,
        supervisor: JobSupervisor,
        mocker: pytest_mock.MockerFixture,
    ):
        mocker.patch(
            "fw_updater.catalog.fetch_catalog",
            return_value=f"v1.1|false|{BOARD}|{image_server}/v1.1.img.xz|2024-01-01",
        )
        status = download("v1.1", workspace=workspace, supervisor=supervisor)
        assert str(status) == "downloaded v1.1"
        assert workspace.compressed_image_path(Compression.XZ).is_file()

        status = extract(workspace=workspace, supervisor=supervisor)
        assert str(status) == "extracted v1.1"
        assert workspace.raw_image.read_bytes() == RAW_IMAGE

    def test_not_found(
        self, image_server: str, workspace: Workspace, supervisor: JobSupervisor
    ):
        with pytest.raises(JobFailed) as exc_info:
            download(
                f"{image_server}/v9.9.img.gz",
                workspace=workspace,
                supervisor=supervisor,
            )
        assert "404" in exc_info.value.log
        assert workspace.compressed_image() is None
        assert not list(workspace.root.glob("*.part"))
        assert supervisor.query(JobKind.DOWNLOAD) == JobState.ABSENT

    def test_no_wait(
        self, image_server: str, workspace: Workspace, supervisor: JobSupervisor
    ):
        status = download(
            f"{image_server}/v1.0.img.gz",
            workspace=workspace,
            supervisor=supervisor,
            wait=False,
        )
        assert status.phase in (UpdatePhase.DOWNLOADING, UpdatePhase.DOWNLOADED)
        assert status.version == "v1.0"

        supervisor.wait(JobKind.DOWNLOAD)
        assert supervisor.query(JobKind.DOWNLOAD) == JobState.DONE


class TestPreflight:
    def test_no_such_version(
        self,
        workspace: Workspace,
        supervisor: JobSupervisor,
        mocker: pytest_mock.MockerFixture,
    ):
        mocker.patch(
            "fw_updater.catalog.fetch_catalog",
            return_value=(
                f"v2.2|false|{BOARD}|http://example.com/v2.2.img.xz|2024-01-01\n"
                "v2.3|false|cm4|http://example.com/v2.3.img.xz|2024-02-01\n"
            ),
        )
        workspace.write_version("v2.2")

        with pytest.raises(NoSuchVersion):
            download("v2.3", workspace=workspace, supervisor=supervisor)
        assert workspace.compressed_image() is None
        # nothing is changed
        assert workspace.read_version() == "v2.2"
        assert supervisor.get_job(JobKind.DOWNLOAD) is None

    def test_insufficient_space(
        self,
        tmp_path: Path,
        workspace: Workspace,
        supervisor: JobSupervisor,
        monkeypatch: pytest.MonkeyPatch,
    ):
        monkeypatch.setattr(cfg_configurable, "MIN_FREE_SPACE_IN_MB", 2**40)
        workspace.write_version("v2.2")

        _local = tmp_path / "custom.img.xz"
        _local.write_bytes(b"xz")
        with pytest.raises(InsufficientSpace):
            download(str(_local), workspace=workspace, supervisor=supervisor)
        assert workspace.read_version() == "v2.2"

    def test_extract_nothing_downloaded(
        self, workspace: Workspace, supervisor: JobSupervisor
    ):
        with pytest.raises(NothingDownloaded):
            extract(workspace=workspace, supervisor=supervisor)

    def test_extract_corrupted_image(
        self, workspace: Workspace, supervisor: JobSupervisor
    ):
        workspace.write_version("v1.0")
        workspace.compressed_image_path(Compression.GZ).write_bytes(b"not gzip")
        with pytest.raises(JobFailed):
            extract(workspace=workspace, supervisor=supervisor)
        assert not workspace.raw_image.exists()
        assert supervisor.query(JobKind.DECOMPRESS) == JobState.ABSENT


def test_extract_rerun_while_running(
    tmp_path: Path, workspace: Workspace, supervisor: JobSupervisor
):
    _raw = bytes(64 * MiB)
    _local = tmp_path / "big.img.gz"
    _local.write_bytes(gzip.compress(_raw, compresslevel=1))
    download(str(_local), workspace=workspace, supervisor=supervisor)

    # record the size of whatever is published as the raw image
    _published_sizes: list[int] = []
    _stop = threading.Event()

    def _sample():
        while not _stop.is_set():
            try:
                _published_sizes.append(workspace.raw_image.stat().st_size)
            except FileNotFoundError:
                pass
            time.sleep(0.002)

    _sampler = threading.Thread(target=_sample, daemon=True)
    _sampler.start()
    try:
        extract(workspace=workspace, supervisor=supervisor, wait=False)
        _first = supervisor.get_job(JobKind.DECOMPRESS)
        assert _first is not None

        status = extract(workspace=workspace, supervisor=supervisor)
        while _first.is_alive():
            time.sleep(0.05)
    finally:
        _stop.set()
        _sampler.join()

    assert str(status) == "extracted big"
    assert workspace.raw_image.stat().st_size == len(_raw)
    assert set(_published_sizes) <= {len(_raw)}
    assert not Workspace.partials_of(workspace.raw_image)
