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
"""Download and Extract phase operations."""


from __future__ import annotations

import logging
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from fw_updater._job_worker import worker_cmd
from fw_updater._types import Compression, JobKind, PhaseStatus
from fw_updater.catalog import find_release, list_releases
from fw_updater.configs.cfg import cfg
from fw_updater.device import get_board
from fw_updater.errors import InsufficientSpace, NothingDownloaded
from fw_updater.job_supervisor import JobSupervisor
from fw_updater.phase import current_phase
from fw_updater.workspace import Workspace
from fw_updater_common import MiB, get_dir_size, get_file_size

logger = logging.getLogger(__name__)

# longest first
_IMAGE_SUFFIXES = (".img.xz", ".img.gz", ".xz", ".gz", ".img")


@dataclass(frozen=True)
class FirmwareSource:
    version: str
    compression: Compression
    url: Optional[str] = None
    local_fpath: Optional[Path] = None


def version_label_of(source: str) -> str:
    """The basename of <source> with the image suffixes stripped.

    For example, https://example.com/v1.2.img.xz -> v1.2.
    """
    _name = source.rstrip("/").rsplit("/", maxsplit=1)[-1]
    for _suffix in _IMAGE_SUFFIXES:
        if _name.endswith(_suffix) and len(_name) > len(_suffix):
            return _name[: -len(_suffix)]
    return _name


def compression_of(source: str) -> Compression:
    return Compression.XZ if source.endswith(".xz") else Compression.GZ


def resolve_source(source: str) -> FirmwareSource:
    """Resolve <source> as a local file, an URL, or a version in the catalog.

    Raises:
        NoSuchVersion if <source> is treated as a version and it is not in the catalog
            for this board.
    """
    if (_local := Path(source)).is_file():
        logger.info(f"use local firmware image {_local}")
        return FirmwareSource(
            version=version_label_of(_local.name),
            compression=compression_of(_local.name),
            local_fpath=_local,
        )

    if "://" in source:
        return FirmwareSource(
            version=version_label_of(source),
            compression=compression_of(source),
            url=source,
        )

    release = find_release(source, list_releases(get_board()))
    logger.info(f"found {release=}")
    return FirmwareSource(
        version=release.version,
        compression=compression_of(release.url),
        url=release.url,
    )


def _free_space_of(dpath: Path) -> int:
    # workspace might not exist yet, check its nearest existing parent
    for _candidate in (dpath, *dpath.parents):
        if _candidate.is_dir():
            return shutil.disk_usage(_candidate).free
    return 0


def check_free_space(workspace: Workspace, src: FirmwareSource) -> None:
    """Ensure there is enough space for the new workspace.

    The space taken by the current workspace is counted as available,
        as it will be destroyed before the download starts.

    Raises:
        InsufficientSpace.
    """
    required = cfg.MIN_FREE_SPACE_IN_MB * MiB
    if src.local_fpath is not None:
        required = max(required, get_file_size(src.local_fpath) or 0)

    available = _free_space_of(workspace.root) + get_dir_size(workspace.root)
    logger.info(f"free space check: {available=}, {required=}")
    if available < required:
        _err_msg = (
            f"insufficient space at {workspace.root}: "
            f"{available // MiB}MiB available, {required // MiB}MiB required"
        )
        logger.error(_err_msg)
        raise InsufficientSpace(_err_msg, module=__name__)


def download(
    source: str,
    *,
    workspace: Workspace,
    supervisor: JobSupervisor,
    wait: bool = True,
) -> PhaseStatus:
    """Download the firmware image of <source> into a fresh workspace.

    All the preflight checks are done before the previous workspace is destroyed.
    """
    src = resolve_source(source)
    check_free_space(workspace, src)

    workspace.reset()
    workspace.write_version(src.version)
    dst = workspace.compressed_image_path(src.compression)

    if src.local_fpath is not None:
        cmd = worker_cmd("copy", str(src.local_fpath.absolute()), str(dst))
    else:
        cmd = worker_cmd("fetch", str(src.url), str(dst))

    logger.info(f"download {src.version} to {dst}")
    supervisor.start(JobKind.DOWNLOAD, cmd)
    if wait:
        supervisor.wait(JobKind.DOWNLOAD)
    return current_phase(workspace, supervisor)


def extract(
    *,
    workspace: Workspace,
    supervisor: JobSupervisor,
    wait: bool = True,
) -> PhaseStatus:
    """Decompress the downloaded image into the raw firmware image.

    Raises:
        NothingDownloaded if there is no compressed image in the workspace.
    """
    if (compressed := workspace.compressed_image()) is None:
        raise NothingDownloaded(
            f"no compressed image found in {workspace.root}", module=__name__
        )

    workspace.clear_boot_ready()
    raw_image = workspace.raw_image
    raw_image.unlink(missing_ok=True)
    Workspace.remove_stale_partials(raw_image)

    compression = compression_of(compressed.name)
    logger.info(f"extract {compressed} to {raw_image}")
    supervisor.start(
        JobKind.DECOMPRESS,
        worker_cmd("decompress", str(compression), str(compressed), str(raw_image)),
    )
    if wait:
        supervisor.wait(JobKind.DECOMPRESS)
        # TODO: verify the raw image against a digest published in the catalog
        #   once the catalog rows carry one.
    return current_phase(workspace, supervisor)
