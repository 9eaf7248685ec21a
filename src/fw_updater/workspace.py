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
"""The on-disk workspace holding the state of the single in-flight update.

Layout of the workspace directory:
    version             the version label of the firmware being installed
    firmware.img.gz     compressed firmware image, gz-tagged
    firmware.img.xz     compressed firmware image, xz-tagged (exclusive with the above)
    firmware.img        decompressed raw firmware image
    root_geometry       "<start_mb> <size_mb>" of the image's root partition
    boot_ready          present if boot partition flashing succeeded
    boot.bak/           snapshot of /boot taken right before boot flashing
    <job_kind>.log      combined output of the job
    <job_kind>.pid      "<pid>:<starttime>" of the job process
    <artifact>.part.<pid>  output of job process <pid> not yet published

There is at most one workspace at a time. Starting a new download destroys the
    previous workspace entirely.
"""


from __future__ import annotations

import contextlib
import errno
import fcntl
import logging
import os
import shutil
from pathlib import Path
from typing import Generator, Optional

from fw_updater._types import (
    Compression,
    JobKind,
    PartitionGeometry,
    WorkspaceSnapshot,
)
from fw_updater.configs.cfg import cfg
from fw_updater.errors import WorkspaceBusy
from fw_updater_common._io import (
    read_str_from_file,
    touch_file_sync,
    write_str_to_file_atomic,
)
from fw_updater_common._typing import StrOrPath
from fw_updater_common.linux import is_proc_alive

logger = logging.getLogger(__name__)

_COMPRESSED_FNAMES = {
    Compression.GZ: cfg.IMAGE_GZ_FNAME,
    Compression.XZ: cfg.IMAGE_XZ_FNAME,
}


class Workspace:
    """Path resolution and existence checks for the update artifacts."""

    def __init__(
        self,
        root: StrOrPath = cfg.WORKSPACE_DPATH,
        *,
        lock_fpath: Optional[StrOrPath] = None,
    ) -> None:
        self.root = Path(root)
        self.lock_fpath = (
            Path(lock_fpath)
            if lock_fpath
            else self.root.parent / f".{self.root.name}.lock"
        )

    def __repr__(self) -> str:
        return f"<Workspace at {self.root}>"

    # ------ artifact paths ------ #

    @property
    def version_fpath(self) -> Path:
        return self.root / cfg.VERSION_FNAME

    @property
    def raw_image(self) -> Path:
        return self.root / cfg.IMAGE_RAW_FNAME

    @property
    def root_geometry_fpath(self) -> Path:
        return self.root / cfg.ROOT_GEOMETRY_FNAME

    @property
    def boot_ready_fpath(self) -> Path:
        return self.root / cfg.BOOT_READY_FNAME

    @property
    def boot_backup_dpath(self) -> Path:
        return self.root / cfg.BOOT_BACKUP_DNAME

    @property
    def image_mnt_dpath(self) -> Path:
        return self.root / cfg.IMAGE_MNT_DNAME

    def compressed_image_path(self, compression: Compression) -> Path:
        return self.root / _COMPRESSED_FNAMES[compression]

    def compressed_image(self) -> Optional[Path]:
        """Return the compressed image presented in the workspace, if any."""
        for _fname in _COMPRESSED_FNAMES.values():
            if (_fpath := self.root / _fname).is_file():
                return _fpath

    def job_log(self, kind: JobKind) -> Path:
        return self.root / f"{kind}{cfg.JOB_LOG_SUFFIX}"

    def job_marker(self, kind: JobKind) -> Path:
        return self.root / f"{kind}{cfg.JOB_MARKER_SUFFIX}"

    def job_artifact(self, kind: JobKind) -> Optional[Path]:
        """The output of job <kind>, whose presence means the job succeeded."""
        if kind == JobKind.DOWNLOAD:
            return self.compressed_image()
        if kind == JobKind.DECOMPRESS:
            return self.raw_image if self.raw_image.is_file() else None
        if kind == JobKind.BOOT_WRITE:
            return self.boot_ready_fpath if self.is_boot_ready() else None
        raise ValueError(f"unknown job kind: {kind}")

    @staticmethod
    def partial_of(fpath: StrOrPath, owner: Optional[int] = None) -> Path:
        """The in-progress file job process <owner> writes before publishing <fpath>.

        Each job process has its own partial file, so a job superseded by a rerun
            never publishes the rerun's unfinished output. <owner> defaults to
            the current process.
        """
        if owner is None:
            owner = os.getpid()
        return Path(f"{fpath}{cfg.PARTIAL_SUFFIX}.{owner}")

    @staticmethod
    def partials_of(fpath: StrOrPath) -> list[Path]:
        fpath = Path(fpath)
        return sorted(fpath.parent.glob(f"{fpath.name}{cfg.PARTIAL_SUFFIX}.*"))

    @classmethod
    def remove_stale_partials(cls, fpath: StrOrPath) -> None:
        """Remove the partial files of <fpath> whose job process is gone."""
        for _partial in cls.partials_of(fpath):
            _owner = _partial.suffix.lstrip(".")
            if _owner.isdigit() and is_proc_alive(int(_owner)):
                continue
            logger.info(f"remove stale partial output {_partial}")
            _partial.unlink(missing_ok=True)

    # ------ lifecycle ------ #

    def ensure(self) -> None:
        self.root.mkdir(parents=True, exist_ok=True)

    def reset(self) -> None:
        """Destroy the previous workspace entirely and create an empty one."""
        logger.info(f"reset workspace {self.root}")
        shutil.rmtree(self.root, ignore_errors=True)
        self.root.mkdir(parents=True, exist_ok=True)

    def exists(self) -> bool:
        return self.root.is_dir()

    @contextlib.contextmanager
    def lock(self) -> Generator[None, None, None]:
        """Hold the advisory lock of the workspace.

        Raises:
            WorkspaceBusy if the lock is held by another process.
        """
        self.lock_fpath.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(self.lock_fpath, os.O_RDWR | os.O_CREAT, 0o644)
        try:
            try:
                fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
            except OSError as e:
                if e.errno in (errno.EAGAIN, errno.EACCES):
                    raise WorkspaceBusy(
                        f"{self.lock_fpath} is locked", module=__name__
                    ) from None
                raise

            try:
                yield
            finally:
                fcntl.flock(fd, fcntl.LOCK_UN)
        finally:
            os.close(fd)

    # ------ recorded states ------ #

    def read_version(self) -> str:
        return read_str_from_file(self.version_fpath, _default="")

    def write_version(self, version: str) -> None:
        write_str_to_file_atomic(self.version_fpath, version)

    def read_root_geometry(self) -> Optional[PartitionGeometry]:
        _raw = read_str_from_file(self.root_geometry_fpath, _default="")
        if not _raw:
            return None
        try:
            start_mb, size_mb = (int(_v) for _v in _raw.split())
        except ValueError:
            logger.warning(f"invalid recorded root geometry: {_raw!r}, ignored")
            return None
        return PartitionGeometry.from_mb(start_mb, size_mb)

    def write_root_geometry(self, geometry: PartitionGeometry) -> None:
        write_str_to_file_atomic(
            self.root_geometry_fpath, f"{geometry.start_mb} {geometry.size_mb}"
        )

    def is_boot_ready(self) -> bool:
        return self.boot_ready_fpath.is_file()

    def mark_boot_ready(self) -> None:
        touch_file_sync(self.boot_ready_fpath)

    def clear_boot_ready(self) -> None:
        self.boot_ready_fpath.unlink(missing_ok=True)

    def snapshot(self) -> WorkspaceSnapshot:
        return WorkspaceSnapshot(
            version=self.read_version(),
            compressed_image=self.compressed_image() is not None,
            raw_image=self.raw_image.is_file(),
            boot_ready=self.is_boot_ready(),
        )
