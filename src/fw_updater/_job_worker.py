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
"""Worker entries executed as detached jobs.

Usage:
    python -m fw_updater._job_worker fetch <url> <dst>
    python -m fw_updater._job_worker copy <src> <dst>
    python -m fw_updater._job_worker decompress {gz,xz} <src> <dst>

Each worker writes to its own <dst>.part.<pid> first, and only publishes <dst> by
    renaming after the whole output has been written, so <dst> presence always
    means success.
"""


from __future__ import annotations

import argparse
import contextlib
import gzip
import logging
import lzma
import os
import shutil
import sys
from pathlib import Path
from typing import IO, Generator, Optional

import requests

from fw_updater._types import Compression
from fw_updater.configs.cfg import cfg
from fw_updater.workspace import Workspace

logger = logging.getLogger(__name__)

_DECOMPRESSORS = {
    Compression.GZ: gzip.open,
    Compression.XZ: lzma.open,
}


@contextlib.contextmanager
def _publish_atomic(
    dst: Path, *, owner: Optional[int] = None
) -> Generator[IO[bytes], None, None]:
    """Open the partial file of <dst> for writing, publish it to <dst> on success.

    The partial file belongs to this worker process only, a rerun of the same job
        writes to its own one.
    """
    _partial = Workspace.partial_of(dst, owner)
    try:
        with open(_partial, "wb") as f:
            yield f
            f.flush()
            os.fsync(f.fileno())
        os.replace(_partial, dst)
    finally:
        _partial.unlink(missing_ok=True)


def fetch(url: str, dst: Path, *, chunk_size: int = cfg.DOWNLOAD_CHUNK_SIZE) -> None:
    logger.info(f"fetch {url} to {dst}")
    with requests.Session() as session, session.get(
        url,
        stream=True,
        timeout=(cfg.DOWNLOAD_CONNECT_TIMEOUT, cfg.DOWNLOAD_READ_TIMEOUT),
    ) as resp:
        resp.raise_for_status()
        with _publish_atomic(dst) as f:
            for _chunk in resp.iter_content(chunk_size=chunk_size):
                f.write(_chunk)


def copy(src: Path, dst: Path) -> None:
    logger.info(f"copy {src} to {dst}")
    with open(src, "rb") as src_f, _publish_atomic(dst) as dst_f:
        shutil.copyfileobj(src_f, dst_f, length=cfg.DOWNLOAD_CHUNK_SIZE)


def decompress(compression: Compression, src: Path, dst: Path) -> None:
    logger.info(f"decompress({compression}) {src} to {dst}")
    _open = _DECOMPRESSORS[compression]
    with _open(src, "rb") as src_f, _publish_atomic(dst) as dst_f:
        shutil.copyfileobj(src_f, dst_f, length=cfg.DOWNLOAD_CHUNK_SIZE)


def main(args: list[str] | None = None) -> None:
    logging.basicConfig(level=logging.INFO, format=cfg.LOG_FORMAT)

    parser = argparse.ArgumentParser(prog="fw_updater._job_worker")
    sub = parser.add_subparsers(dest="worker", required=True)

    _fetch = sub.add_parser("fetch")
    _fetch.add_argument("url")
    _fetch.add_argument("dst", type=Path)

    _copy = sub.add_parser("copy")
    _copy.add_argument("src", type=Path)
    _copy.add_argument("dst", type=Path)

    _decompress = sub.add_parser("decompress")
    _decompress.add_argument("compression", type=Compression, choices=list(Compression))
    _decompress.add_argument("src", type=Path)
    _decompress.add_argument("dst", type=Path)

    parsed = parser.parse_args(args)
    try:
        if parsed.worker == "fetch":
            fetch(parsed.url, parsed.dst)
        elif parsed.worker == "copy":
            copy(parsed.src, parsed.dst)
        else:
            decompress(parsed.compression, parsed.src, parsed.dst)
    except Exception as e:
        logger.error(f"{parsed.worker} failed: {e!r}")
        sys.exit(1)


def worker_cmd(*args: str) -> list[str]:
    """The command line to launch a worker as a job."""
    return [sys.executable, "-m", "fw_updater._job_worker", *args]


if __name__ == "__main__":
    main()
