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
"""Entry of the fw-updater command line.

The result of each command is printed to stdout, logs go to stderr.
"""


from __future__ import annotations

import argparse
import logging
import sys
from typing import Callable

from fw_updater import __version__
from fw_updater._logging import configure_logging
from fw_updater.catalog import dump_releases_json, list_releases
from fw_updater.device import get_board, get_current_version
from fw_updater.download import download, extract
from fw_updater.errors import FWUpdateError, JobFailed
from fw_updater.flash_boot import BootFlasher
from fw_updater.flash_reboot import flash_reboot
from fw_updater.job_supervisor import JobSupervisor
from fw_updater.phase import current_phase
from fw_updater.upgrade import upgrade
from fw_updater.workspace import Workspace

logger = logging.getLogger(__name__)


def _cmd_versions(args: argparse.Namespace, ws: Workspace, sup: JobSupervisor) -> None:
    releases = list_releases(get_board())
    if args.json:
        print(dump_releases_json(releases))
        return
    for _release in releases:
        print(_release.version)


def _cmd_current(args: argparse.Namespace, ws: Workspace, sup: JobSupervisor) -> None:
    print(get_current_version())


def _cmd_download(args: argparse.Namespace, ws: Workspace, sup: JobSupervisor) -> None:
    print(download(args.source, workspace=ws, supervisor=sup, wait=not args.no_wait))


def _cmd_extract(args: argparse.Namespace, ws: Workspace, sup: JobSupervisor) -> None:
    print(extract(workspace=ws, supervisor=sup, wait=not args.no_wait))


def _cmd_flashboot(args: argparse.Namespace, ws: Workspace, sup: JobSupervisor) -> None:
    print(BootFlasher(ws, sup).flash())


def _cmd_flashreboot(
    args: argparse.Namespace, ws: Workspace, sup: JobSupervisor
) -> None:
    flash_reboot(ws)


def _cmd_status(args: argparse.Namespace, ws: Workspace, sup: JobSupervisor) -> None:
    print(current_phase(ws, sup))


def _cmd_upgrade(args: argparse.Namespace, ws: Workspace, sup: JobSupervisor) -> None:
    upgrade(
        args.source,
        workspace=ws,
        supervisor=sup,
        report=lambda _status: print(_status, flush=True),
    )


_Command = Callable[[argparse.Namespace, Workspace, JobSupervisor], None]


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="fw-updater",
        description="firmware updater for boot/root/data partitioned devices",
    )
    parser.add_argument("--version", action="version", version=__version__)
    sub = parser.add_subparsers(dest="command", required=True)

    def _add(
        name: str, func: _Command, _help: str, *, mutating: bool
    ) -> argparse.ArgumentParser:
        _parser = sub.add_parser(name, help=_help)
        _parser.set_defaults(func=func, mutating=mutating)
        return _parser

    _versions = _add(
        "versions", _cmd_versions, "list available versions", mutating=False
    )
    _versions.add_argument(
        "-j", "--json", action="store_true", help="output as JSON array"
    )

    _add("current", _cmd_current, "show the running firmware version", mutating=False)

    _download = _add(
        "download",
        _cmd_download,
        "download the firmware image of <version>, <url> or local <file>",
        mutating=True,
    )
    _download.add_argument("source", help="version, URL or local file")
    _download.add_argument(
        "--no-wait", action="store_true", help="return once the download starts"
    )

    _extract = _add(
        "extract", _cmd_extract, "decompress the downloaded image", mutating=True
    )
    _extract.add_argument(
        "--no-wait", action="store_true", help="return once the extraction starts"
    )

    _add("flashboot", _cmd_flashboot, "flash the boot partition", mutating=True)
    _add(
        "flashreboot",
        _cmd_flashreboot,
        "prepare the root partition and reboot to flash it",
        mutating=True,
    )
    _add("status", _cmd_status, "show the update phase", mutating=False)

    _upgrade = _add(
        "upgrade", _cmd_upgrade, "run all the update phases at once", mutating=True
    )
    _upgrade.add_argument("source", help="version, URL or local file")
    return parser


def main(args: list[str] | None = None) -> None:
    parsed = build_parser().parse_args(args)
    configure_logging()

    ws = Workspace()
    sup = JobSupervisor(ws)
    try:
        if parsed.mutating:
            with ws.lock():
                parsed.func(parsed, ws, sup)
        else:
            parsed.func(parsed, ws, sup)
    except FWUpdateError as e:
        logger.debug(e.get_error_report(title=f"{parsed.command} failed"))
        print(e.get_failure_reason(), file=sys.stderr)
        if isinstance(e, JobFailed) and e.log:
            print(e.log, file=sys.stderr)
        sys.exit(1)
