"""Build environment shared with the external collaborators.

The customization scripts and make-build.sh read their parameters from
environment variables. This module computes the date stamps for a run and
assembles that variable map explicitly from the build request.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from zoneinfo import ZoneInfo

from openwrt_fwbuild.types import BuildRequest


@dataclass(frozen=True)
class BuildStamp:
    """Date stamps fixed once at the start of a run.

    Attributes:
        timezone: IANA zone the stamps were taken in.
        date: YYYYMMDD, used in image file names.
        datetime: YYYY.MM.DD-HH:MM:SS.
        month: Lowercase month-year, e.g. 'october-2026'.
    """

    timezone: str
    date: str
    datetime: str
    month: str

    @classmethod
    def from_datetime(cls, moment: datetime, timezone: str) -> BuildStamp:
        return cls(
            timezone=timezone,
            date=moment.strftime("%Y%m%d"),
            datetime=moment.strftime("%Y.%m.%d-%H:%M:%S"),
            month=moment.strftime("%B-%Y").lower(),
        )

    @classmethod
    def now(cls, timezone: str) -> BuildStamp:
        """Take stamps for the current time in the given zone."""
        return cls.from_datetime(datetime.now(ZoneInfo(timezone)), timezone)


def working_dir_name(distro: str, display_name: str) -> str:
    """Name of the working tree for a distro and device.

    Args:
        distro: Release distro, e.g. 'openwrt'.
        display_name: Device display name, spaces allowed.

    Returns:
        '<distro>-imagebuilder-<display name with '-' for ' '>.Linux-x86_64'.
    """
    return f"{distro}-imagebuilder-{display_name.replace(' ', '-')}.Linux-x86_64"


def _flag(value: bool) -> str:
    return "true" if value else "false"


def collaborator_env(
    request: BuildRequest,
    stamp: BuildStamp,
    working_dir: Path,
    assets_dir: Path,
    download_base: str,
) -> dict[str, str]:
    """Assemble the variables exported to scripts and make-build.sh.

    Args:
        request: The build request.
        stamp: Date stamps for this run.
        working_dir: Working tree path.
        assets_dir: Directory holding the custom assets.
        download_base: Effective download host (mirror or distro default).

    Returns:
        Mapping of variable name to value.
    """
    target = request.target
    release = request.release
    return {
        "TARGET": target.display_name,
        "RELEASE_BRANCH": str(release),
        "TUNNEL": request.tunnel,
        "CLEAN": _flag(request.clean),
        "SQUASHFS": _flag(request.squashfs),
        "UPDATE": _flag(request.update),
        "REMOVE": _flag(request.remove_cache),
        "TZ": stamp.timezone,
        "DATE": stamp.date,
        "DATETIME": stamp.datetime,
        "DATEMONTH": stamp.month,
        "WORKING_DIR": working_dir.name,
        "DOWNLOAD_BASE": download_base,
        "BASE": release.distro,
        "BRANCH": release.branch,
        "PROFILE": target.profile_id,
        "TARGET_SYSTEM": target.target_system,
        "TARGET_NAME": target.target_name,
        "ARCH_1": target.arch[0],
        "ARCH_2": target.arch[1],
        "ARCH_3": target.arch[2],
        "GITHUB_WORKSPACE": str(assets_dir),
    }


__all__ = [
    "BuildStamp",
    "collaborator_env",
    "working_dir_name",
]
