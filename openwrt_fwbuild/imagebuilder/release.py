"""Release branch parsing and Image Builder URL discovery.

A release branch is written as `<distro>:<branch>`, e.g. `openwrt:snapshots`
or `immortalwrt:23.05.2`. The distro selects the download host
(`https://downloads.<distro>.org`), the branch selects between the rolling
snapshot tree (zstd archives) and a tagged release (xz archives).
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from openwrt_fwbuild.targets import ConfigurationError

if TYPE_CHECKING:
    from openwrt_fwbuild.targets import TargetSpec

SNAPSHOT_BRANCH = "snapshots"

# Host platform the Image Builder archives are built for
HOST_SUFFIX = "Linux-x86_64"


class InvalidReleaseError(ConfigurationError):
    """Raised when a release branch identifier cannot be parsed."""

    def __init__(self, value: str) -> None:
        super().__init__(
            f"Invalid release branch: {value!r} (expected <distro>:<branch>)",
            code="invalid_release",
        )
        self.value = value


@dataclass(frozen=True)
class ReleaseSpec:
    """A parsed `<distro>:<branch>` identifier."""

    distro: str
    branch: str

    @property
    def is_snapshot(self) -> bool:
        return self.branch == SNAPSHOT_BRANCH

    @property
    def download_base(self) -> str:
        return f"https://downloads.{self.distro}.org"

    def __str__(self) -> str:
        return f"{self.distro}:{self.branch}"


@dataclass(frozen=True)
class ArchiveDescriptor:
    """Where an Image Builder archive lives and what it is called locally."""

    file_name: str
    base_url: str

    @property
    def download_url(self) -> str:
        return f"{self.base_url}/{self.file_name}"

    @property
    def checksum_url(self) -> str:
        return f"{self.base_url}/sha256sums"


def parse_release_branch(value: str) -> ReleaseSpec:
    """Split a release branch identifier on its first ':'.

    Args:
        value: Identifier such as 'openwrt:snapshots'.

    Returns:
        ReleaseSpec with distro and branch.

    Raises:
        InvalidReleaseError: If the ':' is missing or either side is empty.
    """
    distro, sep, branch = value.partition(":")
    distro = distro.strip()
    branch = branch.strip()
    if not sep or not distro or not branch:
        raise InvalidReleaseError(value)
    return ReleaseSpec(distro=distro, branch=branch)


def build_archive_descriptor(
    release: ReleaseSpec,
    target: TargetSpec,
    download_base: str | None = None,
) -> ArchiveDescriptor:
    """Build the archive name and URLs for a release and target.

    Args:
        release: Parsed release branch.
        target: Resolved target.
        download_base: Optional mirror replacing the distro download host.

    Returns:
        ArchiveDescriptor for the Image Builder archive.
    """
    base = (download_base or release.download_base).rstrip("/")

    if release.is_snapshot:
        base_url = f"{base}/{SNAPSHOT_BRANCH}/targets/{target.target_system}"
        file_name = (
            f"{release.distro}-imagebuilder-{target.target_name}.{HOST_SUFFIX}.tar.zst"
        )
    else:
        base_url = f"{base}/releases/{release.branch}/targets/{target.target_system}"
        file_name = (
            f"{release.distro}-imagebuilder-{release.branch}-"
            f"{target.target_name}.{HOST_SUFFIX}.tar.xz"
        )

    return ArchiveDescriptor(file_name=file_name, base_url=base_url)


__all__ = [
    "HOST_SUFFIX",
    "SNAPSHOT_BRANCH",
    "ArchiveDescriptor",
    "InvalidReleaseError",
    "ReleaseSpec",
    "build_archive_descriptor",
    "parse_release_branch",
]
