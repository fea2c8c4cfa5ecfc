"""Shared type definitions for openwrt_fwbuild.

This module contains dataclasses, enums, and constants shared across
subpackages to avoid circular imports.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from openwrt_fwbuild.imagebuilder.release import ReleaseSpec
    from openwrt_fwbuild.targets import TargetSpec

# Sentinel tunnel value expanding to every bundle in Tunnel
ALL_TUNNELS = "all"

# Branch whose Image Builder cannot build the tunnel bundles in one go
LEGACY_BRANCH = "21.02.7"


class Tunnel(str, Enum):
    """Bundle of VPN/proxy packages selected for one firmware image.

    Declaration order is the build order used when every variant is built.
    """

    OPENCLASH_PASSWALL = "openclash-passwall"
    NEKO_PASSWALL = "neko-passwall"
    NEKO_OPENCLASH = "neko-openclash"
    OPENCLASH_PASSWALL_NEKO = "openclash-passwall-neko"
    OPENCLASH = "openclash"
    PASSWALL = "passwall"
    NEKO = "neko"
    NO_TUNNEL = "no-tunnel"


class Toggle(str, Enum):
    """A true/false switch as written on the command line."""

    TRUE = "true"
    FALSE = "false"

    def __bool__(self) -> bool:
        return self is Toggle.TRUE


@dataclass(frozen=True)
class BuildRequest:
    """Everything the variant build loop needs for one run.

    Attributes:
        target: Resolved target coordinates.
        release: Parsed distro/branch.
        tunnel: Requested tunnel bundle, or "all" for every bundle.
        clean: Run `make clean` before each variant.
        squashfs: Ask the customization scripts for a SquashFS image.
        update: Refresh host OS packages before building.
        remove_cache: Purge archive, checksums, and extracted tree after use.
    """

    target: TargetSpec
    release: ReleaseSpec
    tunnel: str = ALL_TUNNELS
    clean: bool = True
    squashfs: bool = False
    update: bool = False
    remove_cache: bool = False


@dataclass
class BuildArtifact:
    """A compiled image moved to its deterministic name."""

    variant: str
    source_path: Path
    destination_path: Path
    size_bytes: int
    sha256: str

    @property
    def destination_name(self) -> str:
        return self.destination_path.name


@dataclass
class BuildSummary:
    """Outcome of a complete firmware build run."""

    working_dir: Path
    output_dir: Path
    manifest_path: Path
    artifacts: list[BuildArtifact] = field(default_factory=list)
    checksums: dict[str, str] = field(default_factory=dict)
    archive_cache_hit: bool = False
    custom_package_count: int = 0


__all__ = [
    "ALL_TUNNELS",
    "LEGACY_BRANCH",
    "BuildArtifact",
    "BuildRequest",
    "BuildSummary",
    "Toggle",
    "Tunnel",
]
