"""Build service module.

This module provides the high-level build API:
- expand_variants(): Turn the requested tunnel into the ordered variant list
- build_variants(): Clean, build, and collect one image per variant
- run_firmware_build(): Main entry point - fetch, prepare, build, publish

Every failure aborts the run; remaining variants are not attempted.
"""

from __future__ import annotations

import logging
from contextlib import nullcontext
from pathlib import Path
from typing import TYPE_CHECKING

import httpx

from openwrt_fwbuild.builds.artifacts import (
    MANIFEST_FILENAME,
    OUTPUT_DIRNAME,
    artifact_name,
    collect_image,
    generate_manifest,
    locate_image,
    publish_checksums,
    write_manifest,
)
from openwrt_fwbuild.builds.environment import (
    BuildStamp,
    collaborator_env,
    working_dir_name,
)
from openwrt_fwbuild.builds.runner import run_build, run_clean
from openwrt_fwbuild.builds.workspace import (
    LOGS_DIRNAME,
    count_custom_packages,
    materialize,
    run_customization_scripts,
)
from openwrt_fwbuild.config import get_settings
from openwrt_fwbuild.host import update_host_packages
from openwrt_fwbuild.imagebuilder.fetch import (
    ensure_archive,
    extract_archive,
    purge_cache,
)
from openwrt_fwbuild.imagebuilder.release import build_archive_descriptor
from openwrt_fwbuild.targets import ConfigurationError
from openwrt_fwbuild.types import (
    ALL_TUNNELS,
    LEGACY_BRANCH,
    BuildArtifact,
    BuildRequest,
    BuildSummary,
    Tunnel,
)

if TYPE_CHECKING:
    from openwrt_fwbuild.config import Settings

logger = logging.getLogger(__name__)

# Extraction directory, relative to the cache directory
EXTRACT_DIRNAME = "tmp"


class InvalidTunnelError(ConfigurationError):
    """Raised when the requested tunnel is not a known bundle."""

    def __init__(self, tunnel: str) -> None:
        choices = ", ".join([ALL_TUNNELS, *(t.value for t in Tunnel)])
        super().__init__(
            f"Unknown tunnel: {tunnel!r} (choose from: {choices})",
            code="unknown_tunnel",
        )
        self.tunnel = tunnel


def expand_variants(tunnel: str, branch: str) -> tuple[str, ...]:
    """Expand the requested tunnel into the variants to build.

    Args:
        tunnel: A Tunnel value or 'all'.
        branch: Release branch; the legacy branch builds 'all' as one image.

    Returns:
        Variant identifiers in build order.

    Raises:
        InvalidTunnelError: If tunnel is neither 'all' nor a Tunnel value.
    """
    if tunnel == ALL_TUNNELS:
        if branch == LEGACY_BRANCH:
            return (ALL_TUNNELS,)
        return tuple(t.value for t in Tunnel)

    try:
        return (Tunnel(tunnel).value,)
    except ValueError:
        raise InvalidTunnelError(tunnel) from None


def build_variants(
    request: BuildRequest,
    working_dir: Path,
    env: dict[str, str],
    stamp: BuildStamp,
    settings: Settings,
) -> list[BuildArtifact]:
    """Run the external build once per variant and collect the images.

    Args:
        request: The build request.
        working_dir: Prepared working tree.
        env: Collaborator environment.
        stamp: Date stamps used in image names.
        settings: Application settings.

    Returns:
        One BuildArtifact per variant, in build order.

    Raises:
        ExternalToolError: If clean or build fails.
        ArtifactError: If a build does not leave exactly one image.
    """
    target = request.target
    variants = expand_variants(request.tunnel, request.release.branch)
    output_dir = working_dir / OUTPUT_DIRNAME
    output_dir.mkdir(parents=True, exist_ok=True)

    artifacts: list[BuildArtifact] = []
    for index, variant in enumerate(variants, start=1):
        logger.info("Compiling firmware %d/%d: %s", index, len(variants), variant)
        log_path = working_dir / LOGS_DIRNAME / f"build-{variant}.log"

        if request.clean:
            run_clean(
                working_dir,
                log_path=log_path,
                env_override=env,
                timeout=settings.build_timeout,
            )

        result = run_build(
            working_dir,
            profile_id=target.profile_id,
            variant=variant,
            log_path=log_path,
            env_override=env,
            timeout=settings.build_timeout,
        )
        logger.info("Built %s in %.1fs", variant, result.duration)

        image = locate_image(working_dir, target.target_system, target.target_name)
        name = artifact_name(settings.image_prefix, target.profile_id, variant, stamp.date)
        artifacts.append(collect_image(image, output_dir, name, variant))

    return artifacts


def run_firmware_build(
    request: BuildRequest,
    settings: Settings | None = None,
    client: httpx.Client | None = None,
    stamp: BuildStamp | None = None,
) -> BuildSummary:
    """Fetch the Image Builder, prepare the working tree, and build.

    Args:
        request: The build request.
        settings: Application settings (defaults from environment).
        client: Optional HTTPX client; one is created when omitted.
        stamp: Optional date stamps (taken now when omitted).

    Returns:
        BuildSummary describing the outputs.

    Raises:
        ConfigurationError: If the tunnel is unknown.
        DownloadError: If the archive or its checksums cannot be fetched.
        VerificationError: If the archive digest does not match.
        ExtractionError: If the archive cannot be extracted.
        WorkspaceError: If the working tree cannot be prepared.
        ExternalToolError: If any external command fails.
        ArtifactError: If an image cannot be collected.
    """
    if settings is None:
        settings = get_settings()
    if stamp is None:
        stamp = BuildStamp.now(settings.timezone)

    # Fail on a bad tunnel before anything touches the network
    expand_variants(request.tunnel, request.release.branch)

    target = request.target
    release = request.release
    working_dir = settings.work_root / working_dir_name(
        release.distro, target.display_name
    )
    download_base = settings.download_base or release.download_base
    env = collaborator_env(
        request,
        stamp,
        working_dir=working_dir,
        assets_dir=settings.assets_dir,
        download_base=download_base,
    )
    logger.info(
        "Building %s from %s (tunnel: %s) in %s",
        target.display_name,
        release,
        request.tunnel,
        working_dir.name,
    )

    if request.update:
        update_host_packages(
            settings.host_packages,
            log_path=settings.work_root / LOGS_DIRNAME / "host-update.log",
            timeout=settings.build_timeout,
        )

    descriptor = build_archive_descriptor(release, target, settings.download_base)
    http = (
        nullcontext(client)
        if client is not None
        else httpx.Client(follow_redirects=True)
    )
    with http as http_client:
        archive = ensure_archive(
            http_client,
            descriptor,
            cache_dir=settings.cache_dir,
            verify_checksum=settings.verify_checksum,
            remove_checksums=request.remove_cache,
            timeout=settings.download_timeout,
        )

    extract_dir = settings.cache_dir / EXTRACT_DIRNAME
    extracted_root = extract_archive(archive.archive_path, extract_dir)
    materialize(extracted_root, working_dir, settings.assets_dir)

    if request.remove_cache:
        purge_cache(extract_dir, archive.archive_path)

    run_customization_scripts(
        working_dir,
        settings.customization_scripts,
        env,
        timeout=settings.build_timeout,
    )

    artifacts = build_variants(request, working_dir, env, stamp, settings)

    output_dir = working_dir / OUTPUT_DIRNAME
    logger.info("Generating checksum")
    checksums = publish_checksums(output_dir)

    manifest = generate_manifest(
        artifacts,
        build_inputs={
            "target": target.display_name,
            "profile": target.profile_id,
            "release_branch": str(release),
            "tunnel": request.tunnel,
            "archive": descriptor.file_name,
            "archive_sha256": archive.checksum,
            "date": stamp.date,
        },
    )
    manifest_path = write_manifest(manifest, output_dir / MANIFEST_FILENAME)

    logger.info(
        "Firmware compilation completed successfully for target: %s",
        target.display_name,
    )
    return BuildSummary(
        working_dir=working_dir,
        output_dir=output_dir,
        manifest_path=manifest_path,
        artifacts=artifacts,
        checksums=checksums,
        archive_cache_hit=archive.cache_hit,
        custom_package_count=count_custom_packages(working_dir),
    )


__all__ = [
    "EXTRACT_DIRNAME",
    "InvalidTunnelError",
    "build_variants",
    "expand_variants",
    "run_firmware_build",
]
