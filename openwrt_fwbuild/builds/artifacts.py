"""Compiled image collection and checksum publishing.

This module handles:
- Locating the image produced by one Image Builder run
- Moving it to a deterministic name in the output directory
- Computing checksums and writing the sha256sums manifest
- Writing a JSON build manifest
"""

from __future__ import annotations

import json
import logging
import shutil
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from openwrt_fwbuild.imagebuilder.fetch import compute_file_sha256
from openwrt_fwbuild.types import BuildArtifact

logger = logging.getLogger(__name__)

OUTPUT_DIRNAME = "compiled_images"
CHECKSUMS_FILENAME = "sha256sums"
MANIFEST_FILENAME = "manifest.json"
IMAGE_SUFFIX = ".img.gz"


class ArtifactError(Exception):
    """Raised when a build output cannot be collected."""

    def __init__(self, message: str, code: str = "artifact_error") -> None:
        super().__init__(message)
        self.code = code


def artifact_name(prefix: str, profile_id: str, variant: str, date: str) -> str:
    """Deterministic file name of a compiled image."""
    return f"{prefix}_{profile_id}_{variant}_{date}{IMAGE_SUFFIX}"


def image_glob(target_name: str) -> str:
    """Glob matching the image Image Builder writes for a target."""
    return f"*-{target_name}-*{IMAGE_SUFFIX}"


def locate_image(working_dir: Path, target_system: str, target_name: str) -> Path:
    """Find the single image produced by the last build.

    Args:
        working_dir: Working tree.
        target_system: Target system path, e.g. 'x86/64'.
        target_name: Target name, e.g. 'x86-64'.

    Returns:
        Path to the image.

    Raises:
        ArtifactError: If no image or more than one image matches.
    """
    bin_dir = working_dir / "bin" / "targets" / target_system
    pattern = image_glob(target_name)
    matches = sorted(p for p in bin_dir.glob(pattern) if p.is_file())

    if not matches:
        raise ArtifactError(
            f"No image matching {pattern} in {bin_dir}",
            code="image_not_found",
        )
    if len(matches) > 1:
        raise ArtifactError(
            f"Expected one image matching {pattern} in {bin_dir}, found "
            f"{len(matches)}: {', '.join(p.name for p in matches)}",
            code="ambiguous_image",
        )
    return matches[0]


def collect_image(
    source: Path,
    output_dir: Path,
    destination_name: str,
    variant: str,
) -> BuildArtifact:
    """Move a built image to its deterministic name.

    Args:
        source: Image produced by Image Builder.
        output_dir: Directory receiving compiled images.
        destination_name: Final file name.
        variant: Tunnel identifier the image was built with.

    Returns:
        BuildArtifact for the moved image.

    Raises:
        ArtifactError: If the move fails.
    """
    output_dir.mkdir(parents=True, exist_ok=True)
    destination = output_dir / destination_name

    try:
        shutil.move(str(source), str(destination))
    except OSError as e:
        raise ArtifactError(
            f"Failed to move {source} -> {destination}: {e}",
            code="move_error",
        ) from e

    artifact = BuildArtifact(
        variant=variant,
        source_path=source,
        destination_path=destination,
        size_bytes=destination.stat().st_size,
        sha256=compute_file_sha256(destination),
    )
    logger.info("Stored %s (%d bytes)", destination_name, artifact.size_bytes)
    return artifact


def publish_checksums(output_dir: Path) -> dict[str, str]:
    """Write the sha256sums manifest for every image in output_dir.

    Lines use the `sha256sum` format (`<digest>  <filename>`) so the file can
    be checked with `sha256sum -c` from inside the output directory.

    Args:
        output_dir: Directory holding compiled images.

    Returns:
        Ordered mapping of file name to SHA-256 digest.
    """
    checksums: dict[str, str] = {}
    for path in sorted(output_dir.glob(f"*{IMAGE_SUFFIX}")):
        if path.is_file():
            checksums[path.name] = compute_file_sha256(path)

    manifest_path = output_dir / CHECKSUMS_FILENAME
    manifest_path.write_text(
        "".join(f"{digest}  {name}\n" for name, digest in checksums.items()),
        encoding="utf-8",
    )
    logger.info("Wrote %d checksum(s) to %s", len(checksums), manifest_path)
    return checksums


def generate_manifest(
    artifacts: list[BuildArtifact],
    build_inputs: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """Generate a build manifest.

    Args:
        artifacts: Collected images.
        build_inputs: Optional build inputs dictionary.

    Returns:
        Manifest dictionary suitable for JSON serialization.
    """
    now = datetime.now(timezone.utc)

    manifest: dict[str, Any] = {
        "version": "1.0",
        "generated_at": now.isoformat(),
        "artifacts": [
            {
                "filename": a.destination_name,
                "variant": a.variant,
                "size_bytes": a.size_bytes,
                "sha256": a.sha256,
            }
            for a in artifacts
        ],
    }
    if build_inputs:
        manifest["build_inputs"] = build_inputs

    manifest["summary"] = {
        "total_artifacts": len(artifacts),
        "total_size_bytes": sum(a.size_bytes for a in artifacts),
    }
    return manifest


def write_manifest(
    manifest: dict[str, Any],
    output_path: Path,
) -> Path:
    """Write manifest to a JSON file.

    Args:
        manifest: Manifest dictionary.
        output_path: Output file path.

    Returns:
        Path to written manifest file.
    """
    output_path.parent.mkdir(parents=True, exist_ok=True)

    with output_path.open("w", encoding="utf-8") as f:
        json.dump(manifest, f, indent=2, sort_keys=True)

    logger.info("Wrote manifest to %s", output_path)
    return output_path


__all__ = [
    "CHECKSUMS_FILENAME",
    "IMAGE_SUFFIX",
    "MANIFEST_FILENAME",
    "OUTPUT_DIRNAME",
    "ArtifactError",
    "artifact_name",
    "collect_image",
    "generate_manifest",
    "image_glob",
    "locate_image",
    "publish_checksums",
    "write_manifest",
]
