"""Working tree preparation for builds.

This module handles:
- Copying the extracted Image Builder into the per-target working tree
- Overlaying the custom assets (build driver, scripts, packages, files)
- Running the customization scripts inside the working tree

The working tree name is deterministic per (distro, device), so a re-run
reuses the same directory and re-copies everything into it.
"""

from __future__ import annotations

import logging
import shutil
from pathlib import Path

from openwrt_fwbuild.builds.runner import (
    BUILD_DRIVER,
    compose_script_command,
    run_command,
)

logger = logging.getLogger(__name__)

# Assets copied into the working tree root, in copy order
REQUIRED_ASSETS = (BUILD_DRIVER, "scripts")
OVERLAY_ASSETS = (
    BUILD_DRIVER,
    "external-package-urls.txt",
    "scripts",
    "packages",
    "files",
)

LOGS_DIRNAME = "logs"
CUSTOMIZE_LOG = "customize.log"


class WorkspaceError(Exception):
    """Raised when the working tree cannot be prepared."""

    def __init__(self, message: str, code: str = "workspace_error") -> None:
        super().__init__(message)
        self.code = code


def copy_entry(source: Path, dest: Path) -> None:
    """Copy a file or directory over dest, replacing same-named entries.

    Directories are merged into an existing destination; symlinks are copied
    as symlinks.

    Args:
        source: File, symlink, or directory to copy.
        dest: Destination path.

    Raises:
        WorkspaceError: If the copy fails.
    """
    try:
        if source.is_dir() and not source.is_symlink():
            if dest.is_symlink() or dest.is_file():
                dest.unlink()
            shutil.copytree(source, dest, symlinks=True, dirs_exist_ok=True)
        else:
            if dest.is_symlink() or dest.is_file():
                dest.unlink()
            elif dest.is_dir():
                shutil.rmtree(dest)
            dest.parent.mkdir(parents=True, exist_ok=True)
            shutil.copy2(source, dest, follow_symlinks=False)
    except OSError as e:
        raise WorkspaceError(
            f"Failed to copy {source} -> {dest}: {e}",
            code="copy_error",
        ) from e


def copy_tree_contents(source_dir: Path, dest_dir: Path) -> int:
    """Copy every top-level entry of source_dir, hidden ones included.

    Args:
        source_dir: Directory whose contents are copied.
        dest_dir: Directory receiving them.

    Returns:
        Number of top-level entries copied.
    """
    dest_dir.mkdir(parents=True, exist_ok=True)
    count = 0
    for item in sorted(source_dir.iterdir()):
        copy_entry(item, dest_dir / item.name)
        count += 1
    return count


def overlay_assets(assets_dir: Path, working_dir: Path) -> list[str]:
    """Copy the custom assets into the working tree root.

    Args:
        assets_dir: Directory holding the assets.
        working_dir: Working tree.

    Returns:
        Names of the assets that were copied.

    Raises:
        WorkspaceError: If a required asset is missing or a copy fails.
    """
    missing = [name for name in REQUIRED_ASSETS if not (assets_dir / name).exists()]
    if missing:
        raise WorkspaceError(
            f"Missing required assets in {assets_dir}: {', '.join(missing)}",
            code="asset_not_found",
        )

    copied: list[str] = []
    for name in OVERLAY_ASSETS:
        source = assets_dir / name
        if not source.exists():
            logger.warning("Optional asset not found, skipping: %s", source)
            continue
        logger.debug("Copying %s into %s", name, working_dir)
        copy_entry(source, working_dir / name)
        copied.append(name)
    return copied


def materialize(
    extracted_root: Path,
    working_dir: Path,
    assets_dir: Path,
) -> Path:
    """Build the working tree from an extracted Image Builder.

    Args:
        extracted_root: Root of the extracted Image Builder.
        working_dir: Working tree to create or refresh.
        assets_dir: Directory holding the custom assets.

    Returns:
        The working tree path.

    Raises:
        WorkspaceError: If copying fails or required assets are missing.
    """
    if not extracted_root.is_dir():
        raise WorkspaceError(
            f"Image Builder root not found: {extracted_root}",
            code="imagebuilder_not_found",
        )

    logger.info("Copying Image Builder into %s", working_dir)
    count = copy_tree_contents(extracted_root, working_dir)
    logger.debug("Copied %d entries from %s", count, extracted_root)

    logger.info("Copying custom files to working directory")
    overlay_assets(assets_dir, working_dir)
    return working_dir


def run_customization_scripts(
    working_dir: Path,
    scripts: list[str],
    env: dict[str, str],
    timeout: int | None = None,
) -> None:
    """Run the customization scripts in order inside the working tree.

    Args:
        working_dir: Working tree holding scripts/.
        scripts: Script file names under scripts/, in run order.
        env: Collaborator environment.
        timeout: Per-script timeout in seconds (None = no timeout).

    Raises:
        WorkspaceError: If a listed script does not exist.
        ExternalToolError: If a script exits non-zero.
    """
    missing = [s for s in scripts if not (working_dir / "scripts" / s).is_file()]
    if missing:
        raise WorkspaceError(
            f"Missing customization scripts: {', '.join(missing)}",
            code="script_not_found",
        )

    log_path = working_dir / LOGS_DIRNAME / CUSTOMIZE_LOG
    for script in scripts:
        logger.info("Running %s", script)
        run_command(
            compose_script_command(script),
            cwd=working_dir,
            log_path=log_path,
            env_override=env,
            timeout=timeout,
        )


def count_custom_packages(working_dir: Path) -> int:
    """Count the custom .ipk files shipped in packages/."""
    packages_dir = working_dir / "packages"
    if not packages_dir.is_dir():
        return 0
    return sum(1 for p in packages_dir.rglob("*.ipk") if p.is_file())


__all__ = [
    "LOGS_DIRNAME",
    "OVERLAY_ASSETS",
    "REQUIRED_ASSETS",
    "WorkspaceError",
    "copy_entry",
    "copy_tree_contents",
    "count_custom_packages",
    "materialize",
    "overlay_assets",
    "run_customization_scripts",
]
