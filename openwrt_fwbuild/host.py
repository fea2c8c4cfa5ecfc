"""Host preparation.

Refreshes the OS packages the Image Builder needs on a Debian/Ubuntu build
host. Only used when an update is requested.
"""

from __future__ import annotations

import logging
from pathlib import Path

from openwrt_fwbuild.builds.runner import run_command

logger = logging.getLogger(__name__)


def compose_update_commands(packages: list[str]) -> list[list[str]]:
    """Compose the package manager commands for a host refresh."""
    commands = [["sudo", "apt-get", "update", "-y"]]
    if packages:
        commands.append(["sudo", "apt-get", "install", "-y", *packages])
    return commands


def update_host_packages(
    packages: list[str],
    log_path: Path,
    timeout: int | None = None,
) -> None:
    """Refresh package lists and install the build dependencies.

    Args:
        packages: Package names to install.
        log_path: Log file for the package manager output.
        timeout: Per-command timeout in seconds (None = no timeout).

    Raises:
        ExternalToolError: If the package manager fails.
    """
    logger.info("Updating host packages (%d requested)", len(packages))
    for cmd in compose_update_commands(packages):
        run_command(cmd, cwd=log_path.parent, log_path=log_path, timeout=timeout)


__all__ = ["compose_update_commands", "update_host_packages"]
