"""Runner for the external build commands.

This module handles:
- Composing the `make clean` and `make-build.sh` commands
- Executing external commands with subprocess inside the working tree
- Capturing stdout/stderr to log files
- Enforcing optional timeouts
"""

from __future__ import annotations

import logging
import os
import shlex
import subprocess
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path

logger = logging.getLogger(__name__)

BUILD_DRIVER = "make-build.sh"


class ExternalToolError(Exception):
    """Raised when an external command fails or cannot be started."""

    def __init__(
        self,
        message: str,
        exit_code: int | None = None,
        log_path: Path | None = None,
        code: str = "external_tool_error",
    ) -> None:
        super().__init__(message)
        self.exit_code = exit_code
        self.log_path = log_path
        self.code = code


@dataclass
class CommandResult:
    """Result of a successful external command.

    Attributes:
        command: The command that was executed.
        log_path: Path to the log file holding its output.
        started_at: Start time.
        finished_at: Finish time.
    """

    command: str
    log_path: Path
    started_at: datetime
    finished_at: datetime

    @property
    def duration(self) -> float:
        return (self.finished_at - self.started_at).total_seconds()


def compose_clean_command() -> list[str]:
    """Compose the Image Builder clean command."""
    return ["make", "clean"]


def compose_build_command(profile_id: str, variant: str) -> list[str]:
    """Compose the build driver invocation for one variant.

    Args:
        profile_id: Image Builder profile.
        variant: Tunnel identifier.

    Returns:
        Command as list of strings suitable for subprocess.
    """
    return ["bash", BUILD_DRIVER, profile_id, variant]


def compose_script_command(script_name: str) -> list[str]:
    """Compose the invocation of a customization script in scripts/."""
    return ["bash", f"scripts/{script_name}"]


def run_command(
    cmd: list[str],
    cwd: Path,
    log_path: Path,
    env_override: dict[str, str] | None = None,
    timeout: int | None = None,
) -> CommandResult:
    """Run an external command, appending its output to a log file.

    Args:
        cmd: Command and arguments.
        cwd: Working directory for the command.
        log_path: Log file (appended to, created if missing).
        env_override: Variables added on top of the process environment.
        timeout: Timeout in seconds (None = no timeout).

    Returns:
        CommandResult for the completed command.

    Raises:
        ExternalToolError: If the command exits non-zero, times out, or
            cannot be started.
    """
    cmd_str = shlex.join(cmd)
    logger.info("Executing: %s", cmd_str)
    logger.debug("Working directory: %s", cwd)

    log_path.parent.mkdir(parents=True, exist_ok=True)
    started_at = datetime.now(timezone.utc)

    env: dict[str, str] | None = None
    if env_override:
        env = dict(os.environ)
        env.update(env_override)

    try:
        with log_path.open("a") as log_file:
            log_file.write(f"# Command: {cmd_str}\n")
            log_file.write(f"# Started: {started_at.isoformat()}\n")
            log_file.write(f"# CWD: {cwd}\n")
            log_file.write("# " + "=" * 70 + "\n\n")
            log_file.flush()

            result = subprocess.run(
                cmd,
                cwd=cwd,
                stdout=log_file,
                stderr=subprocess.STDOUT,
                timeout=timeout,
                env=env,
                check=False,
            )

    except subprocess.TimeoutExpired as e:
        error_message = f"{cmd_str} timed out after {timeout} seconds"
        logger.error("%s. See log: %s", error_message, log_path)
        with log_path.open("a") as log_file:
            log_file.write(f"\n# TIMEOUT after {timeout} seconds\n")
        raise ExternalToolError(
            error_message,
            exit_code=-1,
            log_path=log_path,
            code="timeout",
        ) from e

    except OSError as e:
        error_message = f"Failed to execute {cmd_str}: {e}"
        logger.error(error_message)
        raise ExternalToolError(
            error_message,
            log_path=log_path,
            code="execution_error",
        ) from e

    finished_at = datetime.now(timezone.utc)
    exit_code = result.returncode

    with log_path.open("a") as log_file:
        log_file.write(f"\n# Finished: {finished_at.isoformat()}\n")
        log_file.write(f"# Exit code: {exit_code}\n")
        duration = (finished_at - started_at).total_seconds()
        log_file.write(f"# Duration: {duration:.1f}s\n\n")

    if exit_code != 0:
        error_message = f"{cmd_str} failed with exit code {exit_code}"
        logger.error("%s. See log: %s", error_message, log_path)
        raise ExternalToolError(
            error_message,
            exit_code=exit_code,
            log_path=log_path,
            code="nonzero_exit",
        )

    return CommandResult(
        command=cmd_str,
        log_path=log_path,
        started_at=started_at,
        finished_at=finished_at,
    )


def run_clean(
    working_dir: Path,
    log_path: Path,
    env_override: dict[str, str] | None = None,
    timeout: int | None = None,
) -> CommandResult:
    """Reset the Image Builder build state."""
    return run_command(
        compose_clean_command(),
        cwd=working_dir,
        log_path=log_path,
        env_override=env_override,
        timeout=timeout,
    )


def run_build(
    working_dir: Path,
    profile_id: str,
    variant: str,
    log_path: Path,
    env_override: dict[str, str] | None = None,
    timeout: int | None = None,
) -> CommandResult:
    """Run the build driver for one variant.

    Args:
        working_dir: Working tree holding make-build.sh.
        profile_id: Image Builder profile.
        variant: Tunnel identifier.
        log_path: Log file for the build output.
        env_override: Collaborator environment.
        timeout: Build timeout in seconds (None = no timeout).

    Returns:
        CommandResult for the build.

    Raises:
        ExternalToolError: If the build fails.
    """
    return run_command(
        compose_build_command(profile_id, variant),
        cwd=working_dir,
        log_path=log_path,
        env_override=env_override,
        timeout=timeout,
    )


__all__ = [
    "BUILD_DRIVER",
    "CommandResult",
    "ExternalToolError",
    "compose_build_command",
    "compose_clean_command",
    "compose_script_command",
    "run_build",
    "run_clean",
    "run_command",
]
