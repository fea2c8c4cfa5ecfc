"""Thin CLI wrapper for openwrt_fwbuild.

This module provides the command-line interface using Typer.
All business logic is delegated to core modules.
"""

import importlib
import json
import logging
from typing import Annotated, Any

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.table import Table
from typer.core import TyperCommand

from openwrt_fwbuild import __version__
from openwrt_fwbuild.builds.artifacts import ArtifactError
from openwrt_fwbuild.builds.runner import ExternalToolError
from openwrt_fwbuild.builds.service import expand_variants, run_firmware_build
from openwrt_fwbuild.builds.workspace import WorkspaceError
from openwrt_fwbuild.config import get_settings, print_settings_json
from openwrt_fwbuild.imagebuilder.fetch import (
    DownloadError,
    ExtractionError,
    VerificationError,
)
from openwrt_fwbuild.imagebuilder.release import parse_release_branch
from openwrt_fwbuild.targets import ConfigurationError, list_targets, resolve_target
from openwrt_fwbuild.types import ALL_TUNNELS, BuildRequest, BuildSummary, Toggle

DEFAULT_TARGET = "Orange Pi Zero 3"
DEFAULT_RELEASE_BRANCH = "openwrt:snapshots"

# Failures that end a run with exit status 1
BUILD_ERRORS = (
    ConfigurationError,
    DownloadError,
    VerificationError,
    ExtractionError,
    WorkspaceError,
    ExternalToolError,
    ArtifactError,
)

app = typer.Typer(
    name="fwbuild",
    help="Build OpenWrt and ImmortalWrt firmware with the Image Builder",
    add_completion=False,
    context_settings={"help_option_names": ["-h", "--help"]},
)
console = Console()
err_console = Console(stderr=True)

# UsageError from the click that Typer runs on; newer Typer bundles its own copy
UsageError = importlib.import_module(typer.BadParameter.__module__).UsageError


class BuildCommand(TyperCommand):
    """Command that reports usage errors with exit status 1."""

    def make_context(
        self,
        info_name: str | None,
        args: list[str],
        parent: typer.Context | None = None,
        **extra: Any,
    ) -> typer.Context:
        try:
            return super().make_context(info_name, args, parent=parent, **extra)
        except UsageError as e:
            e.exit_code = 1
            raise


def configure_logging(level: str) -> None:
    """Send log records through rich on stderr."""
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=err_console, show_path=False)],
    )


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"openwrt-fwbuild version {__version__}")
        raise typer.Exit()


def list_targets_callback(value: bool) -> None:
    """Print the supported targets and exit."""
    if not value:
        return
    table = Table(title="Supported targets")
    table.add_column("Target")
    table.add_column("Profile")
    table.add_column("Target system")
    table.add_column("Architecture")
    for spec in list_targets():
        table.add_row(
            spec.display_name,
            spec.profile_id,
            spec.target_system,
            " / ".join(spec.arch),
        )
    console.print(table)
    raise typer.Exit()


def show_config_callback(value: bool) -> None:
    """Print the effective configuration as JSON and exit."""
    if value:
        console.print(
            print_settings_json(get_settings()),
            soft_wrap=True,
            markup=False,
            highlight=False,
        )
        raise typer.Exit()


def _summary_to_dict(summary: BuildSummary) -> dict[str, Any]:
    return {
        "working_dir": str(summary.working_dir),
        "output_dir": str(summary.output_dir),
        "manifest_path": str(summary.manifest_path),
        "archive_cache_hit": summary.archive_cache_hit,
        "custom_package_count": summary.custom_package_count,
        "artifacts": [
            {
                "variant": a.variant,
                "filename": a.destination_name,
                "size_bytes": a.size_bytes,
                "sha256": a.sha256,
            }
            for a in summary.artifacts
        ],
    }


@app.command(cls=BuildCommand)
def build(
    target: Annotated[
        str,
        typer.Option("--target", "-t", help="Set the target device"),
    ] = DEFAULT_TARGET,
    release_branch: Annotated[
        str,
        typer.Option(
            "--release-branch", "-r", help="Set the release branch (<distro>:<branch>)"
        ),
    ] = DEFAULT_RELEASE_BRANCH,
    tunnel: Annotated[
        str,
        typer.Option("--tunnel", "-n", help="Set the tunnel bundle, or 'all'"),
    ] = ALL_TUNNELS,
    clean: Annotated[
        Toggle,
        typer.Option("--clean", "-c", help="Clean build", case_sensitive=False),
    ] = Toggle.TRUE,
    squashfs: Annotated[
        Toggle,
        typer.Option(
            "--squashfs", "-s", help="Generate SquashFS image", case_sensitive=False
        ),
    ] = Toggle.FALSE,
    update: Annotated[
        Toggle,
        typer.Option(
            "--update", "-u", help="Update host build dependencies", case_sensitive=False
        ),
    ] = Toggle.FALSE,
    remove: Annotated[
        Toggle,
        typer.Option("--remove", "-rm", help="Remove cache", case_sensitive=False),
    ] = Toggle.FALSE,
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output the build summary as JSON"),
    ] = False,
    list_targets_flag: Annotated[
        bool | None,
        typer.Option(
            "--list-targets",
            help="Show supported targets and exit",
            callback=list_targets_callback,
            is_eager=True,
        ),
    ] = None,
    show_config: Annotated[
        bool | None,
        typer.Option(
            "--show-config",
            help="Show effective configuration and exit",
            callback=show_config_callback,
            is_eager=True,
        ),
    ] = None,
    version: Annotated[
        bool | None,
        typer.Option(
            "--version",
            "-V",
            help="Show version and exit",
            callback=version_callback,
            is_eager=True,
        ),
    ] = None,
) -> None:
    """Build firmware images for a target, one per tunnel variant."""
    try:
        spec = resolve_target(target)
        release = parse_release_branch(release_branch)
        variants = expand_variants(tunnel, release.branch)
    except ConfigurationError as e:
        err_console.print(f"[red]{escape(str(e))}[/red]")
        raise typer.Exit(code=1) from None

    settings = get_settings()
    configure_logging(settings.log_level)

    if not json_output:
        console.print(f"Building firmware for target: [bold]{spec.display_name}[/bold]")
        console.print(f"Using release branch: {release}")
        console.print(f"Tunnel setting: {tunnel} ({len(variants)} image(s))")
        console.print(f"Clean build: {clean.value}")
        console.print(f"Generate SquashFS image: {squashfs.value}")
        console.print()

    request = BuildRequest(
        target=spec,
        release=release,
        tunnel=tunnel,
        clean=bool(clean),
        squashfs=bool(squashfs),
        update=bool(update),
        remove_cache=bool(remove),
    )

    try:
        summary = run_firmware_build(request, settings)
    except BUILD_ERRORS as e:
        err_console.print(f"[red]Build failed: {escape(str(e))}[/red]")
        log_path = getattr(e, "log_path", None)
        if log_path:
            err_console.print(f"  Log: {log_path}")
        raise typer.Exit(code=1) from None

    if json_output:
        console.print(
            json.dumps(_summary_to_dict(summary), indent=2),
            soft_wrap=True,
            markup=False,
            highlight=False,
        )
        return

    console.print()
    console.print(
        "[green]✓ Firmware compilation completed successfully for target: "
        f"{spec.display_name}[/green]"
    )
    console.print(f"  Stored in: {summary.output_dir}")
    console.print(f"  Total custom packages: {summary.custom_package_count}")
    if summary.archive_cache_hit:
        console.print("  Image Builder archive: reused from cache")
    console.print()
    for a in summary.artifacts:
        console.print(f"  {a.destination_name}  ({a.size_bytes} bytes)")
        console.print(f"    sha256: {a.sha256}")


def main() -> None:
    """Console script entry point."""
    app()


__all__ = ["app", "build", "main"]
