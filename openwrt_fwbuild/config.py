"""Configuration settings for openwrt_fwbuild.

Uses pydantic-settings for config parsing from environment variables
and defaults. Configuration precedence: CLI flags > env vars > defaults.
"""

from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_CUSTOMIZATION_SCRIPTS = [
    "external-package-urls.sh",
    "builder-patch.sh",
    "agh-core.sh",
    "misc.sh",
]

DEFAULT_HOST_PACKAGES = [
    "build-essential",
    "libncurses5-dev",
    "libncursesw5-dev",
    "zlib1g-dev",
    "gawk",
    "git",
    "gettext",
    "libssl-dev",
    "xsltproc",
    "rsync",
    "wget",
    "unzip",
    "tar",
    "gzip",
    "qemu-utils",
    "mkisofs",
    "zstd",
    "python3-distutils",
]


class Settings(BaseSettings):
    """Application settings.

    Settings are loaded from environment variables with the OWRT_FW_ prefix.
    CLI flags can override these at runtime.
    """

    model_config = SettingsConfigDict(
        env_prefix="OWRT_FW_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Paths
    assets_dir: Path = Field(
        default_factory=Path.cwd,
        description="Directory holding make-build.sh, scripts/, packages/, files/",
    )
    cache_dir: Path = Field(
        default_factory=Path.cwd,
        description="Directory where Image Builder archives are cached",
    )
    work_root: Path = Field(
        default_factory=Path.cwd,
        description="Directory in which working trees are created",
    )

    # Download
    download_base: str | None = Field(
        default=None,
        description="Mirror overriding https://downloads.<distro>.org",
    )
    verify_checksum: bool = Field(
        default=True,
        description="Compare the archive digest against the published sha256sums",
    )

    # Build
    image_prefix: str = Field(
        default="fri",
        min_length=1,
        description="Prefix for compiled image file names",
    )
    timezone: str = Field(
        default="Asia/Jakarta",
        description="Time zone used for date stamps",
    )
    customization_scripts: list[str] = Field(
        default_factory=lambda: list(DEFAULT_CUSTOMIZATION_SCRIPTS),
        description="Scripts run from scripts/ inside the working tree, in order",
    )
    host_packages: list[str] = Field(
        default_factory=lambda: list(DEFAULT_HOST_PACKAGES),
        description="OS packages installed when --update is set",
    )

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Logging level",
    )

    # Timeouts (in seconds)
    download_timeout: int = Field(
        default=3600,
        ge=60,
        description="Timeout for Image Builder downloads",
    )
    build_timeout: int | None = Field(
        default=None,
        ge=60,
        description="Timeout for each external build step (unset = no timeout)",
    )


def get_settings() -> Settings:
    """Get the application settings.

    Returns:
        Settings instance loaded from environment.
    """
    return Settings()


def print_settings_json(settings: Settings | None = None) -> str:
    """Render effective settings as JSON."""
    if settings is None:
        settings = get_settings()
    return settings.model_dump_json(indent=2)


__all__ = [
    "DEFAULT_CUSTOMIZATION_SCRIPTS",
    "DEFAULT_HOST_PACKAGES",
    "Settings",
    "get_settings",
    "print_settings_json",
]
