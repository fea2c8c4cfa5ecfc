"""Supported router targets.

Maps the human-readable device names accepted on the command line to the
Image Builder coordinates needed to download and drive the right builder.
The set is closed: anything not listed in Device is rejected.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class ConfigurationError(Exception):
    """Raised when the requested build cannot be configured."""

    def __init__(self, message: str, code: str = "configuration_error") -> None:
        super().__init__(message)
        self.code = code


class UnknownTargetError(ConfigurationError):
    """Raised when a device name is not in the registry."""

    def __init__(self, name: str) -> None:
        supported = ", ".join(d.value for d in Device)
        super().__init__(
            f"Unknown target: {name!r} (supported: {supported})",
            code="unknown_target",
        )
        self.name = name


class Device(str, Enum):
    """Supported devices, valued by their display name."""

    RASPBERRY_PI_3B = "Raspberry Pi 3B"
    RASPBERRY_PI_4B = "Raspberry Pi 4B"
    NANOPI_R2S = "NanoPi-R2S"
    NANOPI_R5S = "NanoPi-R5S"
    ORANGE_PI_ZERO_3 = "Orange Pi Zero 3"
    X86_64 = "x86-64"


@dataclass(frozen=True)
class TargetSpec:
    """Image Builder coordinates of one device.

    Attributes:
        display_name: Name used on the command line.
        profile_id: Image Builder PROFILE selecting the board.
        target_system: Download path of the SoC family (e.g. 'x86/64').
        target_name: Same as target_system with '-' (e.g. 'x86-64').
        arch: Architecture triplet handed to the customization scripts.
    """

    display_name: str
    profile_id: str
    target_system: str
    target_name: str
    arch: tuple[str, str, str]

    def __post_init__(self) -> None:
        if not all([self.profile_id, self.target_system, self.target_name]):
            raise ValueError(f"Incomplete target spec for {self.display_name}")
        if len(self.arch) != 3 or not all(self.arch):
            raise ValueError(f"arch must hold three names for {self.display_name}")


_TARGETS: dict[Device, TargetSpec] = {
    Device.RASPBERRY_PI_3B: TargetSpec(
        display_name=Device.RASPBERRY_PI_3B.value,
        profile_id="rpi-3",
        target_system="bcm27xx/bcm2710",
        target_name="bcm27xx-bcm2710",
        arch=("armv7", "aarch64", "aarch64_cortex-a53"),
    ),
    Device.RASPBERRY_PI_4B: TargetSpec(
        display_name=Device.RASPBERRY_PI_4B.value,
        profile_id="rpi-4",
        target_system="bcm27xx/bcm2711",
        target_name="bcm27xx-bcm2711",
        arch=("arm64", "aarch64", "aarch64_cortex-a72"),
    ),
    Device.NANOPI_R2S: TargetSpec(
        display_name=Device.NANOPI_R2S.value,
        profile_id="friendlyarm_nanopi-r2s",
        target_system="rockchip/armv8",
        target_name="rockchip-armv8",
        arch=("armv8", "aarch64", "aarch64_generic"),
    ),
    Device.NANOPI_R5S: TargetSpec(
        display_name=Device.NANOPI_R5S.value,
        profile_id="friendlyarm_nanopi-r5s",
        target_system="rockchip/armv8",
        target_name="rockchip-armv8",
        arch=("armv8", "aarch64", "aarch64_generic"),
    ),
    Device.ORANGE_PI_ZERO_3: TargetSpec(
        display_name=Device.ORANGE_PI_ZERO_3.value,
        profile_id="xunlong_orangepi-zero3",
        target_system="sunxi/cortexa53",
        target_name="sunxi-cortexa53",
        arch=("armv8", "aarch64", "aarch64_generic"),
    ),
    Device.X86_64: TargetSpec(
        display_name=Device.X86_64.value,
        profile_id="generic",
        target_system="x86/64",
        target_name="x86-64",
        arch=("amd64", "x86_64", "x86_64"),
    ),
}


def resolve_target(name: str | Device) -> TargetSpec:
    """Look up the target for a device name.

    Args:
        name: Display name (e.g. 'Raspberry Pi 3B') or Device member.

    Returns:
        The matching TargetSpec.

    Raises:
        UnknownTargetError: If the name is not a supported device.
    """
    try:
        device = Device(name)
    except ValueError:
        raise UnknownTargetError(str(name)) from None
    return _TARGETS[device]


def list_targets() -> list[TargetSpec]:
    """Return every supported target in declaration order."""
    return [_TARGETS[d] for d in Device]


__all__ = [
    "ConfigurationError",
    "Device",
    "TargetSpec",
    "UnknownTargetError",
    "list_targets",
    "resolve_target",
]
