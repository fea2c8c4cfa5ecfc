"""Build orchestration module.

This module handles:
- Working tree preparation and customization scripts
- Running the external build once per tunnel variant
- Image collection and checksum publishing
"""

from openwrt_fwbuild.builds.artifacts import ArtifactError
from openwrt_fwbuild.builds.runner import ExternalToolError
from openwrt_fwbuild.builds.workspace import WorkspaceError

__all__ = ["ArtifactError", "ExternalToolError", "WorkspaceError"]

# Lazy imports for submodules to avoid circular imports
# Access via openwrt_fwbuild.builds.service, etc.
