"""Image Builder acquisition module.

This module handles:
- Parsing `<distro>:<branch>` release identifiers
- Discovering official Image Builder archive URLs for a target
- Downloading/verifying archives with a local file cache
- Extraction and cache purging
"""

from openwrt_fwbuild.imagebuilder.fetch import (
    ArchiveResult,
    DownloadError,
    ExtractionError,
    VerificationError,
    ensure_archive,
    extract_archive,
    purge_cache,
)
from openwrt_fwbuild.imagebuilder.release import (
    ArchiveDescriptor,
    InvalidReleaseError,
    ReleaseSpec,
    build_archive_descriptor,
    parse_release_branch,
)

__all__ = [
    # Release module
    "ArchiveDescriptor",
    "InvalidReleaseError",
    "ReleaseSpec",
    "build_archive_descriptor",
    "parse_release_branch",
    # Fetch module
    "ArchiveResult",
    "DownloadError",
    "ExtractionError",
    "VerificationError",
    "ensure_archive",
    "extract_archive",
    "purge_cache",
]
