"""Image Builder fetch module.

This module handles:
- Downloading the Image Builder archive once and reusing it afterwards
- Fetching the published sha256sums and verifying the archive against it
- Extraction to a temporary directory
- Purging cached files once the working tree is in place
"""

from __future__ import annotations

import hashlib
import logging
import shutil
import subprocess
import tarfile
import tempfile
from dataclasses import dataclass
from pathlib import Path

import httpx

from openwrt_fwbuild.imagebuilder.release import ArchiveDescriptor

logger = logging.getLogger(__name__)

# Timeout for the sha256sums request (seconds)
CHECKSUMS_TIMEOUT = 30

# Timeout for downloads (seconds)
DOWNLOAD_TIMEOUT = 3600

# Chunk size for downloads and hashing (bytes)
DOWNLOAD_CHUNK_SIZE = 64 * 1024  # 64 KB

# Local name of the fetched checksum manifest
CHECKSUMS_FILENAME = "sha256sums"


class DownloadError(Exception):
    """Raised when the archive or its checksums cannot be downloaded."""

    def __init__(self, message: str, code: str = "download_error") -> None:
        """Initialize DownloadError.

        Args:
            message: Error description.
            code: Error code for structured error handling.
        """
        super().__init__(message)
        self.code = code


class VerificationError(Exception):
    """Raised when checksum verification fails."""

    def __init__(self, message: str, code: str = "verification_error") -> None:
        super().__init__(message)
        self.code = code


class ExtractionError(Exception):
    """Raised when archive extraction fails."""

    def __init__(self, message: str, code: str = "extraction_error") -> None:
        super().__init__(message)
        self.code = code


@dataclass
class ArchiveResult:
    """A local Image Builder archive ready for extraction."""

    archive_path: Path
    checksum: str
    cache_hit: bool
    expected_checksum: str | None = None


def parse_sha256sums(content: str, archive_filename: str) -> str | None:
    """Parse SHA256SUMS file to find checksum for a specific file.

    Args:
        content: Content of SHA256SUMS file.
        archive_filename: Filename to look up.

    Returns:
        SHA256 checksum string, or None if not found.
    """
    for line in content.splitlines():
        line = line.strip()
        if not line or line.startswith("#"):
            continue

        parts = line.split(maxsplit=1)
        if len(parts) != 2:
            continue

        checksum, filename = parts
        # Remove leading '*' if present (binary mode indicator)
        filename = filename.lstrip("*").strip()

        if filename == archive_filename:
            return checksum.lower()

    return None


def compute_file_sha256(file_path: Path, chunk_size: int = DOWNLOAD_CHUNK_SIZE) -> str:
    """Compute SHA256 checksum of a file.

    Args:
        file_path: Path to the file.
        chunk_size: Size of chunks to read.

    Returns:
        SHA256 hex digest.
    """
    sha256 = hashlib.sha256()
    with file_path.open("rb") as f:
        while chunk := f.read(chunk_size):
            sha256.update(chunk)
    return sha256.hexdigest()


def download_file(
    client: httpx.Client,
    url: str,
    dest_path: Path,
    timeout: float = DOWNLOAD_TIMEOUT,
    chunk_size: int = DOWNLOAD_CHUNK_SIZE,
) -> str:
    """Stream a file to disk.

    The body is written to a temporary file next to dest_path and moved into
    place only when the transfer completes, so an interrupted download never
    looks like a cached archive.

    Args:
        client: HTTPX client instance.
        url: URL to download from.
        dest_path: Destination path for the downloaded file.
        timeout: Download timeout in seconds.
        chunk_size: Size of chunks to download.

    Returns:
        SHA256 hex digest of the downloaded content.

    Raises:
        DownloadError: If download fails.
    """
    logger.info("Downloading %s to %s", url, dest_path)
    dest_path.parent.mkdir(parents=True, exist_ok=True)

    with tempfile.NamedTemporaryFile(
        dir=dest_path.parent, suffix=".tmp", delete=False
    ) as tmp_file:
        tmp_path = Path(tmp_file.name)

    try:
        with client.stream("GET", url, timeout=timeout) as response:
            response.raise_for_status()

            total_bytes = 0
            sha256 = hashlib.sha256()
            with tmp_path.open("wb") as f:
                for chunk in response.iter_bytes(chunk_size):
                    f.write(chunk)
                    sha256.update(chunk)
                    total_bytes += len(chunk)

        shutil.move(str(tmp_path), str(dest_path))
        computed_checksum = sha256.hexdigest()
        logger.info(
            "Downloaded %s (%d bytes, checksum: %s)",
            dest_path.name,
            total_bytes,
            computed_checksum[:16] + "...",
        )
        return computed_checksum

    except httpx.HTTPStatusError as e:
        raise DownloadError(
            f"HTTP error downloading {url}: {e.response.status_code} {e.response.reason_phrase}",
            code="http_error",
        ) from e
    except httpx.TimeoutException as e:
        raise DownloadError(
            f"Timeout downloading {url}",
            code="timeout",
        ) from e
    except httpx.RequestError as e:
        raise DownloadError(
            f"Network error downloading {url}: {e}",
            code="network_error",
        ) from e
    finally:
        tmp_path.unlink(missing_ok=True)


def fetch_checksums(
    client: httpx.Client,
    sha256sums_url: str,
    timeout: float = CHECKSUMS_TIMEOUT,
) -> str:
    """Fetch SHA256SUMS file content.

    Args:
        client: HTTPX client instance.
        sha256sums_url: URL to SHA256SUMS file.
        timeout: Request timeout in seconds.

    Returns:
        Content of SHA256SUMS file.

    Raises:
        DownloadError: If fetch fails.
    """
    logger.debug("Fetching checksums from %s", sha256sums_url)

    try:
        response = client.get(sha256sums_url, timeout=timeout)
        response.raise_for_status()
        return response.text

    except httpx.HTTPStatusError as e:
        raise DownloadError(
            f"HTTP error fetching checksums: {e.response.status_code}",
            code="http_error",
        ) from e
    except httpx.TimeoutException as e:
        raise DownloadError(
            f"Timeout fetching checksums from {sha256sums_url}",
            code="timeout",
        ) from e
    except httpx.RequestError as e:
        raise DownloadError(
            f"Network error fetching checksums: {e}",
            code="network_error",
        ) from e


def ensure_archive(
    client: httpx.Client,
    descriptor: ArchiveDescriptor,
    cache_dir: Path,
    verify_checksum: bool = True,
    remove_checksums: bool = False,
    timeout: float = DOWNLOAD_TIMEOUT,
) -> ArchiveResult:
    """Make sure the Image Builder archive is present and matches sha256sums.

    An archive already present under cache_dir is reused without touching
    the network for it. The checksum manifest is fetched on every run.

    Args:
        client: HTTPX client instance.
        descriptor: Archive name and URLs.
        cache_dir: Directory holding cached archives.
        verify_checksum: Fail when the digest differs from the published one.
        remove_checksums: Delete the saved sha256sums after verification.
        timeout: Download timeout in seconds.

    Returns:
        ArchiveResult describing the local archive.

    Raises:
        DownloadError: If the archive or sha256sums cannot be fetched.
        VerificationError: If the archive digest does not match.
    """
    archive_path = cache_dir / descriptor.file_name

    if archive_path.is_file():
        logger.info("Using existing file: %s", archive_path.name)
        cache_hit = True
    else:
        logger.info("Downloading file: %s", archive_path.name)
        download_file(client, descriptor.download_url, archive_path, timeout=timeout)
        cache_hit = False

    logger.info("Verifying checksum for %s", archive_path.name)
    checksums_content = fetch_checksums(client, descriptor.checksum_url)
    checksums_path = cache_dir / CHECKSUMS_FILENAME
    checksums_path.write_text(checksums_content, encoding="utf-8")

    checksum = compute_file_sha256(archive_path)
    logger.info("%s  %s", checksum, archive_path.name)

    expected = parse_sha256sums(checksums_content, descriptor.file_name)
    if expected is None:
        logger.warning(
            "Could not find checksum for %s in sha256sums", descriptor.file_name
        )
    elif checksum != expected:
        message = (
            f"Checksum mismatch for {descriptor.file_name}: "
            f"expected {expected}, got {checksum}"
        )
        if verify_checksum:
            # Force a fresh download on the next run
            archive_path.unlink(missing_ok=True)
            raise VerificationError(message + " (archive removed, re-run to fetch)")
        logger.warning(message)

    if remove_checksums:
        checksums_path.unlink(missing_ok=True)

    return ArchiveResult(
        archive_path=archive_path,
        checksum=checksum,
        cache_hit=cache_hit,
        expected_checksum=expected,
    )


def find_imagebuilder_root(extract_dir: Path, archive_name: str) -> Path:
    """Locate the Image Builder directory inside an extraction directory.

    Args:
        extract_dir: Directory the archive was extracted into.
        archive_name: File name of the archive.

    Returns:
        Path to the Image Builder root.

    Raises:
        ExtractionError: If no unambiguous root can be found.
    """
    stem = archive_name.removesuffix(".zst").removesuffix(".xz").removesuffix(".tar")
    exact = extract_dir / stem
    if exact.is_dir():
        return exact

    candidates = [
        d for d in extract_dir.iterdir() if d.is_dir() and "-imagebuilder-" in d.name
    ]
    if len(candidates) == 1:
        return candidates[0]
    if not candidates:
        raise ExtractionError(
            f"No Image Builder directory found in {extract_dir}",
            code="missing_root",
        )
    raise ExtractionError(
        f"Multiple Image Builder directories in {extract_dir}: "
        f"{sorted(d.name for d in candidates)}",
        code="ambiguous_root",
    )


def extract_archive(archive_path: Path, dest_dir: Path) -> Path:
    """Extract Image Builder archive to destination directory.

    Args:
        archive_path: Path to the archive file.
        dest_dir: Destination directory for extraction.

    Returns:
        Path to the extracted Image Builder root directory.

    Raises:
        ExtractionError: If extraction fails.
    """
    logger.info("Extracting %s to %s", archive_path.name, dest_dir)

    dest_dir.mkdir(parents=True, exist_ok=True)

    try:
        if archive_path.name.endswith(".zst"):
            # Use system tar for zstd support
            result = subprocess.run(
                [
                    "tar",
                    "--use-compress-program=zstd",
                    "-xf",
                    str(archive_path),
                    "-C",
                    str(dest_dir),
                ],
                capture_output=True,
                text=True,
                check=False,
            )
            if result.returncode != 0:
                raise ExtractionError(
                    f"Failed to extract {archive_path}: {result.stderr.strip()}",
                    code="tar_error",
                )
        else:
            with tarfile.open(archive_path, "r:xz") as tar:
                members = tar.getmembers()
                if not members:
                    raise ExtractionError(
                        f"Archive {archive_path} is empty",
                        code="empty_archive",
                    )
                tar.extractall(dest_dir, filter="data")

    except tarfile.TarError as e:
        raise ExtractionError(
            f"Failed to extract {archive_path}: {e}",
            code="tar_error",
        ) from e
    except OSError as e:
        raise ExtractionError(
            f"OS error extracting {archive_path}: {e}",
            code="os_error",
        ) from e

    root_dir = find_imagebuilder_root(dest_dir, archive_path.name)
    logger.info("Extracted Image Builder to %s", root_dir)
    return root_dir


def purge_cache(extract_dir: Path, archive_path: Path) -> None:
    """Remove the extracted tree and the cached archive.

    Args:
        extract_dir: Temporary extraction directory.
        archive_path: Cached archive file.
    """
    if extract_dir.exists():
        logger.info("Removing extracted files in %s", extract_dir)
        shutil.rmtree(extract_dir)
    if archive_path.exists():
        logger.info("Removing cached archive %s", archive_path.name)
        archive_path.unlink()


__all__ = [
    "CHECKSUMS_FILENAME",
    "ArchiveResult",
    "DownloadError",
    "ExtractionError",
    "VerificationError",
    "compute_file_sha256",
    "download_file",
    "ensure_archive",
    "extract_archive",
    "fetch_checksums",
    "find_imagebuilder_root",
    "parse_sha256sums",
    "purge_cache",
]
