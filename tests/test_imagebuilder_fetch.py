"""Tests for Image Builder fetch module.

These tests use mocked HTTP responses to test downloading, the archive
cache, checksum verification, and extraction.
"""

import hashlib
import tarfile
from io import BytesIO
from pathlib import Path
from unittest.mock import MagicMock, patch

import httpx
import pytest
import respx

from openwrt_fwbuild.imagebuilder.fetch import (
    CHECKSUMS_FILENAME,
    ArchiveResult,
    DownloadError,
    ExtractionError,
    VerificationError,
    compute_file_sha256,
    download_file,
    ensure_archive,
    extract_archive,
    fetch_checksums,
    find_imagebuilder_root,
    parse_sha256sums,
    purge_cache,
)
from openwrt_fwbuild.imagebuilder.release import ArchiveDescriptor

BASE_URL = "https://downloads.openwrt.org/releases/23.05.3/targets/x86/64"
ARCHIVE_NAME = "openwrt-imagebuilder-23.05.3-x86-64.Linux-x86_64.tar.xz"
ARCHIVE_URL = f"{BASE_URL}/{ARCHIVE_NAME}"
CHECKSUMS_URL = f"{BASE_URL}/sha256sums"


def make_xz_archive(root_name: str) -> bytes:
    """Build a small .tar.xz shaped like an Image Builder archive."""
    buf = BytesIO()
    with tarfile.open(fileobj=buf, mode="w:xz") as tar:
        for name, content in [
            (f"{root_name}/Makefile", b"all:\n"),
            (f"{root_name}/.config", b"CONFIG_TARGET_x86=y\n"),
            (f"{root_name}/target/linux/readme", b"target\n"),
        ]:
            info = tarfile.TarInfo(name)
            info.size = len(content)
            tar.addfile(info, BytesIO(content))
    return buf.getvalue()


@pytest.fixture
def descriptor() -> ArchiveDescriptor:
    return ArchiveDescriptor(file_name=ARCHIVE_NAME, base_url=BASE_URL)


class TestParseSha256sums:
    """Tests for parse_sha256sums function."""

    def test_parse_standard_format(self):
        """Should parse standard SHA256SUMS format."""
        content = f"""abc123def456 *{ARCHIVE_NAME}
789xyz000111 *openwrt-23.05.3-x86-64-rootfs.tar.gz
"""
        assert parse_sha256sums(content, ARCHIVE_NAME) == "abc123def456"

    def test_text_mode_format(self):
        """Should parse text mode format with two spaces."""
        content = "abc123def456  openwrt-imagebuilder.tar.xz\n"
        assert parse_sha256sums(content, "openwrt-imagebuilder.tar.xz") == "abc123def456"

    def test_file_not_found(self):
        """Should return None if file not in checksums."""
        content = "abc123def456  other-file.tar.xz\n"
        assert parse_sha256sums(content, "missing-file.tar.xz") is None

    def test_ignore_comments_and_blank_lines(self):
        """Should ignore comment and blank lines."""
        content = "# comment\n\nABC123  target-file.tar.xz\n"
        assert parse_sha256sums(content, "target-file.tar.xz") == "abc123"


class TestComputeFileSha256:
    """Tests for compute_file_sha256 function."""

    def test_large_file_chunked(self, tmp_path):
        """Should match hashlib for files larger than the chunk size."""
        test_file = tmp_path / "large.bin"
        content = b"A" * (128 * 1024)
        test_file.write_bytes(content)

        result = compute_file_sha256(test_file, chunk_size=16 * 1024)
        assert result == hashlib.sha256(content).hexdigest()


class TestDownloadFile:
    """Tests for download_file function."""

    @respx.mock
    def test_successful_download(self, tmp_path):
        """Should download file and return its checksum."""
        content = b"Test file content"
        respx.get("https://example.com/file.bin").mock(
            return_value=httpx.Response(200, content=content)
        )

        dest_path = tmp_path / "sub" / "downloaded.bin"
        with httpx.Client() as client:
            checksum = download_file(client, "https://example.com/file.bin", dest_path)

        assert dest_path.read_bytes() == content
        assert checksum == hashlib.sha256(content).hexdigest()
        assert list(dest_path.parent.glob("*.tmp")) == []

    @respx.mock
    def test_http_error(self, tmp_path):
        """Should raise DownloadError and leave no file behind."""
        respx.get("https://example.com/missing.bin").mock(
            return_value=httpx.Response(404)
        )

        dest_path = tmp_path / "missing.bin"
        with httpx.Client() as client, pytest.raises(DownloadError) as exc_info:
            download_file(client, "https://example.com/missing.bin", dest_path)

        assert exc_info.value.code == "http_error"
        assert not dest_path.exists()
        assert list(tmp_path.glob("*.tmp")) == []

    @respx.mock
    def test_network_error(self, tmp_path):
        """Should wrap transport failures."""
        respx.get("https://example.com/file.bin").mock(
            side_effect=httpx.ConnectError("connection refused")
        )

        with httpx.Client() as client, pytest.raises(DownloadError) as exc_info:
            download_file(client, "https://example.com/file.bin", tmp_path / "f.bin")

        assert exc_info.value.code == "network_error"

    @respx.mock
    def test_timeout(self, tmp_path):
        """Should wrap timeouts."""
        respx.get("https://example.com/file.bin").mock(
            side_effect=httpx.ReadTimeout("timed out")
        )

        with httpx.Client() as client, pytest.raises(DownloadError) as exc_info:
            download_file(client, "https://example.com/file.bin", tmp_path / "f.bin")

        assert exc_info.value.code == "timeout"


class TestFetchChecksums:
    """Tests for fetch_checksums function."""

    @respx.mock
    def test_success(self):
        """Should return manifest text."""
        respx.get(CHECKSUMS_URL).mock(
            return_value=httpx.Response(200, text="abc  file\n")
        )
        with httpx.Client() as client:
            assert fetch_checksums(client, CHECKSUMS_URL) == "abc  file\n"

    @respx.mock
    def test_http_error(self):
        """Should raise DownloadError on HTTP error."""
        respx.get(CHECKSUMS_URL).mock(return_value=httpx.Response(500))
        with httpx.Client() as client, pytest.raises(DownloadError):
            fetch_checksums(client, CHECKSUMS_URL)


class TestEnsureArchive:
    """Tests for ensure_archive function."""

    @respx.mock
    def test_downloads_when_missing(self, tmp_path, descriptor):
        """Should download, save sha256sums, and verify."""
        content = b"archive bytes"
        digest = hashlib.sha256(content).hexdigest()
        archive_route = respx.get(ARCHIVE_URL).mock(
            return_value=httpx.Response(200, content=content)
        )
        respx.get(CHECKSUMS_URL).mock(
            return_value=httpx.Response(200, text=f"{digest} *{ARCHIVE_NAME}\n")
        )

        with httpx.Client() as client:
            result = ensure_archive(client, descriptor, tmp_path)

        assert isinstance(result, ArchiveResult)
        assert result.cache_hit is False
        assert result.archive_path == tmp_path / ARCHIVE_NAME
        assert result.checksum == digest
        assert result.expected_checksum == digest
        assert archive_route.call_count == 1
        assert (tmp_path / CHECKSUMS_FILENAME).exists()

    @pytest.mark.respx(assert_all_called=False)
    def test_cache_hit_skips_download(self, respx_mock, tmp_path, descriptor):
        """An existing archive should be reused with zero archive fetches."""
        content = b"cached archive"
        (tmp_path / ARCHIVE_NAME).write_bytes(content)
        digest = hashlib.sha256(content).hexdigest()
        archive_route = respx_mock.get(ARCHIVE_URL).mock(
            return_value=httpx.Response(200, content=b"fresh")
        )
        checksums_route = respx_mock.get(CHECKSUMS_URL).mock(
            return_value=httpx.Response(200, text=f"{digest} *{ARCHIVE_NAME}\n")
        )

        with httpx.Client() as client:
            result = ensure_archive(client, descriptor, tmp_path)

        assert result.cache_hit is True
        assert result.archive_path == tmp_path / ARCHIVE_NAME
        assert archive_route.call_count == 0
        assert checksums_route.call_count == 1
        assert result.archive_path.read_bytes() == content

    @respx.mock
    def test_mismatch_removes_archive(self, tmp_path, descriptor):
        """A digest mismatch should fail and drop the cached archive."""
        (tmp_path / ARCHIVE_NAME).write_bytes(b"stale snapshot")
        respx.get(CHECKSUMS_URL).mock(
            return_value=httpx.Response(200, text=f"{'0' * 64} *{ARCHIVE_NAME}\n")
        )

        with httpx.Client() as client, pytest.raises(VerificationError) as exc_info:
            ensure_archive(client, descriptor, tmp_path)

        assert "Checksum mismatch" in str(exc_info.value)
        assert not (tmp_path / ARCHIVE_NAME).exists()

    @respx.mock
    def test_mismatch_tolerated_without_verification(self, tmp_path, descriptor):
        """With verification off, a mismatch should only be reported."""
        (tmp_path / ARCHIVE_NAME).write_bytes(b"stale snapshot")
        respx.get(CHECKSUMS_URL).mock(
            return_value=httpx.Response(200, text=f"{'0' * 64} *{ARCHIVE_NAME}\n")
        )

        with httpx.Client() as client:
            result = ensure_archive(
                client, descriptor, tmp_path, verify_checksum=False
            )

        assert result.archive_path.exists()

    @respx.mock
    def test_missing_entry_is_not_fatal(self, tmp_path, descriptor):
        """A manifest without an entry for the archive should not fail."""
        (tmp_path / ARCHIVE_NAME).write_bytes(b"archive")
        respx.get(CHECKSUMS_URL).mock(
            return_value=httpx.Response(200, text="abc *something-else.tar.xz\n")
        )

        with httpx.Client() as client:
            result = ensure_archive(client, descriptor, tmp_path)

        assert result.expected_checksum is None

    @respx.mock
    def test_remove_checksums(self, tmp_path, descriptor):
        """Should delete the saved sha256sums when asked."""
        content = b"archive"
        (tmp_path / ARCHIVE_NAME).write_bytes(content)
        digest = hashlib.sha256(content).hexdigest()
        respx.get(CHECKSUMS_URL).mock(
            return_value=httpx.Response(200, text=f"{digest} *{ARCHIVE_NAME}\n")
        )

        with httpx.Client() as client:
            ensure_archive(client, descriptor, tmp_path, remove_checksums=True)

        assert not (tmp_path / CHECKSUMS_FILENAME).exists()
        assert (tmp_path / ARCHIVE_NAME).exists()

    @pytest.mark.respx(assert_all_called=False)
    def test_download_failure(self, respx_mock, tmp_path, descriptor):
        """A failed archive download should be fatal."""
        respx_mock.get(ARCHIVE_URL).mock(return_value=httpx.Response(404))
        checksums_route = respx_mock.get(CHECKSUMS_URL).mock(
            return_value=httpx.Response(200, text="")
        )

        with httpx.Client() as client, pytest.raises(DownloadError):
            ensure_archive(client, descriptor, tmp_path)

        assert checksums_route.call_count == 0
        assert not (tmp_path / ARCHIVE_NAME).exists()

    @respx.mock
    def test_checksum_download_failure(self, tmp_path, descriptor):
        """A failed sha256sums download should be fatal."""
        (tmp_path / ARCHIVE_NAME).write_bytes(b"archive")
        respx.get(CHECKSUMS_URL).mock(return_value=httpx.Response(404))

        with httpx.Client() as client, pytest.raises(DownloadError):
            ensure_archive(client, descriptor, tmp_path)


class TestExtractArchive:
    """Tests for extract_archive function."""

    def test_extract_xz(self, tmp_path):
        """Should extract a .tar.xz and return the builder root."""
        root_name = ARCHIVE_NAME.removesuffix(".tar.xz")
        archive = tmp_path / ARCHIVE_NAME
        archive.write_bytes(make_xz_archive(root_name))

        root = extract_archive(archive, tmp_path / "tmp")

        assert root == tmp_path / "tmp" / root_name
        assert (root / "Makefile").exists()
        assert (root / ".config").exists()

    def test_corrupt_archive(self, tmp_path):
        """Should raise ExtractionError for garbage input."""
        archive = tmp_path / ARCHIVE_NAME
        archive.write_bytes(b"not an archive")

        with pytest.raises(ExtractionError):
            extract_archive(archive, tmp_path / "tmp")

    def test_zst_uses_tar(self, tmp_path):
        """Should shell out to tar with zstd for .zst archives."""
        archive = tmp_path / "openwrt-imagebuilder-x86-64.Linux-x86_64.tar.zst"
        archive.write_bytes(b"zst")
        dest = tmp_path / "tmp"

        def fake_run(cmd, **kwargs):
            (dest / "openwrt-imagebuilder-x86-64.Linux-x86_64").mkdir(parents=True)
            return MagicMock(returncode=0, stderr="")

        with patch("subprocess.run", side_effect=fake_run) as mock_run:
            root = extract_archive(archive, dest)

        cmd = mock_run.call_args.args[0]
        assert cmd[0] == "tar"
        assert "--use-compress-program=zstd" in cmd
        assert root.name == "openwrt-imagebuilder-x86-64.Linux-x86_64"

    def test_zst_failure(self, tmp_path):
        """Should raise ExtractionError when tar fails."""
        archive = tmp_path / "openwrt-imagebuilder-x86-64.Linux-x86_64.tar.zst"
        archive.write_bytes(b"zst")

        with patch("subprocess.run") as mock_run:
            mock_run.return_value = MagicMock(returncode=2, stderr="zstd: error")
            with pytest.raises(ExtractionError) as exc_info:
                extract_archive(archive, tmp_path / "tmp")

        assert exc_info.value.code == "tar_error"


class TestFindImagebuilderRoot:
    """Tests for find_imagebuilder_root function."""

    def test_single_candidate(self, tmp_path):
        """Should fall back to the only *-imagebuilder-* directory."""
        (tmp_path / "immortalwrt-imagebuilder-other.Linux-x86_64").mkdir()
        root = find_imagebuilder_root(tmp_path, ARCHIVE_NAME)
        assert root.name == "immortalwrt-imagebuilder-other.Linux-x86_64"

    def test_prefers_exact_match(self, tmp_path):
        """Should pick the directory named after the archive."""
        (tmp_path / "openwrt-imagebuilder-old.Linux-x86_64").mkdir()
        exact = tmp_path / ARCHIVE_NAME.removesuffix(".tar.xz")
        exact.mkdir()
        assert find_imagebuilder_root(tmp_path, ARCHIVE_NAME) == exact

    def test_ambiguous(self, tmp_path):
        """Should refuse to guess between several builders."""
        (tmp_path / "openwrt-imagebuilder-a").mkdir()
        (tmp_path / "openwrt-imagebuilder-b").mkdir()
        with pytest.raises(ExtractionError) as exc_info:
            find_imagebuilder_root(tmp_path, ARCHIVE_NAME)
        assert exc_info.value.code == "ambiguous_root"

    def test_missing(self, tmp_path):
        """Should fail when nothing was extracted."""
        with pytest.raises(ExtractionError) as exc_info:
            find_imagebuilder_root(tmp_path, ARCHIVE_NAME)
        assert exc_info.value.code == "missing_root"


class TestPurgeCache:
    """Tests for purge_cache function."""

    def test_removes_tree_and_archive(self, tmp_path):
        """Should delete both the extracted tree and the archive."""
        extract_dir = tmp_path / "tmp"
        (extract_dir / "builder").mkdir(parents=True)
        archive = tmp_path / ARCHIVE_NAME
        archive.write_bytes(b"x")

        purge_cache(extract_dir, archive)

        assert not extract_dir.exists()
        assert not archive.exists()

    def test_missing_paths_are_ignored(self, tmp_path):
        """Should not fail when there is nothing to purge."""
        purge_cache(tmp_path / "nothing", Path(tmp_path / "none.tar.xz"))
