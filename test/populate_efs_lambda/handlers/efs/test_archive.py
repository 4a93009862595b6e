import errno
import zipfile
from pathlib import Path
from test.base import BaseTest, build_zip
from unittest import mock

import requests

from populate_efs_lambda.handlers.efs.archive import (
    DOWNLOAD_CHUNK_SIZE_ENV_VAR,
    DOWNLOAD_DIR_ENV_VAR,
    DOWNLOAD_TIMEOUT_ENV_VAR,
    ArchiveDownloadError,
    ArchiveExtractionError,
    download_archive,
    extract_archive,
    fetch_and_extract,
    get_download_chunk_size,
    get_download_dir,
    get_download_timeout,
)

ARCHIVE_URL = "https://example.org/data/archive.zip"


class ArchiveTests(BaseTest):
    def setUp(self) -> None:
        super().setUp()
        self.patch_archive_download()

    def test__download_archive__writes_chunks_in_order(self):
        content = b"0123456789" * 10
        response = self.serve_archive(content, chunk_size=7)
        local_path = self.tmp_path() / "nested" / "output.zip"

        size_bytes = download_archive(ARCHIVE_URL, local_path, chunk_size=7)

        self.assertEqual(size_bytes, len(content))
        self.assertEqual(local_path.read_bytes(), content)
        self.mock_get.assert_called_once_with(ARCHIVE_URL, stream=True, timeout=mock.ANY)
        response.iter_content.assert_called_once_with(chunk_size=7)
        response.close.assert_called_once()

    def test__download_archive__http_error__raises(self):
        response = self.fail_archive_download(requests.HTTPError("404 Client Error: Not Found"))
        local_path = self.tmp_path() / "output.zip"

        with self.assertRaises(ArchiveDownloadError):
            download_archive(ARCHIVE_URL, local_path)

        self.assertFalse(local_path.exists())
        response.close.assert_called_once()

    def test__download_archive__connection_error__raises(self):
        self.mock_get.side_effect = requests.ConnectionError("Name or service not known")

        with self.assertRaises(ArchiveDownloadError):
            download_archive(ARCHIVE_URL, self.tmp_path() / "output.zip")

    def test__extract_archive__empty_destination__gets_every_entry(self):
        archive_path = self.tmp_path() / "output.zip"
        archive_path.write_bytes(build_zip({"a.txt": "alpha", "sub/b.txt": "beta"}))
        destination = self.tmp_path() / "files" / "foobar"

        extracted = extract_archive(archive_path, destination)

        self.assertEqual(len(extracted), 2)
        self.assertEqual((destination / "a.txt").read_text(), "alpha")
        self.assertEqual((destination / "sub" / "b.txt").read_text(), "beta")

    def test__extract_archive__corrupt_archive__raises(self):
        archive_path = self.tmp_path() / "output.zip"
        archive_path.write_bytes(b"this is not a zip file")

        with self.assertRaises(ArchiveExtractionError):
            extract_archive(archive_path, self.tmp_path())

    def test__extract_archive__parent_and_absolute_entries__land_inside_destination(self):
        archive_path = self.tmp_path() / "output.zip"
        archive_path.write_bytes(
            build_zip({"good.txt": "ok", "../up.txt": "up", "/abs/root.txt": "root"})
        )
        root = self.tmp_path()
        destination = root / "files"

        extracted = extract_archive(archive_path, destination)

        self.assertEqual(len(extracted), 3)
        self.assertEqual((destination / "good.txt").read_text(), "ok")
        self.assertEqual((destination / "up.txt").read_text(), "up")
        self.assertEqual((destination / "abs" / "root.txt").read_text(), "root")
        self.assertFalse((root / "up.txt").exists())

    def test__extract_archive__entry_through_symlinked_dir__raises_before_writing(self):
        outside = self.tmp_path()
        destination = self.tmp_path()
        (destination / "link").symlink_to(outside, target_is_directory=True)
        archive_path = self.tmp_path() / "output.zip"
        archive_path.write_bytes(build_zip({"good.txt": "ok", "link/evil.txt": "nope"}))

        with self.assertRaises(ArchiveExtractionError):
            extract_archive(archive_path, destination)

        self.assertFalse((destination / "good.txt").exists())
        self.assertFalse((outside / "evil.txt").exists())

    def test__extract_archive__damaged_deflate_stream__raises(self):
        archive_path = self.tmp_path() / "output.zip"
        with zipfile.ZipFile(archive_path, "w", compression=zipfile.ZIP_DEFLATED) as zip_file:
            zip_file.writestr("a.txt", "alpha" * 1000)
        content = bytearray(archive_path.read_bytes())
        # compressed data starts after the 30 byte local header and the entry name
        data_start = 30 + len("a.txt")
        content[data_start : data_start + 8] = b"\xff" * 8
        archive_path.write_bytes(bytes(content))

        with self.assertRaises(ArchiveExtractionError):
            extract_archive(archive_path, self.tmp_path())

    def test__extract_archive__unreadable_entry__raises(self):
        archive_path = self.tmp_path() / "output.zip"
        archive_path.write_bytes(build_zip({"a.txt": "alpha"}))
        errors = [
            RuntimeError("File 'a.txt' is encrypted, password required for extraction"),
            NotImplementedError("That compression method is not supported"),
        ]
        for error in errors:
            with self.subTest(error=type(error).__name__):
                with mock.patch.object(zipfile.ZipFile, "extract", side_effect=error):
                    with self.assertRaises(ArchiveExtractionError):
                        extract_archive(archive_path, self.tmp_path())

    def test__extract_archive__write_failure__propagates_without_rollback(self):
        archive_path = self.tmp_path() / "output.zip"
        archive_path.write_bytes(build_zip({"a.txt": "new", "b.txt": "beta", "c.txt": "gamma"}))
        destination = self.tmp_path()
        (destination / "a.txt").write_text("old")
        (destination / "existing.txt").write_text("keep me")
        self.fail_extraction_at("b.txt", OSError(errno.ENOSPC, "No space left on device"))

        with self.assertRaises(OSError):
            extract_archive(archive_path, destination)

        self.assertEqual((destination / "a.txt").read_text(), "new")
        self.assertEqual((destination / "existing.txt").read_text(), "keep me")
        self.assertFalse((destination / "b.txt").exists())
        self.assertFalse((destination / "c.txt").exists())

    def test__fetch_and_extract__empty_destination(self):
        entries = {"a.txt": "alpha", "sub/b.txt": "beta", "sub/deeper/c.txt": "gamma"}
        content = build_zip(entries)
        self.serve_archive(content)
        destination = self.tmp_path()

        result = fetch_and_extract(ARCHIVE_URL, destination, download_dir=self.tmp_path())

        self.assertEqual(result.destination, destination)
        self.assertEqual(result.size_bytes, len(content))
        self.assertEqual(len(result.extracted_paths), len(entries))
        for name, expected in entries.items():
            self.assertEqual((destination / name).read_text(), expected)

    def test__fetch_and_extract__overwrites_conflicts_and_keeps_extra_files(self):
        destination = self.tmp_path()
        (destination / "a.txt").write_text("old")
        (destination / "stale.txt").write_text("untouched")
        self.serve_archive(build_zip({"a.txt": "new", "b.txt": "beta"}))

        fetch_and_extract(ARCHIVE_URL, destination, download_dir=self.tmp_path())

        self.assertEqual((destination / "a.txt").read_text(), "new")
        self.assertEqual((destination / "b.txt").read_text(), "beta")
        self.assertEqual((destination / "stale.txt").read_text(), "untouched")

    def test__fetch_and_extract__rerun_is_idempotent(self):
        destination = self.tmp_path()
        self.serve_archive(build_zip({"a.txt": "alpha", "sub/b.txt": "beta"}))
        fetch_and_extract(ARCHIVE_URL, destination, download_dir=self.tmp_path())
        first = {p: p.read_bytes() for p in destination.rglob("*") if p.is_file()}

        self.serve_archive(build_zip({"a.txt": "alpha", "sub/b.txt": "beta"}))
        fetch_and_extract(ARCHIVE_URL, destination, download_dir=self.tmp_path())
        second = {p: p.read_bytes() for p in destination.rglob("*") if p.is_file()}

        self.assertDictEqual(first, second)

    def test__fetch_and_extract__download_failure__destination_untouched(self):
        destination = self.tmp_path()
        (destination / "existing.txt").write_text("keep me")
        before = sorted(destination.rglob("*"))
        self.fail_archive_download(requests.HTTPError("500 Server Error"))

        with self.assertRaises(ArchiveDownloadError):
            fetch_and_extract(ARCHIVE_URL, destination, download_dir=self.tmp_path())

        self.assertEqual(sorted(destination.rglob("*")), before)
        self.assertEqual((destination / "existing.txt").read_text(), "keep me")

    def test__fetch_and_extract__removes_local_archive(self):
        download_dir = self.tmp_path()
        self.serve_archive(build_zip({"a.txt": "alpha"}))

        fetch_and_extract(ARCHIVE_URL, self.tmp_path(), download_dir=download_dir)

        self.assertEqual(list(download_dir.iterdir()), [])

    def test__get_download_chunk_size__reads_env(self):
        self.assertEqual(get_download_chunk_size(), 1024 * 1024)
        self.set_env_vars((DOWNLOAD_CHUNK_SIZE_ENV_VAR, "4096"))
        self.assertEqual(get_download_chunk_size(), 4096)

    def test__get_download_dir__reads_env(self):
        self.assertIsNone(get_download_dir())
        self.set_env_vars((DOWNLOAD_DIR_ENV_VAR, "/tmp/scratch"))
        self.assertEqual(get_download_dir(), Path("/tmp/scratch"))

    def test__get_download_timeout__reads_env(self):
        self.assertEqual(get_download_timeout(), 60.0)
        self.set_env_vars((DOWNLOAD_TIMEOUT_ENV_VAR, "5.5"))
        self.assertEqual(get_download_timeout(), 5.5)
