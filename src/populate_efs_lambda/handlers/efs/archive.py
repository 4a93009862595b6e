"""Fetch a zip archive over HTTP(S) and extract it into a directory.

The archive is streamed to local (ephemeral) storage first and only then
extracted, so a failed download never touches the destination. Extraction
overwrites conflicting files and never removes files missing from the archive.
"""

import logging
import os
import tempfile
import zipfile
import zlib
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Union

import requests
from aibs_informatics_core.exceptions import ApplicationException
from aibs_informatics_core.utils.os_operations import get_env_var

logger = logging.getLogger(__name__)

DOWNLOAD_DIR_ENV_VAR = "POPULATE_EFS_DOWNLOAD_DIR"
DOWNLOAD_CHUNK_SIZE_ENV_VAR = "POPULATE_EFS_DOWNLOAD_CHUNK_SIZE"
DOWNLOAD_TIMEOUT_ENV_VAR = "POPULATE_EFS_DOWNLOAD_TIMEOUT"

DEFAULT_CHUNK_SIZE = 1024 * 1024
DEFAULT_TIMEOUT_SECONDS = 60.0
ARCHIVE_FILE_NAME = "output.zip"


class ArchiveDownloadError(ApplicationException):
    """Raised when the archive cannot be fetched."""


class ArchiveExtractionError(ApplicationException):
    """Raised when the archive is unreadable or an entry would land outside the destination."""


@dataclass
class ArchiveSyncResult:
    destination: Path
    size_bytes: int
    extracted_paths: List[Path] = field(default_factory=list)


def get_download_chunk_size() -> int:
    return int(get_env_var(DOWNLOAD_CHUNK_SIZE_ENV_VAR, default_value=str(DEFAULT_CHUNK_SIZE)))


def get_download_timeout() -> float:
    return float(
        get_env_var(DOWNLOAD_TIMEOUT_ENV_VAR, default_value=str(DEFAULT_TIMEOUT_SECONDS))
    )


def get_download_dir() -> Optional[Path]:
    download_dir = get_env_var(DOWNLOAD_DIR_ENV_VAR)
    return Path(download_dir) if download_dir else None


def download_archive(
    url: str,
    local_path: Union[str, Path],
    chunk_size: Optional[int] = None,
    timeout: Optional[float] = None,
) -> int:
    """Stream the resource at `url` to `local_path`.

    Args:
        url (str): HTTP(S) location of the archive.
        local_path (Union[str, Path]): Where to write the archive. Parent
            directories are created as needed.
        chunk_size (Optional[int]): Bytes read per chunk. Defaults to
            POPULATE_EFS_DOWNLOAD_CHUNK_SIZE or 1 MiB.
        timeout (Optional[float]): Connect/read timeout in seconds. Defaults to
            POPULATE_EFS_DOWNLOAD_TIMEOUT or 60.

    Raises:
        ArchiveDownloadError: On connection failures, timeouts and non-2xx responses.

    Returns:
        Number of bytes written.
    """
    local_path = Path(local_path)
    local_path.parent.mkdir(parents=True, exist_ok=True)
    chunk_size = chunk_size or get_download_chunk_size()
    timeout = timeout or get_download_timeout()

    logger.info(f"Downloading {url} to {local_path}")
    size_bytes = 0
    try:
        response = requests.get(url, stream=True, timeout=timeout)
        try:
            response.raise_for_status()
            with open(local_path, "wb") as out_file:
                for chunk in response.iter_content(chunk_size=chunk_size):
                    if not chunk:
                        continue
                    out_file.write(chunk)
                    size_bytes += len(chunk)
                    logger.debug(f"Downloading {url}: {size_bytes} bytes")
        finally:
            response.close()
    except requests.RequestException as e:
        raise ArchiveDownloadError(f"Failed to download {url}: {e}") from e

    logger.info(f"File downloaded and saved to {local_path} ({size_bytes} bytes)")
    return size_bytes


def get_member_path(member: zipfile.ZipInfo) -> Path:
    """Relative path zipfile writes an entry to.

    Drive letters, leading separators and '', '.' and '..' components are
    dropped, the same cleanup `ZipFile.extract` applies.
    """
    arcname = member.filename.replace("/", os.path.sep)
    if os.path.altsep:
        arcname = arcname.replace(os.path.altsep, os.path.sep)
    arcname = os.path.splitdrive(arcname)[1]
    invalid_parts = ("", os.path.curdir, os.path.pardir)
    parts = [p for p in arcname.split(os.path.sep) if p not in invalid_parts]
    return Path(*parts)


def extract_archive(archive_path: Union[str, Path], destination: Union[str, Path]) -> List[Path]:
    """Extract every entry of a zip archive into `destination`.

    Entry names are cleaned the way `zipfile` cleans them, so `../x` and
    absolute entries land inside `destination`. All entries are checked before
    anything is written: an entry that still resolves outside of `destination`
    (e.g. through a symlinked directory) fails the whole extraction. Existing
    files at conflicting paths are overwritten. There is no rollback if a write
    fails part way through.

    Raises:
        ArchiveExtractionError: If the archive is corrupt, encrypted, uses an
            unsupported compression method or has an escaping entry.
        OSError: If writing to the destination fails.

    Returns:
        The extracted paths, in archive order.
    """
    destination = Path(destination).resolve()
    try:
        with zipfile.ZipFile(archive_path, "r") as zip_ref:
            members = zip_ref.infolist()
            for member in members:
                target = (destination / get_member_path(member)).resolve()
                if target != destination and destination not in target.parents:
                    raise ArchiveExtractionError(
                        f"Archive entry {member.filename} resolves to {target}, "
                        f"outside of {destination}"
                    )

            destination.mkdir(parents=True, exist_ok=True)
            logger.info(f"Extracting {len(members)} entries from {archive_path} to {destination}")
            extracted_paths = [
                Path(zip_ref.extract(member, path=destination)) for member in members
            ]
    # zipfile raises RuntimeError for encrypted entries and NotImplementedError
    # for unsupported compression methods
    except (zipfile.BadZipFile, zlib.error, RuntimeError, NotImplementedError) as e:
        raise ArchiveExtractionError(f"Could not extract {archive_path}: {e}") from e

    logger.info(f"Extracted {len(extracted_paths)} entries to {destination}")
    return extracted_paths


def fetch_and_extract(
    url: str,
    destination: Union[str, Path],
    download_dir: Optional[Union[str, Path]] = None,
    chunk_size: Optional[int] = None,
) -> ArchiveSyncResult:
    """Download the archive at `url` and extract it into `destination`.

    The archive is kept in a temporary directory under `download_dir`
    (default POPULATE_EFS_DOWNLOAD_DIR, else the system temp dir) and removed
    once extraction finishes or fails.

    Args:
        url (str): HTTP(S) location of the zip archive.
        destination (Union[str, Path]): Directory to extract into.
        download_dir (Optional[Union[str, Path]]): Local scratch location.
        chunk_size (Optional[int]): Bytes read per download chunk.

    Returns:
        Summary of the downloaded size and extracted paths.
    """
    download_dir = Path(download_dir) if download_dir else get_download_dir()
    if download_dir:
        download_dir.mkdir(parents=True, exist_ok=True)

    with tempfile.TemporaryDirectory(dir=download_dir) as scratch_dir:
        archive_path = Path(scratch_dir) / ARCHIVE_FILE_NAME
        size_bytes = download_archive(url, archive_path, chunk_size=chunk_size)
        extracted_paths = extract_archive(archive_path, destination)

    return ArchiveSyncResult(
        destination=Path(destination),
        size_bytes=size_bytes,
        extracted_paths=extracted_paths,
    )
