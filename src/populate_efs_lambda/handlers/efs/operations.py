import logging
from pathlib import Path
from typing import Optional, Union

from aibs_informatics_core.utils.os_operations import get_env_var

from populate_efs_lambda.common.custom_resource import CustomResourceHandler
from populate_efs_lambda.common.handler import LambdaHandler
from populate_efs_lambda.handlers.efs.archive import fetch_and_extract
from populate_efs_lambda.handlers.efs.model import PopulateEFSRequest, PopulateEFSResponse

logger = logging.getLogger(__name__)

EFS_MOUNT_BASE_PATH_ENV_VAR = "EFS_MOUNT_BASE_PATH"
DEFAULT_EFS_MOUNT_BASE_PATH = "/mnt"


class EFSHandlerMixins:
    @classmethod
    def get_efs_mount_base_path(cls) -> Path:
        return Path(
            get_env_var(EFS_MOUNT_BASE_PATH_ENV_VAR, default_value=DEFAULT_EFS_MOUNT_BASE_PATH)
        )

    @classmethod
    def resolve_efs_mount_path(
        cls, efs_root_directory: str, efs_mount_path: Optional[Union[str, Path]] = None
    ) -> Path:
        """Local path where the access point for `efs_root_directory` is mounted.

        The function mounts the access point rooted at `/<efs_root_directory>`
        under `<EFS_MOUNT_BASE_PATH>/<efs_root_directory>`, unless an explicit
        mount path is given.
        """
        if efs_mount_path:
            return Path(efs_mount_path).resolve()
        return cls.sanitize_efs_path(efs_root_directory, cls.get_efs_mount_base_path())

    @classmethod
    def sanitize_efs_path(cls, path: Union[Path, str], efs_mount_path: Union[Path, str]) -> Path:
        efs_mount_path = Path(efs_mount_path).resolve()
        full_path = Path(f"{efs_mount_path}/{path}").resolve()
        if full_path != efs_mount_path and efs_mount_path not in full_path.parents:
            raise ValueError(f"{path} resolves to {full_path}, outside of {efs_mount_path}")
        return full_path

    @classmethod
    def resolve_destination_path(
        cls,
        efs_root_directory: str,
        efs_subdirectory: str = "",
        efs_mount_path: Optional[Union[str, Path]] = None,
    ) -> Path:
        """Directory the archive is extracted to.

        Root directory 'files' and subdirectory 'foobar' give '<mount>/files/foobar',
        an empty subdirectory gives '<mount>/files'.
        """
        efs_mount_path = cls.resolve_efs_mount_path(efs_root_directory, efs_mount_path)
        return cls.sanitize_efs_path(efs_subdirectory or ".", efs_mount_path)

    @classmethod
    def populate_efs(cls, request: PopulateEFSRequest) -> PopulateEFSResponse:
        destination = cls.resolve_destination_path(
            efs_root_directory=request.efs_root_directory,
            efs_subdirectory=request.efs_subdirectory,
            efs_mount_path=request.efs_mount_path,
        )
        logger.info(
            f"Populating {destination} on {request.file_system_id} "
            f"(access point {request.access_point_id}) from {request.zip_file_url}"
        )
        result = fetch_and_extract(request.zip_file_url, destination)
        return PopulateEFSResponse(
            destination_path=destination,
            archive_size_bytes=result.size_bytes,
            extracted_entry_count=len(result.extracted_paths),
        )


class PopulateEFSHandler(LambdaHandler[PopulateEFSRequest, PopulateEFSResponse], EFSHandlerMixins):
    def handle(self, request: PopulateEFSRequest) -> PopulateEFSResponse:
        return self.populate_efs(request)


class PopulateEFSCustomResourceHandler(
    CustomResourceHandler[PopulateEFSRequest, PopulateEFSResponse], EFSHandlerMixins
):
    """Backs the `Custom::PopulateEfs` resource.

    Create and Update both run a full resync of the archive onto the volume.
    Delete leaves the volume contents alone, they go away with the file system.
    """

    def handle(self, request: PopulateEFSRequest) -> PopulateEFSResponse:
        response = self.populate_efs(request)
        self.metrics.add_archive_metrics(
            size_bytes=response.archive_size_bytes,
            entry_count=response.extracted_entry_count,
        )
        return response


populate_efs_handler = PopulateEFSHandler.get_handler()
handler = PopulateEFSCustomResourceHandler.get_handler()
