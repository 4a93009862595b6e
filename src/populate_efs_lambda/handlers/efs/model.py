from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import marshmallow as mm
from aibs_informatics_core.models.base import (
    IntegerField,
    PathField,
    SchemaModel,
    StringField,
    custom_field,
)

# Same constraints as the template parameters feeding the custom resource.
EFS_ROOT_DIRECTORY_PATTERN = r"^[a-zA-Z0-9-_.]+$"
EFS_SUBDIRECTORY_PATTERN = r"^([a-zA-Z0-9_\-]+(\/[a-zA-Z0-9_\-]+)*)*$"
ZIP_FILE_URL_PATTERN = r"^https?:\/\/[^\s/$.?#].[^\s]*$"


@dataclass
class PopulateEFSRequest(SchemaModel):
    file_system_id: str = custom_field(mm_field=StringField())
    access_point_id: str = custom_field(mm_field=StringField())
    efs_root_directory: str = custom_field(
        mm_field=StringField(validate=mm.validate.Regexp(EFS_ROOT_DIRECTORY_PATTERN))
    )
    zip_file_url: str = custom_field(
        mm_field=StringField(validate=mm.validate.Regexp(ZIP_FILE_URL_PATTERN))
    )
    # e.g. root 'files' and subdirectory 'foobar' extract to 'files/foobar'
    efs_subdirectory: str = custom_field(
        default="",
        mm_field=StringField(validate=mm.validate.Regexp(EFS_SUBDIRECTORY_PATTERN)),
    )
    # Local mount of the access point. Defaults to <EFS_MOUNT_BASE_PATH>/<efs_root_directory>
    efs_mount_path: Optional[Path] = custom_field(default=None, mm_field=PathField())


@dataclass
class PopulateEFSResponse(SchemaModel):
    destination_path: Path = custom_field(mm_field=PathField())
    archive_size_bytes: int = custom_field(mm_field=IntegerField())
    extracted_entry_count: int = custom_field(mm_field=IntegerField())
