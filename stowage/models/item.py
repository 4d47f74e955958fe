"""Result objects for item operations."""

from dataclasses import dataclass, field

from mashumaro import field_options
from mashumaro.config import BaseConfig
from mashumaro.mixins.json import DataClassJSONMixin

from .base import BaseResponse


@dataclass
class ItemVO(DataClassJSONMixin):
    """Public view of a file or folder."""

    id: int = 0
    name: str = ""
    type: str = "file"

    parent_id: int | None = field(
        metadata=field_options(alias="parentId"), default=None
    )

    file_path: str | None = field(
        metadata=field_options(alias="filePath"), default=None
    )
    """Path relative to the owner's storage root. Files only."""

    file_size: int | None = field(
        metadata=field_options(alias="fileSize"), default=None
    )

    mime_type: str | None = field(
        metadata=field_options(alias="mimeType"), default=None
    )

    is_deleted: bool = field(metadata=field_options(alias="isDeleted"), default=False)

    deleted_at: int | None = field(
        metadata=field_options(alias="deletedAt"), default=None
    )
    """Deletion time in milliseconds since the epoch."""

    created_at: int = field(metadata=field_options(alias="createdAt"), default=0)

    updated_at: int = field(metadata=field_options(alias="updatedAt"), default=0)

    class Config(BaseConfig):
        serialize_by_alias = True
        omit_none = True


@dataclass
class ItemResult(BaseResponse):
    """Result of a single-item operation."""

    item: ItemVO | None = None


@dataclass
class ItemListVO(BaseResponse):
    """One page of a directory or trash listing."""

    items: list[ItemVO] = field(default_factory=list)

    total_count: int = field(metadata=field_options(alias="totalCount"), default=0)

    total_pages: int = field(metadata=field_options(alias="totalPages"), default=0)

    current_page: int = field(metadata=field_options(alias="currentPage"), default=1)

    page_size: int = field(metadata=field_options(alias="pageSize"), default=20)

    has_next: bool = field(metadata=field_options(alias="hasNext"), default=False)

    has_previous: bool = field(
        metadata=field_options(alias="hasPrevious"), default=False
    )


@dataclass
class BatchResult(BaseResponse):
    """Result of a cascading mutation (delete, restore, rename, move)."""

    item_id: int | None = field(metadata=field_options(alias="itemId"), default=None)

    affected_count: int = field(
        metadata=field_options(alias="affectedCount"), default=0
    )
    """Number of rows changed in the batch, the target item included."""

    new_name: str | None = field(
        metadata=field_options(alias="newName"), default=None
    )


@dataclass
class FolderSizeVO(BaseResponse):
    """Aggregated size of the live files below a folder."""

    folder_id: int | None = field(
        metadata=field_options(alias="folderId"), default=None
    )

    total_size: int = field(metadata=field_options(alias="totalSize"), default=0)

    file_count: int = field(metadata=field_options(alias="fileCount"), default=0)

    formatted_size: str | None = field(
        metadata=field_options(alias="formattedSize"), default=None
    )


@dataclass
class FolderSizesVO(BaseResponse):
    """Sizes for several folders keyed by folder id."""

    sizes: dict[int, FolderSizeVO] = field(default_factory=dict)


@dataclass
class StorageUsageVO(BaseResponse):
    """Bytes held by the live files of a user."""

    used_bytes: int = field(metadata=field_options(alias="usedBytes"), default=0)

    formatted_size: str | None = field(
        metadata=field_options(alias="formattedSize"), default=None
    )


@dataclass
class TeamspaceLimitsVO(BaseResponse):
    """Plan-derived limits. ``-1`` means unlimited."""

    storage_limit_mb: int = field(
        metadata=field_options(alias="storageLimitMb"), default=0
    )

    member_limit: int = field(metadata=field_options(alias="memberLimit"), default=0)

    max_teamspaces: int = field(
        metadata=field_options(alias="maxTeamspaces"), default=0
    )


@dataclass
class FolderCreateDTO(DataClassJSONMixin):
    """Request body for creating a folder."""

    name: str

    parent_id: int | None = field(
        metadata=field_options(alias="parentId"), default=None
    )


@dataclass
class RenameDTO(DataClassJSONMixin):
    new_name: str = field(metadata=field_options(alias="newName"))


@dataclass
class MoveDTO(DataClassJSONMixin):
    """Request body for moving an item. A null ``parentId`` is the root level."""

    parent_id: int | None = field(
        metadata=field_options(alias="parentId"), default=None
    )


@dataclass
class ArchiveSelectionDTO(DataClassJSONMixin):
    item_ids: list[int] = field(
        metadata=field_options(alias="itemIds"), default_factory=list
    )


@dataclass
class FolderSizesDTO(DataClassJSONMixin):
    folder_ids: list[int] = field(
        metadata=field_options(alias="folderIds"), default_factory=list
    )
