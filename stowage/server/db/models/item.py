import time
from typing import Optional

from sqlalchemy import BigInteger, Boolean, ForeignKey, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from stowage.models.base import ItemType
from stowage.server.db.base import Base


def now_ms() -> int:
    """Current time in milliseconds since the epoch."""
    return int(time.time() * 1000)


class ItemDO(Base):
    """A file or folder node in a user's hierarchy."""

    __tablename__ = "items"
    __table_args__ = (
        Index("ix_items_parent_user", "parent_id", "user_id"),
        Index("ix_items_user_type", "user_id", "type"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    """Internal database ID."""

    user_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    """Owner user ID. Never changes."""

    name: Mapped[str] = mapped_column(String(255), index=True, nullable=False)
    """Display name, case preserved. Not a path."""

    type: Mapped[str] = mapped_column(String(16), nullable=False)
    """Either ``file`` or ``folder``."""

    parent_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("items.id"), nullable=True
    )
    """Containing folder, or None for the user's root level."""

    file_path: Mapped[Optional[str]] = mapped_column(String(2048), nullable=True)
    """Location relative to the user's storage root, forward slashes. Files only."""

    file_size: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)
    """Size in bytes. Files only."""

    mime_type: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    """Content type. Files only."""

    is_deleted: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    """Soft-delete flag."""

    deleted_at: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)
    """Time the item was moved to the trash in milliseconds."""

    trash_path: Mapped[Optional[str]] = mapped_column(String(2048), nullable=True)
    """Where a trashed folder's directory is parked, relative to the user root.

    Only set on the folder a deletion started from. Its subtree lives below
    this directory until the folder is restored or purged.
    """

    created_at: Mapped[int] = mapped_column(BigInteger, default=now_ms, nullable=False)

    updated_at: Mapped[int] = mapped_column(
        BigInteger, default=now_ms, onupdate=now_ms, nullable=False
    )

    @property
    def is_folder(self) -> bool:
        return self.type == ItemType.FOLDER

    @property
    def is_file(self) -> bool:
        return self.type == ItemType.FILE

    def __repr__(self) -> str:
        return (
            f"<ItemDO(id={self.id}, user_id={self.user_id}, name='{self.name}', "
            f"type='{self.type}', parent_id={self.parent_id})>"
        )
