# Copyright (C) 2024 Sonance Contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""Folder model."""

import os

from sqlalchemy import ForeignKey, String
from sqlalchemy.orm import Mapped, mapped_column

from sonance_server.models.base import Base


class Folder(Base):
    """Filesystem directory under the media root. ``parent_id`` is None for the root."""

    __tablename__ = "folders"

    natural_key = ("path",)
    search_columns = ("title",)

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    parent_id: Mapped[int | None] = mapped_column(ForeignKey("folders.id"), nullable=True, index=True)
    title: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    path: Mapped[str] = mapped_column(String(4096), unique=True, nullable=False)

    @classmethod
    def for_path(cls, path: str, parent_id: int | None = None) -> "Folder":
        path = os.path.normpath(path)
        return cls(path=path, title=os.path.basename(path), parent_id=parent_id)
