# Copyright (C) 2024 Sonance Contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""Song model."""

import os

from sqlalchemy import BigInteger, ForeignKey, Integer, String, Text, inspect
from sqlalchemy.orm import Mapped, mapped_column, relationship

from sonance_server.models.base import Base

# Recognized audio extensions; a song's file_type_id is the index into this tuple
FILE_TYPES = (".ape", ".flac", ".m4a", ".mp3", ".mpc", ".ogg", ".wma", ".wv")

FILE_TYPE_MIME = {
    ".ape": "audio/x-ape",
    ".flac": "audio/flac",
    ".m4a": "audio/mp4",
    ".mp3": "audio/mpeg",
    ".mpc": "audio/x-musepack",
    ".ogg": "audio/ogg",
    ".wma": "audio/x-ms-wma",
    ".wv": "audio/x-wavpack",
}


def file_type_id(path: str) -> int:
    """Index of the path's extension in FILE_TYPES. Raises ValueError if unrecognized."""
    return FILE_TYPES.index(os.path.splitext(path)[1].lower())


class Song(Base):
    """Audio file in the library."""

    __tablename__ = "songs"

    natural_key = ("file_name",)
    search_columns = ("title",)

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    album_id: Mapped[int] = mapped_column(ForeignKey("albums.id"), nullable=False, index=True)
    artist_id: Mapped[int] = mapped_column(ForeignKey("artists.id"), nullable=False, index=True)
    folder_id: Mapped[int] = mapped_column(ForeignKey("folders.id"), nullable=False, index=True)
    art_id: Mapped[int | None] = mapped_column(ForeignKey("art.id"), nullable=True, index=True)
    file_name: Mapped[str] = mapped_column(String(4096), unique=True, nullable=False)
    file_size: Mapped[int] = mapped_column(BigInteger, nullable=False)
    file_type_id: Mapped[int] = mapped_column(Integer, nullable=False)
    bitrate: Mapped[int] = mapped_column(Integer, nullable=False)  # kbps
    channels: Mapped[int] = mapped_column(Integer, nullable=False)
    sample_rate: Mapped[int] = mapped_column(Integer, nullable=False)
    length: Mapped[int] = mapped_column(Integer, nullable=False)  # seconds
    title: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    track: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    year: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    genre: Mapped[str] = mapped_column(String(255), default="", nullable=False)
    comment: Mapped[str] = mapped_column(Text, default="", nullable=False)
    last_modified: Mapped[int] = mapped_column(BigInteger, nullable=False)  # unix seconds

    artist: Mapped["Artist"] = relationship("Artist", lazy="joined")
    album: Mapped["Album"] = relationship("Album", lazy="joined")

    def _related_title(self, name: str) -> str | None:
        if name in inspect(self).unloaded:
            return None
        related = getattr(self, name)
        return related.title if related is not None else None

    @property
    def artist_title(self) -> str | None:
        return self._related_title("artist")

    @property
    def album_title(self) -> str | None:
        return self._related_title("album")

    @property
    def extension(self) -> str:
        return FILE_TYPES[self.file_type_id] if 0 <= self.file_type_id < len(FILE_TYPES) else ""

    @property
    def mime_type(self) -> str:
        return FILE_TYPE_MIME.get(self.extension, "application/octet-stream")
