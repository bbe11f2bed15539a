# Copyright (C) 2024 Sonance Contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""Album model."""

from sqlalchemy import ForeignKey, Integer, String, UniqueConstraint, inspect
from sqlalchemy.orm import Mapped, mapped_column, relationship

from sonance_server.models.base import Base


class Album(Base):
    """Music album, unique per (artist, title)."""

    __tablename__ = "albums"
    __table_args__ = (UniqueConstraint("artist_id", "title", name="uq_albums_artist_title"),)

    natural_key = ("artist_id", "title")
    search_columns = ("title",)

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    artist_id: Mapped[int] = mapped_column(ForeignKey("artists.id"), nullable=False, index=True)
    title: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    year: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    artist: Mapped["Artist"] = relationship("Artist", lazy="joined")

    @property
    def artist_title(self) -> str | None:
        if "artist" in inspect(self).unloaded or self.artist is None:
            return None
        return self.artist.title
