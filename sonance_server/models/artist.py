# Copyright (C) 2024 Sonance Contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""Artist model."""

from sqlalchemy import String
from sqlalchemy.orm import Mapped, mapped_column

from sonance_server.models.base import Base


class Artist(Base):
    """Music artist."""

    __tablename__ = "artists"

    natural_key = ("title",)
    search_columns = ("title",)

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    title: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
