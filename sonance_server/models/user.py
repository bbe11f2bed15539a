# Copyright (C) 2024 Sonance Contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""User model."""

import enum

from sqlalchemy import Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from sonance_server.models.base import Base


class Role(enum.IntEnum):
    GUEST = 0
    USER = 1
    ADMIN = 2


class User(Base):
    """User account for authentication."""

    __tablename__ = "users"

    natural_key = ("username",)
    search_columns = ("username",)

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    username: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    role_id: Mapped[int] = mapped_column(Integer, default=Role.USER, nullable=False)
    # Scrobbling token; stored for clients, no integration reads it
    lastfm_token: Mapped[str | None] = mapped_column(String(255), nullable=True)

    @property
    def role(self) -> Role:
        return Role(self.role_id)

    @property
    def is_admin(self) -> bool:
        return self.role_id >= Role.ADMIN
