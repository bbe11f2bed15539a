# Copyright (C) 2024 Sonance Contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""API session model."""

import time

from sqlalchemy import BigInteger, ForeignKey, String
from sqlalchemy.orm import Mapped, mapped_column

from sonance_server.models.base import Base


class Session(Base):
    """Login session; ``key`` is passed by clients on every request."""

    __tablename__ = "sessions"

    natural_key = ("key",)

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    key: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    expire: Mapped[int] = mapped_column(BigInteger, nullable=False)  # unix seconds
    client: Mapped[str] = mapped_column(String(255), default="", nullable=False)

    def is_expired(self, now: float | None = None) -> bool:
        return (now if now is not None else time.time()) > self.expire
