# Copyright (C) 2024 Sonance Contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""Declarative base shared by all catalog entities."""

from typing import Any, ClassVar

from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """Base class for all models.

    Each entity names its natural key (the unique non-id column set) in
    ``natural_key``; the catalog uses it to load, save and delete entities
    that only carry that key.
    """

    natural_key: ClassVar[tuple[str, ...]] = ()
    # Columns matched by case-insensitive substring search
    search_columns: ClassVar[tuple[str, ...]] = ()

    def key_values(self) -> dict[str, Any]:
        """Natural key column -> value for this instance."""
        return {name: getattr(self, name) for name in self.natural_key}

    def __repr__(self) -> str:
        keys = ", ".join(f"{k}={v!r}" for k, v in self.key_values().items())
        return f"<{type(self).__name__} id={getattr(self, 'id', None)} {keys}>"
