# Copyright (C) 2024 Sonance Contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""Database models."""

from sonance_server.models.base import Base
from sonance_server.models.folder import Folder
from sonance_server.models.artist import Artist
from sonance_server.models.album import Album
from sonance_server.models.art import Art
from sonance_server.models.song import FILE_TYPES, Song, file_type_id
from sonance_server.models.user import Role, User
from sonance_server.models.session import Session

__all__ = [
    "Base",
    "Folder",
    "Artist",
    "Album",
    "Art",
    "Song",
    "FILE_TYPES",
    "file_type_id",
    "Role",
    "User",
    "Session",
]
