# Copyright (C) 2024 Sonance Contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""Pydantic schemas for API responses."""

from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field


class ErrorBody(BaseModel):
    code: int
    message: str


def envelope(**payload: Any) -> dict[str, Any]:
    """Successful response body: ``{"error": null, ...payload}``."""
    return {"error": None, **payload}


def error_envelope(code: int, message: str) -> dict[str, Any]:
    return {"error": ErrorBody(code=code, message=message).model_dump()}


# Library
class FolderResponse(BaseModel):
    id: int
    parent_id: int | None = None
    title: str
    path: str

    model_config = ConfigDict(from_attributes=True)


class ArtistResponse(BaseModel):
    id: int
    title: str

    model_config = ConfigDict(from_attributes=True)


class AlbumResponse(BaseModel):
    id: int
    artist_id: int
    artist: str | None = Field(default=None, validation_alias=AliasChoices("artist_title", "artist"))
    title: str
    year: int = 0

    model_config = ConfigDict(from_attributes=True)


class SongResponse(BaseModel):
    id: int
    album_id: int
    album: str | None = Field(default=None, validation_alias=AliasChoices("album_title", "album"))
    artist_id: int
    artist: str | None = Field(default=None, validation_alias=AliasChoices("artist_title", "artist"))
    folder_id: int
    art_id: int | None = None
    file_name: str
    file_size: int
    file_type_id: int
    bitrate: int
    channels: int
    sample_rate: int
    length: int
    title: str
    track: int = 0
    year: int = 0
    genre: str = ""
    comment: str = ""
    last_modified: int

    model_config = ConfigDict(from_attributes=True)


# Users
class UserResponse(BaseModel):
    id: int
    username: str
    role_id: int

    model_config = ConfigDict(from_attributes=True)


class SessionResponse(BaseModel):
    id: int
    user_id: int
    key: str
    expire: int
    client: str = ""

    model_config = ConfigDict(from_attributes=True)


def folders(items) -> list[FolderResponse]:
    return [FolderResponse.model_validate(f) for f in items]


def artists(items) -> list[ArtistResponse]:
    return [ArtistResponse.model_validate(a) for a in items]


def albums(items) -> list[AlbumResponse]:
    return [AlbumResponse.model_validate(a) for a in items]


def songs(items) -> list[SongResponse]:
    return [SongResponse.model_validate(s) for s in items]


def users(items) -> list[UserResponse]:
    return [UserResponse.model_validate(u) for u in items]
