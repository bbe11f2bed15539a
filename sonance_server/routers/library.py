# Copyright (C) 2024 Sonance Contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""Library API routes - albums, artists, songs, folders."""

from fastapi import APIRouter, Depends, Query

from sonance_server.api import schemas
from sonance_server.api.schemas import envelope
from sonance_server.api.versions import parse_limit
from sonance_server.auth import require_user
from sonance_server.database import get_catalog
from sonance_server.errors import NegativeSize
from sonance_server.models import Album, Artist, Folder, Song
from sonance_server.services.catalog import Catalog

router = APIRouter(tags=["library"], dependencies=[Depends(require_user)])


async def _list(catalog: Catalog, model, limit: str | None) -> list:
    bounds = parse_limit(limit)
    if bounds is None:
        return await catalog.all(model)
    return await catalog.limit(model, *bounds)


@router.get("/albums")
async def list_albums(
    limit: str | None = Query(None, description="offset,count"),
    catalog: Catalog = Depends(get_catalog),
) -> dict:
    return envelope(albums=schemas.albums(await _list(catalog, Album, limit)))


@router.get("/albums/{album_id}")
async def get_album(album_id: int, catalog: Catalog = Depends(get_catalog)) -> dict:
    """One album with its songs."""
    album = await catalog.get(Album, album_id)
    songs = await catalog.songs_for_album(album.id)
    return envelope(albums=schemas.albums([album]), songs=schemas.songs(songs))


@router.get("/artists")
async def list_artists(
    limit: str | None = Query(None, description="offset,count"),
    catalog: Catalog = Depends(get_catalog),
) -> dict:
    return envelope(artists=schemas.artists(await _list(catalog, Artist, limit)))


@router.get("/artists/{artist_id}")
async def get_artist(
    artist_id: int,
    songs: bool = Query(False, description="Also include the artist's songs"),
    catalog: Catalog = Depends(get_catalog),
) -> dict:
    """One artist with its albums, and its songs when ?songs=true."""
    artist = await catalog.get(Artist, artist_id)
    payload = {
        "artists": schemas.artists([artist]),
        "albums": schemas.albums(await catalog.albums_for_artist(artist.id)),
    }
    if songs:
        payload["songs"] = schemas.songs(await catalog.songs_for_artist(artist.id))
    return envelope(**payload)


@router.get("/songs")
async def list_songs(
    limit: str | None = Query(None, description="offset,count"),
    random: int | None = Query(None, description="Number of random songs"),
    catalog: Catalog = Depends(get_catalog),
) -> dict:
    if random is not None:
        if random <= 0:
            raise NegativeSize("random song count must be positive")
        return envelope(songs=schemas.songs(await catalog.random(Song, random)))
    return envelope(songs=schemas.songs(await _list(catalog, Song, limit)))


@router.get("/songs/{song_id}")
async def get_song(song_id: int, catalog: Catalog = Depends(get_catalog)) -> dict:
    return envelope(songs=schemas.songs([await catalog.get(Song, song_id)]))


@router.get("/folders")
async def list_folders(
    limit: str | None = Query(None, description="offset,count"),
    catalog: Catalog = Depends(get_catalog),
) -> dict:
    return envelope(folders=schemas.folders(await _list(catalog, Folder, limit)))


@router.get("/folders/{folder_id}")
async def get_folder(folder_id: int, catalog: Catalog = Depends(get_catalog)) -> dict:
    """One folder with its direct subfolders and songs."""
    folder = await catalog.get(Folder, folder_id)
    return envelope(
        folders=schemas.folders([folder]),
        subfolders=schemas.folders(await catalog.subfolders(folder)),
        songs=schemas.songs(await catalog.songs_for_folder(folder.id)),
    )
