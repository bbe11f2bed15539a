# Copyright (C) 2024 Sonance Contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""Subsonic API emulation (XML, protocol version 1.8.0).

Directory ids bridge the catalog into Subsonic's tree view with a
``<kind>_<id>`` prefix: ``artist_3``, ``album_12``, ``folder_7``. Song and
cover art ids are plain integers.
"""

import os
import time
import xml.etree.ElementTree as ET
from collections import defaultdict
from collections.abc import Awaitable, Callable

from fastapi import APIRouter, Depends, Request
from fastapi.responses import Response

from sonance_server.auth import Principal, get_principal
from sonance_server.database import get_catalog
from sonance_server.errors import (
    BadCredentials,
    InvalidInput,
    MissingParameter,
    NotFound,
    SonanceError,
    SubsonicError,
    Unauthorized,
)
from sonance_server.models import Album, Artist, Folder, Song
from sonance_server.routers.artwork import art_response
from sonance_server.routers.streaming import stream_song
from sonance_server.services.catalog import Catalog

router = APIRouter(tags=["subsonic"])

XMLNS = "http://subsonic.org/restapi"
PROTOCOL_VERSION = "1.8.0"
CREATED_FORMAT = "%Y-%m-%dT%H:%M:%S"
DEFAULT_LIST_SIZE = 10
MAX_LIST_SIZE = 500


def _container(status: str) -> ET.Element:
    return ET.Element("subsonic-response", {"xmlns": XMLNS, "status": status, "version": PROTOCOL_VERSION})


def xml_response(root: ET.Element) -> Response:
    body = ET.tostring(root, encoding="utf-8", xml_declaration=True)
    return Response(content=body, media_type="text/xml")


def failed_response(error: Exception) -> Response:
    """The protocol's failed envelope; always HTTP 200."""
    if isinstance(error, SubsonicError):
        failure = error
    elif isinstance(error, Unauthorized):
        failure = BadCredentials()
    elif isinstance(error, InvalidInput):
        failure = MissingParameter()
    else:
        failure = SubsonicError()
    root = _container("failed")
    ET.SubElement(root, "error", {"code": str(failure.subsonic_code), "message": failure.message})
    return xml_response(root)


def _created(unix: int) -> str:
    return time.strftime(CREATED_FORMAT, time.localtime(unix))


def _attrs(**values) -> dict[str, str]:
    """XML attributes, dropping None and rendering bools as true/false."""
    out = {}
    for key, value in values.items():
        if value is None:
            continue
        if isinstance(value, bool):
            value = "true" if value else "false"
        out[key] = str(value)
    return out


def song_element(tag: str, song: Song, media: str) -> ET.Element:
    try:
        path = os.path.relpath(song.file_name, media)
    except ValueError:
        path = song.file_name
    return ET.Element(
        tag,
        _attrs(
            id=song.id,
            parent=f"album_{song.album_id}",
            title=song.title,
            album=song.album_title,
            artist=song.artist_title,
            isDir=False,
            coverArt=song.art_id,
            created=_created(song.last_modified),
            duration=song.length,
            bitRate=song.bitrate,
            track=song.track,
            year=song.year or None,
            genre=song.genre or None,
            size=song.file_size,
            suffix=song.extension.lstrip("."),
            contentType=song.mime_type,
            isVideo=False,
            path=path,
            albumId=song.album_id,
            artistId=song.artist_id,
            type="music",
        ),
    )


def album_element(tag: str, album: Album, songs: list[Song]) -> ET.Element:
    cover = next((s.art_id for s in songs if s.art_id), None)
    created = max((s.last_modified for s in songs), default=0)
    return ET.Element(
        tag,
        _attrs(
            id=f"album_{album.id}",
            name=album.title,
            title=album.title,
            artist=album.artist_title,
            artistId=f"artist_{album.artist_id}",
            parent=f"artist_{album.artist_id}",
            isDir=True,
            coverArt=cover,
            songCount=len(songs),
            duration=sum(s.length for s in songs),
            created=_created(created),
            year=album.year or None,
        ),
    )


def _param(request: Request, name: str, required: bool = True) -> str:
    value = request.query_params.get(name, "")
    if required and not value:
        raise MissingParameter()
    return value


def _size(request: Request, name: str, default: int) -> int:
    raw = request.query_params.get(name)
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        raise MissingParameter() from None
    return max(0, min(value, MAX_LIST_SIZE))


def _prefixed_id(value: str, prefix: str | None = None) -> tuple[str, int]:
    """'artist_3' -> ('artist', 3); a bare integer gets prefix as its kind."""
    kind, _, number = value.rpartition("_")
    if not kind:
        kind = prefix or ""
    try:
        return kind, int(number)
    except ValueError:
        raise NotFound(f"unknown id: {value}") from None


class SubsonicContext:
    def __init__(self, request: Request, catalog: Catalog, principal: Principal):
        self.request = request
        self.catalog = catalog
        self.principal = principal

    @property
    def media(self) -> str:
        return str(self.request.app.state.settings.media)


async def ping(ctx: SubsonicContext) -> Response:
    return xml_response(_container("ok"))


async def get_license(ctx: SubsonicContext) -> Response:
    root = _container("ok")
    ET.SubElement(root, "license", {"valid": "true"})
    return xml_response(root)


async def get_music_folders(ctx: SubsonicContext) -> Response:
    root = _container("ok")
    folders = ET.SubElement(root, "musicFolders")
    name = os.path.basename(os.path.normpath(ctx.media)) or ctx.media
    ET.SubElement(folders, "musicFolder", {"id": "0", "name": name})
    return xml_response(root)


async def get_indexes(ctx: SubsonicContext) -> Response:
    """Artists grouped under the uppercase first letter of their name."""
    groups: dict[str, list[Artist]] = defaultdict(list)
    for artist in await ctx.catalog.artists_by_title():
        first = artist.title[:1].upper()
        groups[first if first.isalpha() else "#"].append(artist)

    root = _container("ok")
    indexes = ET.SubElement(root, "indexes", {"lastModified": str(int(time.time() * 1000))})
    for name in sorted(groups):
        index = ET.SubElement(indexes, "index", {"name": name})
        for artist in groups[name]:
            ET.SubElement(index, "artist", {"id": f"artist_{artist.id}", "name": artist.title})
    return xml_response(root)


async def get_music_directory(ctx: SubsonicContext) -> Response:
    kind, entity_id = _prefixed_id(_param(ctx.request, "id"), prefix="folder")
    root = _container("ok")

    if kind == "artist":
        artist = await ctx.catalog.get(Artist, entity_id)
        directory = ET.SubElement(root, "directory", {"id": f"artist_{artist.id}", "name": artist.title})
        for album in await ctx.catalog.albums_for_artist(artist.id):
            songs = await ctx.catalog.songs_for_album(album.id)
            directory.append(album_element("child", album, songs))
    elif kind == "album":
        album = await ctx.catalog.get(Album, entity_id)
        directory = ET.SubElement(
            root,
            "directory",
            {"id": f"album_{album.id}", "name": album.title, "parent": f"artist_{album.artist_id}"},
        )
        for song in await ctx.catalog.songs_for_album(album.id):
            directory.append(song_element("child", song, ctx.media))
    elif kind == "folder":
        folder = await ctx.catalog.get(Folder, entity_id)
        attrs = {"id": f"folder_{folder.id}", "name": folder.title}
        if folder.parent_id:
            attrs["parent"] = f"folder_{folder.parent_id}"
        directory = ET.SubElement(root, "directory", attrs)
        for sub in await ctx.catalog.subfolders(folder):
            ET.SubElement(
                directory,
                "child",
                {"id": f"folder_{sub.id}", "parent": f"folder_{folder.id}", "title": sub.title, "isDir": "true"},
            )
        for song in await ctx.catalog.songs_for_folder(folder.id):
            directory.append(song_element("child", song, ctx.media))
    else:
        raise NotFound(f"unknown directory kind: {kind}")
    return xml_response(root)


async def get_album(ctx: SubsonicContext) -> Response:
    _, album_id = _prefixed_id(_param(ctx.request, "id"), prefix="album")
    album = await ctx.catalog.get(Album, album_id)
    songs = await ctx.catalog.songs_for_album(album.id)
    root = _container("ok")
    element = album_element("album", album, songs)
    for song in songs:
        element.append(song_element("song", song, ctx.media))
    root.append(element)
    return xml_response(root)


async def get_album_list2(ctx: SubsonicContext) -> Response:
    size = _size(ctx.request, "size", DEFAULT_LIST_SIZE)
    offset = _size(ctx.request, "offset", 0)
    root = _container("ok")
    album_list = ET.SubElement(root, "albumList2")
    for album in await ctx.catalog.limit(Album, offset, size):
        songs = await ctx.catalog.songs_for_album(album.id)
        album_list.append(album_element("album", album, songs))
    return xml_response(root)


async def get_random_songs(ctx: SubsonicContext) -> Response:
    size = _size(ctx.request, "size", DEFAULT_LIST_SIZE)
    root = _container("ok")
    random_songs = ET.SubElement(root, "randomSongs")
    for song in await ctx.catalog.random(Song, size):
        random_songs.append(song_element("song", song, ctx.media))
    return xml_response(root)


async def get_cover_art(ctx: SubsonicContext) -> Response:
    _, art_id = _prefixed_id(_param(ctx.request, "id"), prefix="art")
    size = ctx.request.query_params.get("size")
    image = await ctx.request.app.state.art.resolve(art_id, size)
    return art_response(ctx.request, image)


async def stream(ctx: SubsonicContext) -> Response:
    _, song_id = _prefixed_id(_param(ctx.request, "id"), prefix="song")
    return await stream_song(ctx.request, await ctx.catalog.get(Song, song_id))


async def get_playlists(ctx: SubsonicContext) -> Response:
    root = _container("ok")
    ET.SubElement(root, "playlists")
    return xml_response(root)


async def get_starred(ctx: SubsonicContext) -> Response:
    root = _container("ok")
    ET.SubElement(root, "starred")
    return xml_response(root)


METHODS: dict[str, Callable[[SubsonicContext], Awaitable[Response]]] = {
    "ping": ping,
    "getLicense": get_license,
    "getMusicFolders": get_music_folders,
    "getIndexes": get_indexes,
    "getMusicDirectory": get_music_directory,
    "getAlbum": get_album,
    "getAlbumList2": get_album_list2,
    "getRandomSongs": get_random_songs,
    "getCoverArt": get_cover_art,
    "stream": stream,
    "getPlaylists": get_playlists,
    "getStarred": get_starred,
}


@router.api_route("/subsonic/{method}", methods=["GET", "POST"])
async def subsonic(
    method: str,
    request: Request,
    principal: Principal = Depends(get_principal),
    catalog: Catalog = Depends(get_catalog),
) -> Response:
    handler = METHODS.get(method.removesuffix(".view"))
    if handler is None:
        return failed_response(SubsonicError())
    try:
        return await handler(SubsonicContext(request, catalog, principal))
    except SonanceError as e:
        return failed_response(e)
