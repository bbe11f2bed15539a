# Copyright (C) 2024 Sonance Contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""Search API - search across artists, albums, songs and folders."""

from fastapi import APIRouter, Depends, Query

from sonance_server.api import schemas
from sonance_server.api.schemas import envelope
from sonance_server.auth import require_user
from sonance_server.database import get_catalog
from sonance_server.errors import InvalidInput
from sonance_server.models import Album, Artist, Folder, Song
from sonance_server.services.catalog import Catalog

router = APIRouter(tags=["search"], dependencies=[Depends(require_user)])

SEARCH_TYPES = {
    "artists": (Artist, schemas.artists),
    "albums": (Album, schemas.albums),
    "songs": (Song, schemas.songs),
    "folders": (Folder, schemas.folders),
}


def parse_types(value: str | None) -> list[str]:
    """Comma-separated subset of SEARCH_TYPES; all of them when empty."""
    if not value:
        return list(SEARCH_TYPES)
    types = [t.strip().lower() for t in value.split(",") if t.strip()]
    for t in types:
        if t not in SEARCH_TYPES:
            raise InvalidInput(f"invalid search type: {t}")
    return types


@router.get("/search/{query}")
async def search(
    query: str,
    type: str | None = Query(None, description="Comma-separated: artists,albums,songs,folders"),
    catalog: Catalog = Depends(get_catalog),
) -> dict:
    """Case-insensitive substring search. Every type is searched unless ?type= narrows it."""
    payload = {}
    for name in parse_types(type):
        model, serialize = SEARCH_TYPES[name]
        payload[name] = serialize(await catalog.search(model, query))
    return envelope(**payload)
