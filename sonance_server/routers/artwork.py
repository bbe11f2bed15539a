# Copyright (C) 2024 Sonance Contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""Artwork API - serves cover art files, optionally resized."""

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import Response

from sonance_server.auth import require_user
from sonance_server.services.artwork import ArtImage, ArtResolver
from sonance_server.services.streaming import ClosingStreamingResponse, file_chunks, http_date, transfer

router = APIRouter(tags=["artwork"], dependencies=[Depends(require_user)])


def get_art_resolver(request: Request) -> ArtResolver:
    return request.app.state.art


def art_response(request: Request, image: ArtImage) -> Response:
    headers = {
        "Content-Length": str(image.length),
        "Last-Modified": http_date(image.last_modified),
    }
    request.state.tx_counted = True
    if image.content is not None:
        body = transfer("art", iter((image.content,)), image.length)
    else:
        body = transfer("art", file_chunks(image.path), image.length)
    return ClosingStreamingResponse(body, media_type=image.media_type, headers=headers)


@router.get("/art/{art_id}")
async def get_art(
    art_id: int,
    request: Request,
    size: str | None = Query(None, description="Resize to fit a size x size square"),
    resolver: ArtResolver = Depends(get_art_resolver),
) -> Response:
    """Art image by ID."""
    return art_response(request, await resolver.resolve(art_id, size))
