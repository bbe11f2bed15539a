# Copyright (C) 2024 Sonance Contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""Streaming API - original files with HTTP range support, transcodes and waveforms."""

import asyncio
import logging
import os
from collections.abc import AsyncIterator
from urllib.parse import quote

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import Response

from sonance_server.auth import require_user
from sonance_server.database import get_catalog
from sonance_server.errors import CannotSeek, EncoderFailed, InvalidInput, NotFound, StorageError
from sonance_server.models import Song
from sonance_server.services.catalog import Catalog
from sonance_server.services.streaming import ClosingStreamingResponse, file_chunks, http_date, transfer
from sonance_server.services.transcode import EncoderRegistry, Transcoder, resolve_profile
from sonance_server.services.waveform import WaveformRenderer

logger = logging.getLogger(__name__)

router = APIRouter(tags=["streaming"], dependencies=[Depends(require_user)])


def get_encoders(request: Request) -> EncoderRegistry:
    return request.app.state.encoders


def get_waveforms(request: Request) -> WaveformRenderer:
    return request.app.state.waveforms


def parse_range(header: str, file_size: int) -> tuple[int, int]:
    """Parse ``bytes=start-end`` (either side optional) into an inclusive range."""
    try:
        range_str = header.replace("bytes=", "").strip()
        start_str, end_str = range_str.split("-", 1)
        if start_str:
            start = int(start_str)
            end = int(end_str) if end_str else file_size - 1
        else:
            # Suffix range: last N bytes
            start = max(0, file_size - int(end_str))
            end = file_size - 1
    except (ValueError, IndexError):
        raise InvalidInput("invalid Range header") from None
    if start >= file_size or start > end:
        raise CannotSeek("range not satisfiable")
    return start, min(end, file_size - 1)


async def stream_song(request: Request, song: Song) -> Response:
    """Original bytes of song, honouring a Range header."""
    try:
        file_size = await asyncio.to_thread(os.path.getsize, song.file_name)
    except FileNotFoundError:
        raise NotFound("song file not found") from None
    except OSError as e:
        raise StorageError() from e

    headers = {
        "Accept-Ranges": "bytes",
        "Last-Modified": http_date(song.last_modified),
    }
    label = os.path.basename(song.file_name)
    request.state.tx_counted = True

    range_header = request.headers.get("range")
    if not range_header:
        headers["Content-Length"] = str(file_size)
        return ClosingStreamingResponse(
            transfer(label, file_chunks(song.file_name), file_size),
            media_type=song.mime_type,
            headers=headers,
        )

    start, end = parse_range(range_header, file_size)
    content_length = end - start + 1
    headers["Content-Range"] = f"bytes {start}-{end}/{file_size}"
    headers["Content-Length"] = str(content_length)
    return ClosingStreamingResponse(
        transfer(label, file_chunks(song.file_name, start, content_length), content_length),
        status_code=206,
        media_type=song.mime_type,
        headers=headers,
    )


@router.get("/stream/{song_id}")
async def stream(song_id: int, request: Request, catalog: Catalog = Depends(get_catalog)) -> Response:
    """Stream a song's original file. Clients send Range: bytes=N- to seek."""
    return await stream_song(request, await catalog.get(Song, song_id))


async def encoded(transcoder: Transcoder) -> AsyncIterator[bytes]:
    """Encoder output for a response whose headers are already sent.

    An encoder failure can no longer become an error response, so it is
    logged and the body ends.
    """
    chunks = transcoder.stream()
    try:
        async for chunk in chunks:
            yield chunk
    except EncoderFailed as e:
        logger.error("transcode: [#%05d] %s, ending stream", transcoder.id, e.message)
    finally:
        await chunks.aclose()


@router.get("/transcode/{song_id}")
async def transcode(
    song_id: int,
    request: Request,
    codec: str | None = Query(None, description="mp3, ogg or opus"),
    quality: str | None = Query(None, description="CBR kbps (e.g. 192) or VBR preset (V0, Q8)"),
    catalog: Catalog = Depends(get_catalog),
    encoders: EncoderRegistry = Depends(get_encoders),
) -> Response:
    """Stream a song transcoded on the fly. No range support."""
    profile = resolve_profile(codec, quality)
    encoders.require(profile)
    song = await catalog.get(Song, song_id)
    if request.headers.get("range"):
        raise CannotSeek()

    transcoder = encoders.transcoder(song, profile)
    await transcoder.start()
    request.state.tx_counted = True
    return ClosingStreamingResponse(
        transfer(f"{os.path.basename(song.file_name)} -> {profile}", encoded(transcoder)),
        on_close=transcoder.reap,
        media_type=profile.mime_type,
        headers={
            "Last-Modified": http_date(song.last_modified),
            "Content-Disposition": f"inline; filename*=UTF-8''{quote(profile.output_name(song))}",
        },
    )


@router.get("/waveform/{song_id}")
async def waveform(
    song_id: int,
    size: str | None = Query(None, description="WIDTHxHEIGHT"),
    fg: str | None = Query(None, description="Foreground hex color"),
    bg: str | None = Query(None, description="Background hex color"),
    alt: str | None = Query(None, description="Alternate column hex color"),
    catalog: Catalog = Depends(get_catalog),
    renderer: WaveformRenderer = Depends(get_waveforms),
) -> Response:
    """PNG rendering of a song's waveform."""
    song = await catalog.get(Song, song_id)
    image = await renderer.render(song, size=size, fg=fg, bg=bg, alt=alt)
    return Response(
        content=image,
        media_type="image/png",
        headers={"Last-Modified": http_date(song.last_modified)},
    )
