# Copyright (C) 2024 Sonance Contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""Chunked response bodies with transfer accounting and progress logs."""

import itertools
import logging
import time
from collections.abc import AsyncIterator, Awaitable, Callable, Iterator
from email.utils import formatdate

import anyio
from fastapi.responses import StreamingResponse
from starlette.concurrency import iterate_in_threadpool
from starlette.types import Receive, Scope, Send

from sonance_server.metrics import counters

logger = logging.getLogger(__name__)

CHUNK_SIZE = 8 * 1024
PROGRESS_INTERVAL = 5.0

_stream_ids = itertools.count(1)


def _progress(stream_id: int, label: str, sent: int, total: int | None, elapsed: float) -> str:
    mb = sent / 1024 / 1024
    rate = (sent * 8 / 1000 / 1000 / elapsed) if elapsed > 0 else 0.0
    if total:
        pct = int(sent * 100 / total)
        return "stream: [#%05d] [%03d%%] %s: %.2f / %.2f MB [%.2f Mbps]" % (
            stream_id, pct, label, mb, total / 1024 / 1024, rate,
        )
    return "stream: [#%05d] %s: sent %.2f MB [%.2f Mbps]" % (stream_id, label, mb, rate)


async def transfer(
    label: str,
    chunks: AsyncIterator[bytes] | Iterator[bytes],
    total: int | None = None,
) -> AsyncIterator[bytes]:
    """Pass chunks through, counting bytes sent and logging progress every few seconds.

    Sync iterators are read in the threadpool. Closing this generator closes
    ``chunks`` as well.
    """
    source = chunks
    if not hasattr(chunks, "__aiter__"):
        chunks = iterate_in_threadpool(chunks)
    stream_id = next(_stream_ids)
    started = last_log = time.monotonic()
    sent = 0
    completed = False
    try:
        async for chunk in chunks:
            yield chunk
            sent += len(chunk)
            counters.add_tx(len(chunk))
            now = time.monotonic()
            if now - last_log >= PROGRESS_INTERVAL:
                last_log = now
                logger.info(_progress(stream_id, label, sent, total, now - started))
        completed = True
    finally:
        if hasattr(chunks, "aclose"):
            await chunks.aclose()
        if hasattr(source, "close"):
            source.close()
        elapsed = time.monotonic() - started
        if completed:
            logger.info(_progress(stream_id, label, sent, total, elapsed) + " complete")
        else:
            logger.info(_progress(stream_id, label, sent, total, elapsed) + " stopped")


def file_chunks(path: str, start: int = 0, length: int | None = None) -> Iterator[bytes]:
    """Read length bytes of path from start (to EOF when length is None)."""
    remaining = length
    with open(path, "rb") as f:
        if start:
            f.seek(start)
        while remaining is None or remaining > 0:
            size = CHUNK_SIZE if remaining is None else min(CHUNK_SIZE, remaining)
            data = f.read(size)
            if not data:
                break
            if remaining is not None:
                remaining -= len(data)
            yield data


def http_date(unix: int | float) -> str:
    """RFC 1123 date for Last-Modified headers."""
    return formatdate(unix, usegmt=True)


class ClosingStreamingResponse(StreamingResponse):
    """StreamingResponse that always closes its body, even when the client disconnects.

    Starlette stops iterating on disconnect but leaves the generator
    suspended; closing it runs the generator's cleanup (for transcodes,
    killing and reaping the encoder). ``on_close`` runs afterwards.
    """

    def __init__(self, content, *args, on_close: Callable[[], Awaitable[None]] | None = None, **kwargs):
        super().__init__(content, *args, **kwargs)
        self.on_close = on_close

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        try:
            await super().__call__(scope, receive, send)
        finally:
            with anyio.CancelScope(shield=True):
                if hasattr(self.body_iterator, "aclose"):
                    await self.body_iterator.aclose()
                if self.on_close is not None:
                    await self.on_close()
