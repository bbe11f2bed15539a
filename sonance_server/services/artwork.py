# Copyright (C) 2024 Sonance Contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""Cover art lookup and resizing using Pillow."""

import asyncio
import logging
import os
from collections import OrderedDict
from dataclasses import dataclass
from io import BytesIO

from PIL import Image, UnidentifiedImageError

from sonance_server.errors import InvalidSize, NegativeSize, StorageError
from sonance_server.models import Art
from sonance_server.services.catalog import Catalog

logger = logging.getLogger(__name__)

# Formats Pillow can write back; anything else is resized to PNG
WRITABLE_FORMATS = {"JPEG", "PNG", "GIF"}


@dataclass
class ArtImage:
    """Resolved art. Exactly one of ``content`` (resized) or ``path`` (original) is set."""

    media_type: str
    length: int
    last_modified: int
    content: bytes | None = None
    path: str | None = None


def parse_size(size: str | None) -> int | None:
    """Parse the ``size`` query value: None if absent, InvalidSize / NegativeSize if bad."""
    if size is None or size == "":
        return None
    try:
        value = int(size)
    except ValueError as e:
        raise InvalidSize() from e
    if value <= 0:
        raise NegativeSize()
    return value


class ByteLRUCache:
    """LRU cache bounded by the total size of its values.

    Each entry remembers the source's last-modified time; a lookup with a
    different time drops the entry and counts as a miss.
    """

    def __init__(self, max_bytes: int):
        self.max_bytes = max_bytes
        self.size = 0
        self.hits = 0
        self.misses = 0
        self._entries: OrderedDict[tuple, tuple[int, bytes]] = OrderedDict()

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, key: tuple, last_modified: int) -> bytes | None:
        entry = self._entries.get(key)
        if entry is None:
            self.misses += 1
            return None
        if entry[0] != last_modified:
            self._remove(key)
            self.misses += 1
            return None
        self._entries.move_to_end(key)
        self.hits += 1
        return entry[1]

    def put(self, key: tuple, last_modified: int, data: bytes) -> None:
        if len(data) > self.max_bytes:
            return
        if key in self._entries:
            self._remove(key)
        self._entries[key] = (last_modified, data)
        self.size += len(data)
        while self.size > self.max_bytes:
            oldest = next(iter(self._entries))
            self._remove(oldest)

    def _remove(self, key: tuple) -> None:
        _, data = self._entries.pop(key)
        self.size -= len(data)


def _image_format(source) -> str:
    with Image.open(source) as img:
        return img.format or ""


def media_type_for(fmt: str) -> str:
    return Image.MIME.get(fmt.upper(), "application/octet-stream") if fmt else "application/octet-stream"


def resize_image(path: str, size: int) -> tuple[bytes, str]:
    """Scale the image at path to fit a size x size box. Returns (bytes, format)."""
    with Image.open(path) as img:
        fmt = img.format if img.format in WRITABLE_FORMATS else "PNG"
        if fmt == "JPEG" and img.mode not in ("RGB", "L"):
            img = img.convert("RGB")
        img.thumbnail((size, size), Image.Resampling.LANCZOS)
        output = BytesIO()
        img.save(output, format=fmt)
        return output.getvalue(), fmt


class ArtResolver:
    """Maps art ids to image bytes, caching resized renditions."""

    def __init__(self, catalog: Catalog, cache_bytes: int):
        self.catalog = catalog
        self.cache = ByteLRUCache(cache_bytes)

    async def resolve(self, art_id: int, size: str | None = None) -> ArtImage:
        """Raises InvalidSize / NegativeSize for a bad size, NotFound for an unknown id."""
        dimension = parse_size(size)
        art = await self.catalog.get(Art, art_id)

        try:
            stat = await asyncio.to_thread(os.stat, art.file_name)
        except OSError as e:
            logger.error("art: cannot stat %s: %s", art.file_name, e)
            raise StorageError() from e
        last_modified = int(stat.st_mtime)
        if last_modified != art.last_modified or stat.st_size != art.file_size:
            art.last_modified = last_modified
            art.file_size = stat.st_size
            await self.catalog.update(art)

        try:
            if dimension is None:
                fmt = await asyncio.to_thread(_image_format, art.file_name)
                return ArtImage(
                    media_type=media_type_for(fmt),
                    length=stat.st_size,
                    last_modified=last_modified,
                    path=art.file_name,
                )

            key = (art.id, dimension)
            data = self.cache.get(key, last_modified)
            if data is None:
                data, fmt = await asyncio.to_thread(resize_image, art.file_name, dimension)
                self.cache.put(key, last_modified, data)
                logger.debug("art: resized [#%05d] to %dpx (%d bytes)", art.id, dimension, len(data))
            else:
                fmt = await asyncio.to_thread(_image_format, BytesIO(data))
        except (OSError, UnidentifiedImageError) as e:
            logger.error("art: cannot read %s: %s", art.file_name, e)
            raise StorageError() from e

        return ArtImage(
            media_type=media_type_for(fmt),
            length=len(data),
            last_modified=last_modified,
            content=data,
        )
