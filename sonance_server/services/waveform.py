# Copyright (C) 2024 Sonance Contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""Waveform images: ffmpeg decodes to mono PCM, Pillow draws the peaks."""

import array
import asyncio
import logging
from io import BytesIO

from PIL import Image, ImageDraw

from sonance_server.errors import DecodeError, EncoderMissing, InvalidInput
from sonance_server.models import Song
from sonance_server.services.artwork import ByteLRUCache
from sonance_server.services.transcode import EncoderRegistry

logger = logging.getLogger(__name__)

SAMPLE_RATE = 8000
DEFAULT_SIZE = (1024, 128)
MAX_DIMENSION = 8192

Color = tuple[int, int, int]


def parse_color(value: str | None, default: Color) -> Color:
    """'ff8800' or '#ff8800' -> (255, 136, 0)."""
    if not value:
        return default
    value = value.lstrip("#")
    if len(value) == 3:
        value = "".join(ch * 2 for ch in value)
    try:
        if len(value) != 6:
            raise ValueError(value)
        return int(value[0:2], 16), int(value[2:4], 16), int(value[4:6], 16)
    except ValueError:
        raise InvalidInput(f"invalid hex color: {value}") from None


def parse_dimensions(value: str | None) -> tuple[int, int]:
    """'640x120' -> (640, 120)."""
    if not value:
        return DEFAULT_SIZE
    try:
        width, height = (int(v) for v in value.lower().split("x"))
    except ValueError:
        raise InvalidInput("invalid x-separated integer pair for size") from None
    if not (0 < width <= MAX_DIMENSION and 0 < height <= MAX_DIMENSION):
        raise InvalidInput("invalid x-separated integer pair for size")
    return width, height


def render_waveform(pcm: bytes, width: int, height: int, fg: Color, bg: Color, alt: Color) -> bytes:
    """Draw one peak bar per column from signed 16-bit mono samples and encode as PNG."""
    samples = array.array("h")
    samples.frombytes(pcm[: len(pcm) - len(pcm) % 2])

    image = Image.new("RGB", (width, height), bg)
    draw = ImageDraw.Draw(image)
    middle = height / 2
    count = len(samples)
    if count:
        per_column = max(1, count // width)
        for x in range(width):
            window = samples[x * per_column : (x + 1) * per_column]
            if not window:
                break
            peak = max(max(window), -min(window)) / 32768
            half = max(1.0, peak * middle)
            draw.line(
                [(x, middle - half), (x, middle + half - 1)],
                fill=fg if x % 2 == 0 else alt,
            )

    output = BytesIO()
    image.save(output, format="PNG")
    return output.getvalue()


class WaveformRenderer:
    def __init__(self, encoders: EncoderRegistry, cache_bytes: int):
        self.encoders = encoders
        self.cache = ByteLRUCache(cache_bytes)

    async def _decode(self, song: Song) -> bytes:
        if self.encoders.ffmpeg is None:
            raise EncoderMissing()
        proc = await asyncio.create_subprocess_exec(
            self.encoders.ffmpeg,
            "-v", "quiet",
            "-i", song.file_name,
            "-map", "0:a",
            "-ac", "1",
            "-ar", str(SAMPLE_RATE),
            "-f", "s16le",
            "pipe:1",
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.DEVNULL,
        )
        try:
            pcm, _ = await proc.communicate()
        finally:
            if proc.returncode is None:
                proc.kill()
                await proc.communicate()
        if proc.returncode != 0:
            raise DecodeError(song.file_name, "unsupported audio format")
        return pcm

    async def render(
        self,
        song: Song,
        size: str | None = None,
        fg: str | None = None,
        bg: str | None = None,
        alt: str | None = None,
    ) -> bytes:
        """PNG waveform of song. Raises InvalidInput, EncoderMissing or DecodeError."""
        width, height = parse_dimensions(size)
        fg_color = parse_color(fg, (0, 0, 0))
        bg_color = parse_color(bg, (255, 255, 255))
        alt_color = parse_color(alt, fg_color)

        key = (song.id, width, height, fg_color, bg_color, alt_color)
        data = self.cache.get(key, song.last_modified)
        if data is not None:
            return data

        pcm = await self._decode(song)
        data = await asyncio.to_thread(render_waveform, pcm, width, height, fg_color, bg_color, alt_color)
        self.cache.put(key, song.last_modified, data)
        logger.debug("waveform: rendered [#%05d] %dx%d", song.id, width, height)
        return data
