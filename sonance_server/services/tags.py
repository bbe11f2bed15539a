# Copyright (C) 2024 Sonance Contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""Tag and audio property extraction using Mutagen."""

import os
from dataclasses import dataclass
from typing import Any

from mutagen import File as MutagenFile
from mutagen import MutagenError

from sonance_server.errors import DecodeError, PropertiesMissing, TagsMissing


@dataclass
class AudioTags:
    """Tags and stream properties of one audio file."""

    title: str
    artist: str
    album: str = ""
    genre: str = ""
    year: int = 0
    track: int = 0
    comment: str = ""
    bitrate: int = 0  # kbps
    channels: int = 0
    length: int = 0  # seconds
    sample_rate: int = 0


# Candidate keys per field. Easy ID3/MP4 and Vorbis comments use the lowercase
# names; APEv2 (ape, mpc, wv) matches case-insensitively; ASF (wma) uses WM/*.
TITLE_KEYS = ["title", "Title", "TITLE"]
ARTIST_KEYS = ["artist", "Artist", "ARTIST", "Author", "albumartist", "WM/AlbumArtist"]
ALBUM_KEYS = ["album", "Album", "ALBUM", "WM/AlbumTitle"]
GENRE_KEYS = ["genre", "Genre", "GENRE", "WM/Genre"]
YEAR_KEYS = ["date", "year", "Year", "DATE", "WM/Year"]
TRACK_KEYS = ["tracknumber", "Track", "TRACKNUMBER", "WM/TrackNumber"]
COMMENT_KEYS = ["comment", "Comment", "COMMENT", "description", "Description"]


def _get_tag(tags: Any, keys: list[str]) -> str | None:
    """Get first available tag value from a list of possible keys."""
    for key in keys:
        try:
            val = tags.get(key)
            if val is not None:
                if isinstance(val, (list, tuple)):
                    val = val[0] if val else None
                if hasattr(val, "value"):
                    val = val.value
                if isinstance(val, bytes):
                    val = val.decode("utf-8", errors="replace")
                if val:
                    return str(val).strip()
        except (KeyError, IndexError, TypeError, ValueError):
            continue
    return None


def _leading_int(value: str | None) -> int:
    """'2020-05-01' -> 2020, '3/12' -> 3, anything else -> 0."""
    if not value:
        return 0
    digits = ""
    for ch in value.strip():
        if not ch.isdigit():
            break
        digits += ch
    return int(digits) if digits else 0


def read_tags(path: str) -> AudioTags:
    """Read tags and properties from the audio file at path.

    Raises DecodeError if Mutagen cannot parse the file, TagsMissing if title
    or artist is empty, PropertiesMissing if bitrate, channels, length or
    sample rate is zero.
    """
    try:
        audio = MutagenFile(path, easy=True)
    except (MutagenError, OSError) as e:
        raise DecodeError(path, f"file could not be decoded: {e}") from e
    if audio is None:
        raise DecodeError(path)

    tags = audio.tags if audio.tags is not None else {}
    info = audio.info

    result = AudioTags(
        title=_get_tag(tags, TITLE_KEYS) or "",
        artist=_get_tag(tags, ARTIST_KEYS) or "",
        album=_get_tag(tags, ALBUM_KEYS) or "",
        genre=_get_tag(tags, GENRE_KEYS) or "",
        year=_leading_int(_get_tag(tags, YEAR_KEYS)),
        track=_leading_int(_get_tag(tags, TRACK_KEYS)),
        comment=_get_tag(tags, COMMENT_KEYS) or "",
        channels=int(getattr(info, "channels", 0) or 0),
        length=int(getattr(info, "length", 0) or 0),
        sample_rate=int(getattr(info, "sample_rate", 0) or 0),
    )

    bitrate = int(getattr(info, "bitrate", 0) or 0)
    if not bitrate and result.length:
        # Some container readers (APE, Musepack) omit the bitrate
        bitrate = int(os.path.getsize(path) * 8 / result.length)
    result.bitrate = bitrate // 1000

    if not result.title or not result.artist:
        raise TagsMissing(path)
    if not (result.bitrate and result.channels and result.length and result.sample_rate):
        raise PropertiesMissing(path)
    return result
