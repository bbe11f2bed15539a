# Copyright (C) 2024 Sonance Contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""On-the-fly transcoding through an ffmpeg subprocess."""

import asyncio
import enum
import itertools
import logging
import os
import shutil
from collections.abc import AsyncIterator
from dataclasses import dataclass

from sonance_server.errors import EncoderFailed, EncoderMissing, InvalidCodec, InvalidQuality
from sonance_server.models import Song

logger = logging.getLogger(__name__)

CHUNK_SIZE = 8 * 1024

DEFAULT_CODEC = "mp3"
DEFAULT_QUALITY = "192"


class Mode(enum.Enum):
    CBR = "CBR"
    VBR = "VBR"


@dataclass(frozen=True)
class CodecFamily:
    name: str
    display: str
    encoder: str
    ext: str
    mime_type: str
    container: str
    cbr: tuple[int, ...]
    vbr: tuple[str, ...]
    vbr_flag: str
    extra_vbr_args: tuple[str, ...] = ()


FAMILIES = {
    "mp3": CodecFamily(
        name="mp3",
        display="MP3",
        encoder="libmp3lame",
        ext="mp3",
        mime_type="audio/mpeg",
        container="mp3",
        cbr=(128, 192, 256, 320),
        vbr=("V0", "V2", "V4"),
        vbr_flag="-qscale:a",
    ),
    "ogg": CodecFamily(
        name="ogg",
        display="Ogg Vorbis",
        encoder="libvorbis",
        ext="ogg",
        mime_type="audio/ogg",
        container="ogg",
        cbr=(128, 192, 256, 320, 500),
        vbr=("Q6", "Q8", "Q10"),
        vbr_flag="-q:a",
    ),
    "opus": CodecFamily(
        name="opus",
        display="Ogg Opus",
        encoder="libopus",
        ext="opus",
        mime_type="audio/ogg; codecs=opus",
        container="ogg",
        cbr=(128, 192, 256, 320, 500),
        vbr=("Q6", "Q8", "Q10"),
        vbr_flag="-q:a",
        extra_vbr_args=("-vbr", "on"),
    ),
}


@dataclass(frozen=True)
class Profile:
    """A codec family with a mode and a quality from that family's allow-list."""

    family: CodecFamily
    mode: Mode
    quality: str

    @property
    def codec(self) -> str:
        return self.family.display

    @property
    def ext(self) -> str:
        return self.family.ext

    @property
    def mime_type(self) -> str:
        return self.family.mime_type

    def encoder_args(self) -> list[str]:
        """Codec-specific ffmpeg arguments (codec selection and quality)."""
        args = ["-acodec", self.family.encoder]
        if self.mode is Mode.CBR:
            args += ["-b:a", f"{self.quality}k"]
        else:
            args += list(self.family.extra_vbr_args)
            args += [self.family.vbr_flag, self.quality[1:]]
        return args

    def output_name(self, song: Song) -> str:
        stem = os.path.splitext(os.path.basename(song.file_name))[0]
        return f"{stem}.{self.ext}"

    def __str__(self) -> str:
        if self.mode is Mode.CBR:
            return f"{self.codec} {self.quality}kbps"
        return f"{self.codec} {self.quality}"


def resolve_profile(codec: str | None, quality: str | None) -> Profile:
    """Map the codec/quality query values to a Profile.

    Defaults to MP3 192kbps. Raises InvalidCodec or InvalidQuality.
    """
    family = FAMILIES.get((codec or DEFAULT_CODEC).lower())
    if family is None:
        raise InvalidCodec()

    quality = (quality or DEFAULT_QUALITY).strip()
    try:
        bitrate = int(quality)
    except ValueError:
        token = quality.upper()
        if token not in family.vbr:
            raise InvalidQuality() from None
        return Profile(family, Mode.VBR, token)
    if bitrate not in family.cbr:
        raise InvalidQuality()
    return Profile(family, Mode.CBR, str(bitrate))


class TranscodeState(enum.Enum):
    IDLE = "idle"
    PREPARING = "preparing"
    STREAMING = "streaming"
    COMPLETED = "completed"
    CLIENT_RESET = "client_reset"
    ENCODER_FAILED = "encoder_failed"
    REAPED = "reaped"


class EncoderRegistry:
    """Knows whether ffmpeg and its encoders are present, and which transcodes are running."""

    def __init__(self, ffmpeg_path: str = "ffmpeg"):
        self.ffmpeg_path = ffmpeg_path
        self.ffmpeg: str | None = None
        self.encoders: set[str] = set()
        self.active: set["Transcoder"] = set()

    @property
    def available(self) -> bool:
        return self.ffmpeg is not None

    async def detect(self) -> bool:
        """Locate ffmpeg and list the encoders it was built with."""
        ffmpeg = shutil.which(self.ffmpeg_path)
        if ffmpeg is None:
            logger.warning("transcode: could not find ffmpeg, transcoding will be disabled")
            self.ffmpeg = None
            return False

        try:
            proc = await asyncio.create_subprocess_exec(
                ffmpeg, "-loglevel", "quiet", "-codecs",
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.DEVNULL,
            )
            output, _ = await proc.communicate()
        except OSError as e:
            logger.warning("transcode: could not run %s: %s, transcoding will be disabled", ffmpeg, e)
            self.ffmpeg = None
            return False

        listing = output.decode("utf-8", errors="replace")
        self.ffmpeg = ffmpeg
        self.encoders = {f.encoder for f in FAMILIES.values() if f.encoder in listing}
        for family in FAMILIES.values():
            if family.encoder in self.encoders:
                logger.info("transcode: ffmpeg found with %s (%s) encoder", family.encoder, family.display)
            else:
                logger.warning("transcode: ffmpeg has no %s encoder, %s disabled", family.encoder, family.display)
        return True

    def require(self, profile: Profile) -> str:
        """Path of ffmpeg if it can encode profile, else EncoderMissing."""
        if self.ffmpeg is None:
            raise EncoderMissing()
        if profile.family.encoder not in self.encoders:
            raise EncoderMissing(f"ffmpeg has no {profile.family.encoder} encoder, {profile.codec} disabled")
        return self.ffmpeg

    def transcoder(self, song: Song, profile: Profile) -> "Transcoder":
        return Transcoder(song, profile, self.require(profile), registry=self)

    async def reap_all(self, grace: float | None = None) -> None:
        """Kill every running encoder and wait up to grace seconds for them. Used at shutdown."""
        running = list(self.active)
        if not running:
            return
        try:
            await asyncio.wait_for(asyncio.gather(*(t.reap() for t in running)), grace)
        except asyncio.TimeoutError:
            logger.warning("transcode: %d encoder(s) not reaped after %.1fs", len(self.active), grace)


_transcode_ids = itertools.count(1)


class Transcoder:
    """One encoder process for one request.

    ``start()`` spawns the encoder, so a failure to launch it surfaces before
    any response is sent. ``stream()`` yields its output and always reaps the
    process on the way out, whether the stream completed, the client went
    away, or the encoder failed.
    """

    def __init__(self, song: Song, profile: Profile, ffmpeg: str, registry: EncoderRegistry | None = None):
        self.id = next(_transcode_ids)
        self.song = song
        self.profile = profile
        self.ffmpeg = ffmpeg
        self.registry = registry
        self.state = TranscodeState.IDLE
        self.outcome: TranscodeState | None = None
        self.process: asyncio.subprocess.Process | None = None
        self._reading = False
        self._reap_lock = asyncio.Lock()

    def command(self) -> list[str]:
        return [
            self.ffmpeg,
            "-v", "quiet",
            "-i", self.song.file_name,
            "-map", "0:a",
            *self.profile.encoder_args(),
            "-f", self.profile.family.container,
            "pipe:1",
        ]

    async def start(self) -> None:
        """Spawn the encoder. EncoderFailed if it cannot be started."""
        self.state = TranscodeState.PREPARING
        try:
            self.process = await asyncio.create_subprocess_exec(
                *self.command(),
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.DEVNULL,
            )
        except OSError as e:
            self.outcome = self.state = TranscodeState.ENCODER_FAILED
            logger.error("transcode: [#%05d] could not start encoder: %s", self.id, e)
            raise EncoderFailed() from e
        if self.registry is not None:
            self.registry.active.add(self)
        logger.info("transcode: [#%05d] %s -> %s", self.id, self.song.file_name, self.profile)

    async def stream(self) -> AsyncIterator[bytes]:
        if self.process is None:
            await self.start()
        try:
            self.state = TranscodeState.STREAMING
            while True:
                self._reading = True
                try:
                    chunk = await self.process.stdout.read(CHUNK_SIZE)
                finally:
                    self._reading = False
                if not chunk:
                    break
                yield chunk

            returncode = await self.process.wait()
            if returncode != 0:
                self.outcome = TranscodeState.ENCODER_FAILED
                logger.error("transcode: [#%05d] encoder exited with status %d", self.id, returncode)
                raise EncoderFailed(f"encoder exited with status {returncode}")
            self.outcome = TranscodeState.COMPLETED
        except (GeneratorExit, asyncio.CancelledError, BrokenPipeError, ConnectionResetError):
            self.outcome = TranscodeState.CLIENT_RESET
            logger.info("transcode: [#%05d] client connection reset", self.id)
            raise
        finally:
            if self.state is not TranscodeState.REAPED:
                self.state = self.outcome or self.state
            await self.reap()

    async def reap(self) -> None:
        """Kill the encoder if still running and wait for it to exit."""
        async with self._reap_lock:
            if self.state is TranscodeState.REAPED:
                return
            proc = self.process
            if proc is not None:
                if proc.returncode is None:
                    try:
                        proc.kill()
                    except ProcessLookupError:
                        pass
                if self._reading:
                    await proc.wait()
                else:
                    # wait() only returns once stdout has been read to EOF
                    await proc.communicate()
            if self.registry is not None:
                self.registry.active.discard(self)
            logger.debug("transcode: [#%05d] reaped (%s)", self.id, self.state.value)
            self.state = TranscodeState.REAPED
