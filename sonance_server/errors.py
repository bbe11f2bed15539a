# Copyright (C) 2024 Sonance Contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""Error taxonomy shared by the catalog, media services and HTTP boundary.

Core components raise these; the HTTP layer maps ``status_code`` and
``message`` onto the JSON envelope (see ``sonance_server.main``).
"""


class SonanceError(Exception):
    """Base error. ``status_code`` is the HTTP status used at the boundary."""

    status_code = 500
    message = "server error"

    def __init__(self, message: str | None = None):
        if message is not None:
            self.message = message
        super().__init__(self.message)


class NotFound(SonanceError):
    status_code = 404
    message = "not found"


class Conflict(SonanceError):
    status_code = 409
    message = "entity already exists"


class StorageError(SonanceError):
    status_code = 500
    message = "server error"


class Cancelled(SonanceError):
    status_code = 503
    message = "operation cancelled"


# Invalid input
class InvalidInput(SonanceError):
    status_code = 400
    message = "invalid input"


class UnsupportedVersion(InvalidInput):
    def __init__(self, version: str):
        super().__init__(f"unsupported API version: {version}")


class InvalidSize(InvalidInput):
    message = "invalid integer size"


class NegativeSize(InvalidInput):
    message = "negative integer size"


class InvalidCodec(InvalidInput):
    message = "invalid transcoder codec"


class InvalidQuality(InvalidInput):
    message = "invalid quality for codec"


class CannotSeek(SonanceError):
    status_code = 416
    message = "seeking is unavailable on transcoded media"


# Authentication / authorization
class Unauthorized(SonanceError):
    status_code = 401
    message = "authentication failed"


class InvalidUsername(Unauthorized):
    message = "invalid username"


class InvalidPassword(Unauthorized):
    message = "invalid password"


class InvalidToken(Unauthorized):
    message = "invalid token"


class SessionExpired(Unauthorized):
    message = "session expired"


class Forbidden(SonanceError):
    status_code = 403
    message = "permission denied"


class RateLimited(SonanceError):
    status_code = 429
    message = "too many requests, try again later"


# Media files
class MediaError(SonanceError):
    status_code = 500

    def __init__(self, path: str, message: str | None = None):
        self.path = path
        super().__init__(message or self.message)


class TagsMissing(MediaError):
    message = "required tags could not be extracted"


class PropertiesMissing(MediaError):
    message = "required properties could not be extracted"


class DecodeError(MediaError):
    message = "file could not be decoded"


# Encoder
class EncoderFailed(SonanceError):
    status_code = 500
    message = "encoder failed"


class EncoderMissing(SonanceError):
    status_code = 503
    message = "ffmpeg not found, transcoding disabled"


# Subsonic protocol failures, rendered as the protocol's XML envelope
class SubsonicError(SonanceError):
    status_code = 200
    subsonic_code = 0
    message = "An error occurred."


class MissingParameter(SubsonicError):
    subsonic_code = 10
    message = "Required parameter is missing."


class BadCredentials(SubsonicError):
    subsonic_code = 40
    message = "Wrong username or password."
