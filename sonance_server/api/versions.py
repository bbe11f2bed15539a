# Copyright (C) 2024 Sonance Contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""API version handling."""

from sonance_server.errors import InvalidInput, NegativeSize, UnsupportedVersion

API_VERSION = "v0"
API_VERSIONS = frozenset({"v0"})
API_DOCUMENTATION = "/docs"


async def check_version(version: str) -> str:
    """Path dependency for every /api/{version} route."""
    if version not in API_VERSIONS:
        raise UnsupportedVersion(version)
    return version


def parse_limit(value: str | None) -> tuple[int, int] | None:
    """``?limit=offset,count`` -> (offset, count)."""
    if not value:
        return None
    try:
        offset, count = (int(v) for v in value.split(","))
    except ValueError:
        raise InvalidInput("invalid comma-separated integer pair for limit") from None
    if offset < 0 or count < 0:
        raise NegativeSize("negative integer in limit")
    return offset, count
