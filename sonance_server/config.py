# Copyright (C) 2024 Sonance Contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""Configuration for Sonance Server."""

from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings from environment variables (prefix SONANCE_)."""

    model_config = SettingsConfigDict(
        env_prefix="SONANCE_", env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    # Server bind address, host:port (empty host binds all interfaces)
    host: str = ":8080"

    # Music library root
    media: Path = Path("/music")

    # Database
    db: str = "sqlite+aiosqlite:///sonance.db"

    # Shutdown grace period in seconds
    timeout: float = 5.0

    # Skip creation of the initial admin user
    no_root: bool = False

    # FFmpeg
    ffmpeg_path: str = "ffmpeg"

    # Resized art cache ceiling in bytes
    art_cache_bytes: int = 32 * 1024 * 1024
    # Rendered waveform cache ceiling in bytes
    waveform_cache_bytes: int = 8 * 1024 * 1024

    # Library maintenance
    scan_on_startup: bool = True
    orphan_scan_interval_minutes: float = 30  # 0 = disabled
    status_interval_minutes: float = 5  # 0 = disabled

    log_level: str = "INFO"

    def bind_address(self) -> tuple[str, int]:
        """Split host into (interface, port). ':8080' binds all interfaces."""
        host, sep, port = self.host.rpartition(":")
        if not sep:
            return (port or "0.0.0.0", 8080)
        if not port:
            return (host or "0.0.0.0", 8080)
        return (host or "0.0.0.0", int(port))

