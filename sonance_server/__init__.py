# Copyright (C) 2024 Sonance Contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""Sonance Server - personal music library server."""

APP_NAME = "Sonance Server"
__version__ = "0.1.0"
