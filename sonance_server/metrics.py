# Copyright (C) 2024 Sonance Contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""Process-wide byte counters and status snapshot."""

import asyncio
import os
import platform
import resource
import socket
import sys
import threading
import time

from sonance_server import __version__

STARTED = time.time()


class ByteCounters:
    """Received/sent byte totals. add/load are safe from any thread."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._rx = 0
        self._tx = 0

    def add_rx(self, n: int) -> None:
        with self._lock:
            self._rx += n

    def add_tx(self, n: int) -> None:
        with self._lock:
            self._tx += n

    def load(self) -> tuple[int, int]:
        with self._lock:
            return self._rx, self._tx

    def reset(self) -> None:
        with self._lock:
            self._rx = self._tx = 0


counters = ByteCounters()


def _max_rss_bytes() -> int:
    rss = resource.getrusage(resource.RUSAGE_SELF).ru_maxrss
    # Linux reports KiB, macOS bytes
    return rss if sys.platform == "darwin" else rss * 1024


def process_status() -> dict:
    """Snapshot of this process for the status endpoint."""
    try:
        tasks = len(asyncio.all_tasks())
    except RuntimeError:
        tasks = 0
    return {
        "version": __version__,
        "uptime": int(time.time() - STARTED),
        "memoryMb": round(_max_rss_bytes() / 1024 / 1024, 2),
        "numCpu": os.cpu_count() or 1,
        "threads": threading.active_count(),
        "tasks": tasks,
        "pid": os.getpid(),
        "hostname": socket.gethostname(),
        "platform": platform.system().lower(),
        "architecture": platform.machine(),
        "python": platform.python_version(),
    }


def network_metrics() -> dict:
    rx, tx = counters.load()
    return {"rxBytes": rx, "txBytes": tx}
