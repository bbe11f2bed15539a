# Copyright (C) 2024 Sonance Contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""Status API - process information and optional metrics."""

from fastapi import APIRouter, Depends, Query, Request

from sonance_server.api.schemas import envelope
from sonance_server.auth import require_user
from sonance_server.database import get_catalog
from sonance_server.errors import InvalidInput
from sonance_server.metrics import network_metrics, process_status
from sonance_server.services.catalog import Catalog

router = APIRouter(tags=["status"], dependencies=[Depends(require_user)])

METRIC_GROUPS = ("database", "network")


@router.get("/status")
async def status(
    request: Request,
    metrics: str | None = Query(None, description="Comma-separated: all, database, network"),
    catalog: Catalog = Depends(get_catalog),
) -> dict:
    result = process_status()
    tasks = getattr(request.app.state, "tasks", None)
    if tasks is not None:
        result["library"] = tasks.progress
    art = getattr(request.app.state, "art", None)
    if art is not None:
        result["artCache"] = {"hits": art.cache.hits, "misses": art.cache.misses, "bytes": art.cache.size}
    encoders = getattr(request.app.state, "encoders", None)
    if encoders is not None:
        result["transcoding"] = encoders.available
        result["activeTranscodes"] = len(encoders.active)

    if not metrics:
        return envelope(status=result)

    groups = {m.strip().lower() for m in metrics.split(",") if m.strip()}
    if "all" in groups:
        groups = set(METRIC_GROUPS)
    unknown = groups - set(METRIC_GROUPS)
    if unknown:
        raise InvalidInput(f"invalid metric type: {sorted(unknown)[0]}")

    payload = {}
    if "database" in groups:
        payload["database"] = await catalog.database_metrics()
    if "network" in groups:
        payload["network"] = network_metrics()
    return envelope(status=result, metrics=payload)
