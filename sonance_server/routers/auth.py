# Copyright (C) 2024 Sonance Contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""Authentication API routes."""

import logging
import time

from fastapi import APIRouter, Depends, Query

from sonance_server.api.schemas import SessionResponse, envelope
from sonance_server.auth import TOKEN_TTL, Principal, get_principal, new_session_key, require_user
from sonance_server.database import get_catalog
from sonance_server.errors import Unauthorized
from sonance_server.models import Session
from sonance_server.rate_limit import rate_limit_login
from sonance_server.services.catalog import Catalog
from sonance_server.services.users import end_session

logger = logging.getLogger(__name__)

router = APIRouter(tags=["auth"])


@router.api_route("/login", methods=["GET", "POST"], dependencies=[Depends(rate_limit_login)])
async def login(
    c: str = Query("", description="Client name recorded on the session"),
    principal: Principal = Depends(get_principal),
    catalog: Catalog = Depends(get_catalog),
) -> dict:
    """Authenticate with HTTP Basic or username/password fields and open a session."""
    if principal.user is None:
        raise Unauthorized()
    session = await catalog.save(
        Session(
            user_id=principal.user.id,
            key=new_session_key(),
            expire=int(time.time()) + TOKEN_TTL,
            client=c,
        )
    )
    logger.info("auth: login: %s [client: %s]", principal.user.username, c or "-")
    return envelope(session=SessionResponse.model_validate(session))


@router.post("/logout")
async def logout(
    principal: Principal = Depends(require_user),
    catalog: Catalog = Depends(get_catalog),
) -> dict:
    """Destroy the session used for this request."""
    if principal.session is None:
        raise Unauthorized("no session to end")
    await end_session(catalog, principal.session)
    logger.info("auth: logout: %s", principal.user.username)
    return envelope()
