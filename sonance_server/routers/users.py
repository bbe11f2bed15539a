# Copyright (C) 2024 Sonance Contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""User API routes. Admins manage everyone; users may update themselves."""

from fastapi import APIRouter, Depends, Form

from sonance_server.api import schemas
from sonance_server.api.schemas import envelope
from sonance_server.auth import Principal, require_admin, require_user
from sonance_server.database import get_catalog
from sonance_server.errors import Forbidden
from sonance_server.models import User
from sonance_server.services import users as user_service
from sonance_server.services.catalog import Catalog

router = APIRouter(tags=["users"])


@router.get("/users")
async def list_users(
    principal: Principal = Depends(require_user),
    catalog: Catalog = Depends(get_catalog),
) -> dict:
    """All users for admins; only yourself otherwise."""
    if principal.is_admin:
        return envelope(users=schemas.users(await catalog.all(User)))
    return envelope(users=schemas.users([principal.user]))


@router.get("/users/{user_id}")
async def get_user(
    user_id: int,
    principal: Principal = Depends(require_user),
    catalog: Catalog = Depends(get_catalog),
) -> dict:
    if not principal.is_admin and user_id != principal.user.id:
        raise Forbidden()
    return envelope(users=schemas.users([await catalog.get(User, user_id)]))


@router.post("/users")
async def create_user(
    username: str = Form(""),
    password: str = Form(""),
    role: str = Form(""),
    principal: Principal = Depends(require_admin),
    catalog: Catalog = Depends(get_catalog),
) -> dict:
    user = await user_service.create_user(
        catalog, username, password, user_service.parse_role(role)
    )
    return envelope(users=schemas.users([user]))


@router.put("/users/{user_id}")
async def update_user(
    user_id: int,
    username: str = Form(""),
    password: str = Form(""),
    role: str = Form(""),
    principal: Principal = Depends(require_user),
    catalog: Catalog = Depends(get_catalog),
) -> dict:
    user = await user_service.update_user(
        catalog,
        principal.user,
        user_id,
        username=username or None,
        password=password or None,
        role=user_service.parse_role(role) if role else None,
    )
    return envelope(users=schemas.users([user]))


@router.delete("/users/{user_id}")
async def delete_user(
    user_id: int,
    principal: Principal = Depends(require_admin),
    catalog: Catalog = Depends(get_catalog),
) -> dict:
    await user_service.delete_user(catalog, principal.user, user_id)
    return envelope()
