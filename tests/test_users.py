# Copyright (C) 2024 Sonance Contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""User management tests: who may create, read, change and delete accounts."""

import logging

import pytest
from httpx import AsyncClient

from sonance_server.auth import verify_password
from sonance_server.errors import InvalidInput
from sonance_server.models import Role, Session, User
from sonance_server.services.users import ensure_root_user, parse_role

from conftest import login


def test_parse_role():
    assert parse_role("2") is Role.ADMIN
    assert parse_role(0) is Role.GUEST
    with pytest.raises(InvalidInput, match="no role ID provided"):
        parse_role("")
    with pytest.raises(InvalidInput):
        parse_role("7")


async def test_root_user_created_once(catalog, caplog):
    with caplog.at_level(logging.WARNING):
        password = await ensure_root_user(catalog)
    assert password
    assert password in caplog.text

    root = await catalog.load(User(username="root"))
    assert root.is_admin
    assert verify_password(password, root.password_hash)
    assert await ensure_root_user(catalog) is None
    assert await ensure_root_user(catalog, no_root=True) is None


async def test_admin_creates_user(client: AsyncClient, admin_key: str):
    r = await client.post(
        f"/api/v0/users?s={admin_key}",
        data={"username": "guest", "password": "pw", "role": "0"},
    )
    assert r.status_code == 200
    created = r.json()["users"][0]
    assert created["username"] == "guest"
    assert created["role_id"] == 0
    assert "password_hash" not in created

    key = await login(client, "guest", "pw")
    assert key


async def test_create_user_validation(client: AsyncClient, admin_key: str, user):
    r = await client.post(f"/api/v0/users?s={admin_key}", data={"username": "x", "password": "pw"})
    assert r.status_code == 400
    assert r.json()["error"]["message"] == "no role ID provided"

    r = await client.post(
        f"/api/v0/users?s={admin_key}", data={"username": "listener", "password": "pw", "role": "1"}
    )
    assert r.status_code == 409


async def test_non_admin_cannot_create_or_delete(client: AsyncClient, admin, user_key: str):
    r = await client.post(
        f"/api/v0/users?s={user_key}", data={"username": "x", "password": "y", "role": "1"}
    )
    assert r.status_code == 403

    r = await client.delete(f"/api/v0/users/{admin.id}?s={user_key}")
    assert r.status_code == 403


async def test_user_sees_only_self(client: AsyncClient, admin, user, user_key: str, admin_key: str):
    r = await client.get(f"/api/v0/users?s={user_key}")
    assert [u["username"] for u in r.json()["users"]] == ["listener"]

    r = await client.get(f"/api/v0/users/{admin.id}?s={user_key}")
    assert r.status_code == 403

    r = await client.get(f"/api/v0/users?s={admin_key}")
    assert [u["username"] for u in r.json()["users"]] == ["root", "listener"]


async def test_user_updates_own_password_but_not_role(client: AsyncClient, app_catalog, user, user_key: str):
    r = await client.put(f"/api/v0/users/{user.id}?s={user_key}", data={"password": "changed"})
    assert r.status_code == 200
    stored = await app_catalog.get(User, user.id)
    assert verify_password("changed", stored.password_hash)

    r = await client.put(f"/api/v0/users/{user.id}?s={user_key}", data={"role": "2"})
    assert r.status_code == 403


async def test_user_cannot_update_others(client: AsyncClient, admin, user_key: str):
    r = await client.put(f"/api/v0/users/{admin.id}?s={user_key}", data={"username": "mine"})
    assert r.status_code == 403


async def test_admin_promotes_user(client: AsyncClient, user, admin_key: str):
    r = await client.put(f"/api/v0/users/{user.id}?s={admin_key}", data={"role": "2"})
    assert r.json()["users"][0]["role_id"] == 2


async def test_admin_cannot_delete_self(client: AsyncClient, admin, admin_key: str):
    r = await client.delete(f"/api/v0/users/{admin.id}?s={admin_key}")
    assert r.status_code == 403
    assert r.json()["error"]["message"] == "cannot delete current user"


async def test_deleting_user_ends_their_sessions(
    client: AsyncClient, app_catalog, user, user_key: str, admin_key: str
):
    r = await client.delete(f"/api/v0/users/{user.id}?s={admin_key}")
    assert r.status_code == 200
    assert not await app_catalog.exists(Session(key=user_key))

    r = await client.get(f"/api/v0/songs?s={user_key}")
    assert r.status_code == 401
