# Copyright (C) 2024 Sonance Contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""Interactive admin creation script tests."""

from sonance_server.auth import verify_password
from sonance_server.database import create_engine, create_session_maker
from sonance_server.models import User
from sonance_server.scripts import create_admin
from sonance_server.services.catalog import Catalog


def answer(monkeypatch, username: str, password: str) -> None:
    monkeypatch.setattr("builtins.input", lambda prompt: username)
    monkeypatch.setattr(create_admin.getpass, "getpass", lambda prompt: password)


async def test_creates_admin(settings, monkeypatch, capsys):
    answer(monkeypatch, " boss ", "s3cret")

    assert await create_admin.main(settings) == 0
    assert "Admin user created." in capsys.readouterr().out

    engine = create_engine(settings.db)
    try:
        user = await Catalog(create_session_maker(engine)).load(User(username="boss"))
    finally:
        await engine.dispose()
    assert user.is_admin
    assert verify_password("s3cret", user.password_hash)


async def test_rejects_duplicate_and_empty_input(settings, monkeypatch, capsys):
    answer(monkeypatch, "boss", "pw")
    assert await create_admin.main(settings) == 0

    assert await create_admin.main(settings) == 1
    assert "User already exists" in capsys.readouterr().out

    answer(monkeypatch, "other", "")
    assert await create_admin.main(settings) == 1
    assert "no password provided" in capsys.readouterr().out
