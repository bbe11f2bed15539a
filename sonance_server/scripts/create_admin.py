#!/usr/bin/env python3
# Copyright (C) 2024 Sonance Contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""Create admin user. Run: python -m sonance_server.scripts.create_admin"""

import asyncio
import getpass
import sys

from sonance_server.config import Settings
from sonance_server.database import create_engine, create_session_maker, init_db
from sonance_server.errors import Conflict, InvalidInput
from sonance_server.models import Role
from sonance_server.services.catalog import Catalog
from sonance_server.services.users import create_user


async def main(settings: Settings | None = None) -> int:
    settings = settings or Settings()
    engine = create_engine(settings.db)
    try:
        await init_db(engine)
        catalog = Catalog(create_session_maker(engine))
        username = input("Admin username: ").strip()
        password = getpass.getpass("Password: ")
        try:
            await create_user(catalog, username, password, Role.ADMIN)
        except InvalidInput as e:
            print(e.message)
            return 1
        except Conflict:
            print("User already exists")
            return 1
        print("Admin user created.")
        return 0
    finally:
        await engine.dispose()


def run() -> None:
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    run()
