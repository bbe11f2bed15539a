# Copyright (C) 2024 Sonance Contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""User accounts: the initial admin and permission-checked changes."""

import logging
import secrets

from sonance_server.auth import hash_password
from sonance_server.errors import Forbidden, InvalidInput
from sonance_server.models import Role, Session, User
from sonance_server.services.catalog import Catalog

logger = logging.getLogger(__name__)

ROOT_USERNAME = "root"


def parse_role(value: str | int | None) -> Role:
    """Role from its integer id; every account must be given one."""
    if value is None or value == "":
        raise InvalidInput("no role ID provided")
    try:
        return Role(int(value))
    except ValueError:
        raise InvalidInput("invalid role ID") from None


async def ensure_root_user(catalog: Catalog, no_root: bool = False) -> str | None:
    """Create admin ``root`` with a random password when there are no users.

    Returns the generated password, which is logged once and never stored in the clear.
    """
    if no_root or await catalog.count(User) > 0:
        return None
    password = secrets.token_urlsafe(12)
    await catalog.save(
        User(username=ROOT_USERNAME, password_hash=hash_password(password), role_id=Role.ADMIN)
    )
    logger.warning("users: created initial admin user %r with password: %s", ROOT_USERNAME, password)
    return password


async def create_user(catalog: Catalog, username: str, password: str, role: Role) -> User:
    if not username:
        raise InvalidInput("no username provided")
    if not password:
        raise InvalidInput("no password provided")
    user = await catalog.save(
        User(username=username, password_hash=hash_password(password), role_id=int(role))
    )
    logger.info("users: created [#%05d] %s (%s)", user.id, user.username, user.role.name.lower())
    return user


async def update_user(
    catalog: Catalog,
    actor: User,
    user_id: int,
    username: str | None = None,
    password: str | None = None,
    role: Role | None = None,
) -> User:
    """Apply the given changes. Non-admins may only change themselves and never a role."""
    if not actor.is_admin:
        if user_id != actor.id:
            raise Forbidden()
        if role is not None and role != actor.role:
            raise Forbidden()

    user = await catalog.get(User, user_id)
    if username:
        user.username = username
    if password:
        user.password_hash = hash_password(password)
    if role is not None:
        user.role_id = int(role)
    return await catalog.update(user)


async def delete_user(catalog: Catalog, actor: User, user_id: int) -> None:
    """Delete a user and, through the foreign key cascade, their sessions."""
    if not actor.is_admin:
        raise Forbidden()
    if user_id == actor.id:
        raise Forbidden("cannot delete current user")
    user = await catalog.get(User, user_id)
    await catalog.delete(user)
    logger.info("users: deleted [#%05d] %s", user.id, user.username)


async def end_session(catalog: Catalog, session: Session) -> None:
    await catalog.delete(Session(id=session.id))
