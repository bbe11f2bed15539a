# Copyright (C) 2024 Sonance Contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""Authentication: password hashing, session keys and per-route auth schemes.

Each request path maps to one ``AuthScheme``; ``get_principal`` runs that
scheme and hands routes a ``Principal`` (user and, for token auth, session).
"""

import base64
import binascii
import enum
import logging
import re
import secrets
import time
from dataclasses import dataclass

from fastapi import Depends, Request
from passlib.context import CryptContext

from sonance_server.errors import (
    BadCredentials,
    Forbidden,
    InvalidPassword,
    InvalidToken,
    InvalidUsername,
    MissingParameter,
    NotFound,
    SessionExpired,
    Unauthorized,
)
from sonance_server.models import Session, User
from sonance_server.services.catalog import Catalog

logger = logging.getLogger(__name__)

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

# Session lifetime granted by each successful use
TOKEN_TTL = 24 * 60 * 60
SUBSONIC_TTL = 7 * 24 * 60 * 60

_API_PATH = re.compile(r"^/api/(?P<version>[^/]+)(?:/(?P<rest>.*))?$")


class AuthScheme(enum.Enum):
    NONE = "none"
    BCRYPT = "bcrypt"
    TOKEN = "token"
    SUBSONIC = "subsonic"


@dataclass
class Principal:
    """Authenticated caller. ``user`` is None only for unauthenticated routes."""

    user: User | None
    session: Session | None = None

    @property
    def is_admin(self) -> bool:
        return self.user is not None and self.user.is_admin


def hash_password(password: str) -> str:
    """Hash a password for storage."""
    return pwd_context.hash(password)


def verify_password(plain: str, hashed: str) -> bool:
    """Verify a password against its hash."""
    try:
        return pwd_context.verify(plain, hashed)
    except ValueError:
        return False


def new_session_key() -> str:
    return secrets.token_hex(16)


def select_scheme(path: str) -> AuthScheme:
    """Pick the auth scheme for a request path; first match wins."""
    match = _API_PATH.match(path.rstrip("/") or "/")
    if match is None:
        return AuthScheme.NONE
    rest = (match.group("rest") or "").strip("/")
    if not rest:
        return AuthScheme.NONE
    if rest == "login":
        return AuthScheme.BCRYPT
    if rest == "subsonic" or rest.startswith("subsonic/"):
        return AuthScheme.SUBSONIC
    return AuthScheme.TOKEN


def basic_credentials(request: Request) -> tuple[str, str] | None:
    """(username, password) from an HTTP Basic Authorization header."""
    header = request.headers.get("authorization", "")
    scheme, _, encoded = header.partition(" ")
    if scheme.lower() != "basic" or not encoded:
        return None
    try:
        decoded = base64.b64decode(encoded.strip(), validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError):
        return None
    username, _, password = decoded.partition(":")
    return username, password


async def _param(request: Request, name: str) -> str:
    """Query parameter, falling back to a urlencoded or multipart form field."""
    value = request.query_params.get(name)
    if value:
        return value
    content_type = request.headers.get("content-type", "")
    if request.method in ("POST", "PUT") and (
        content_type.startswith("application/x-www-form-urlencoded")
        or content_type.startswith("multipart/form-data")
    ):
        form = await request.form()
        field = form.get(name)
        if isinstance(field, str):
            return field
    return ""


async def authenticate_bcrypt(catalog: Catalog, username: str, password: str) -> User:
    """Check a username and password against the stored hash."""
    if not username:
        raise Unauthorized("no username provided")
    if not password:
        raise Unauthorized("no password provided")
    try:
        user = await catalog.load(User(username=username))
    except NotFound:
        raise InvalidUsername() from None
    if not verify_password(password, user.password_hash):
        raise InvalidPassword()
    return user


async def _use_session(catalog: Catalog, session: Session, ttl: int, now: int) -> Session:
    if session.is_expired(now):
        await catalog.delete(Session(id=session.id))
        raise SessionExpired()
    session.expire = now + ttl
    return await catalog.update(session)


async def authenticate_token(catalog: Catalog, key: str, now: int | None = None) -> Principal:
    """Resolve a session key and extend the session by a day."""
    if not key:
        raise Unauthorized("no token provided")
    now = int(now if now is not None else time.time())
    try:
        session = await catalog.load(Session(key=key))
    except NotFound:
        raise InvalidToken() from None
    session = await _use_session(catalog, session, TOKEN_TTL, now)
    try:
        user = await catalog.get(User, session.user_id)
    except NotFound:
        raise InvalidToken() from None
    return Principal(user=user, session=session)


def decode_subsonic_password(password: str) -> str:
    """Subsonic clients may send ``enc:`` followed by the hex-encoded password."""
    if password.startswith("enc:"):
        try:
            return bytes.fromhex(password[4:]).decode("utf-8")
        except (ValueError, UnicodeDecodeError):
            raise BadCredentials() from None
    return password


async def authenticate_subsonic(
    catalog: Catalog, username: str, password: str, version: str, now: int | None = None
) -> Principal:
    """Subsonic credentials: ``p`` is a session key, or else the account password.

    A session used this way is extended by a week.
    """
    if not username or not password:
        raise BadCredentials()
    if not version:
        raise MissingParameter()
    now = int(now if now is not None else time.time())
    password = decode_subsonic_password(password)

    try:
        user = await catalog.load(User(username=username))
    except NotFound:
        raise BadCredentials() from None

    try:
        session = await catalog.load(Session(key=password))
    except NotFound:
        session = None
    if session is not None and session.user_id == user.id and not session.is_expired(now):
        session.expire = now + SUBSONIC_TTL
        return Principal(user=user, session=await catalog.update(session))

    if not verify_password(password, user.password_hash):
        raise BadCredentials()
    return Principal(user=user)


async def get_principal(request: Request) -> Principal:
    """FastAPI dependency: authenticate the request by its path's scheme."""
    catalog: Catalog = request.app.state.catalog
    scheme = select_scheme(request.url.path)

    if scheme is AuthScheme.NONE:
        return Principal(user=None)

    if scheme is AuthScheme.BCRYPT:
        credentials = basic_credentials(request)
        if credentials is None:
            credentials = (await _param(request, "username"), await _param(request, "password"))
        user = await authenticate_bcrypt(catalog, *credentials)
        return Principal(user=user)

    if scheme is AuthScheme.SUBSONIC:
        params = request.query_params
        return await authenticate_subsonic(
            catalog, params.get("u", ""), params.get("p", ""), params.get("v", "")
        )

    key = request.query_params.get("s", "")
    if not key:
        credentials = basic_credentials(request)
        if credentials is not None:
            key = credentials[0]
    return await authenticate_token(catalog, key)


async def require_user(principal: Principal = Depends(get_principal)) -> Principal:
    if principal.user is None:
        raise Unauthorized()
    return principal


async def require_admin(principal: Principal = Depends(require_user)) -> Principal:
    """Raise Forbidden unless the caller is an administrator."""
    if not principal.is_admin:
        raise Forbidden()
    return principal
