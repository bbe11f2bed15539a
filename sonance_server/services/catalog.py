# Copyright (C) 2024 Sonance Contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""Catalog store: typed access to folders, artists, albums, songs, art, users and sessions.

Every mutation runs inside a transaction. Entities handed out are detached
ORM instances (``expire_on_commit=False``) so callers can read them freely
after the session closes.
"""

import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from typing import Any, TypeVar

from sqlalchemy import and_, delete, exists, func, not_, or_, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from sonance_server.errors import Conflict, NotFound, StorageError
from sonance_server.models import Album, Art, Artist, Base, Folder, Session, Song, User

logger = logging.getLogger(__name__)

E = TypeVar("E", bound=Base)
T = TypeVar("T")

ENTITIES: tuple[type[Base], ...] = (Folder, Artist, Album, Song, Art, User, Session)


def _like_prefix(prefix: str) -> str:
    """LIKE pattern matching everything that starts with prefix."""
    escaped = prefix.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return escaped + "%"


def _columns(entity: Base) -> dict[str, Any]:
    return {c.key: getattr(entity, c.key) for c in entity.__table__.columns if c.key != "id"}


class Catalog:
    """Persistent store of library entities."""

    def __init__(self, session_maker: async_sessionmaker[AsyncSession]):
        self._session_maker = session_maker

    # Transactions

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[AsyncSession]:
        """Yield a session inside a transaction: commit on success, roll back on error."""
        async with self._session_maker() as session:
            try:
                async with session.begin():
                    yield session
            except IntegrityError as e:
                raise Conflict(str(e.orig) if e.orig is not None else "entity already exists") from e
            except SQLAlchemyError as e:
                logger.error("db: transaction failed: %s", e)
                raise StorageError() from e

    async def with_tx(self, fn: Callable[[AsyncSession], Awaitable[T]]) -> T:
        """Run fn(session) in a transaction and return its result."""
        async with self.transaction() as session:
            return await fn(session)

    @asynccontextmanager
    async def _reader(self) -> AsyncIterator[AsyncSession]:
        async with self._session_maker() as session:
            try:
                yield session
            except SQLAlchemyError as e:
                logger.error("db: query failed: %s", e)
                raise StorageError() from e

    async def _scalars(self, stmt) -> list[Any]:
        async with self._reader() as session:
            result = await session.execute(stmt)
            return list(result.scalars().all())

    async def _scalar(self, stmt) -> Any:
        async with self._reader() as session:
            return await session.scalar(stmt)

    # Generic entity operations

    @staticmethod
    def _key_clause(entity: Base):
        model = type(entity)
        if getattr(entity, "id", None):
            return model.id == entity.id
        values = entity.key_values()
        if not values or any(v is None for v in values.values()):
            raise NotFound(f"{model.__tablename__}: no id or natural key")
        return and_(*(getattr(model, k) == v for k, v in values.items()))

    async def load(self, entity: E) -> E:
        """Return the stored row matching entity's id, or its natural key when id is unset."""
        model = type(entity)
        found = await self._scalars(select(model).where(self._key_clause(entity)))
        if not found:
            raise NotFound(f"{model.__name__.lower()} not found")
        return found[0]

    async def get(self, model: type[E], entity_id: int) -> E:
        return await self.load(model(id=entity_id))

    async def exists(self, entity: Base) -> bool:
        try:
            await self.load(entity)
        except NotFound:
            return False
        return True

    async def save(self, entity: E) -> E:
        """Insert entity and reload it by natural key to pick up the generated id."""
        model = type(entity)

        # Unset attributes are left out so column defaults apply.
        values = {k: v for k, v in _columns(entity).items() if v is not None}

        async def insert(session: AsyncSession) -> None:
            await session.execute(model.__table__.insert().values(**values))

        await self.with_tx(insert)
        saved = await self.load(model(**entity.key_values()))
        entity.id = saved.id
        return saved

    async def update(self, entity: E) -> E:
        """Write all columns of entity by id."""
        model = type(entity)
        if not entity.id:
            raise NotFound(f"{model.__name__.lower()} has no id")

        async def write(session: AsyncSession) -> int:
            result = await session.execute(
                update(model).where(model.id == entity.id).values(**_columns(entity))
            )
            return result.rowcount

        if await self.with_tx(write) == 0:
            raise NotFound(f"{model.__name__.lower()} not found")
        return entity

    async def delete(self, entity: Base) -> None:
        """Delete by id if set, else by natural key."""
        model = type(entity)
        clause = self._key_clause(entity)

        async def remove(session: AsyncSession) -> None:
            await session.execute(delete(model).where(clause))

        await self.with_tx(remove)

    async def all(self, model: type[E]) -> list[E]:
        return await self._scalars(select(model).order_by(model.id))

    async def all_by(self, model: type[E], **keys: Any) -> list[E]:
        """All rows whose columns equal the given values, e.g. all_by(Song, album_id=3)."""
        stmt = select(model).filter_by(**keys).order_by(model.id)
        return await self._scalars(stmt)

    async def search(self, model: type[E], query: str) -> list[E]:
        """Case-insensitive substring match over the model's title-like columns."""
        pattern = f"%{query}%"
        clauses = [getattr(model, c).ilike(pattern) for c in model.search_columns]
        if not clauses:
            return []
        return await self._scalars(select(model).where(or_(*clauses)).order_by(model.id))

    async def limit(self, model: type[E], offset: int, count: int) -> list[E]:
        stmt = select(model).order_by(model.id).offset(offset).limit(count)
        return await self._scalars(stmt)

    async def random(self, model: type[E], count: int) -> list[E]:
        return await self._scalars(select(model).order_by(func.random()).limit(count))

    async def count(self, model: type[Base]) -> int:
        return await self._scalar(select(func.count()).select_from(model)) or 0

    # Folders

    async def subfolders(self, folder: Folder) -> list[Folder]:
        stmt = select(Folder).where(Folder.parent_id == folder.id).order_by(Folder.title)
        return await self._scalars(stmt)

    # Artists / albums / songs

    async def artists_by_title(self) -> list[Artist]:
        return await self._scalars(select(Artist).order_by(func.lower(Artist.title)))

    async def albums_for_artist(self, artist_id: int) -> list[Album]:
        stmt = select(Album).where(Album.artist_id == artist_id).order_by(Album.year, Album.title)
        return await self._scalars(stmt)

    async def songs_for_album(self, album_id: int) -> list[Song]:
        stmt = select(Song).where(Song.album_id == album_id).order_by(Song.track, Song.title)
        return await self._scalars(stmt)

    async def songs_for_artist(self, artist_id: int) -> list[Song]:
        stmt = select(Song).where(Song.artist_id == artist_id).order_by(Song.album_id, Song.track)
        return await self._scalars(stmt)

    async def songs_for_folder(self, folder_id: int) -> list[Song]:
        stmt = select(Song).where(Song.folder_id == folder_id).order_by(Song.track, Song.file_name)
        return await self._scalars(stmt)

    async def songs_in_path(self, prefix: str) -> list[Song]:
        stmt = select(Song).where(Song.file_name.like(_like_prefix(prefix), escape="\\"))
        return await self._scalars(stmt.order_by(Song.file_name))

    async def songs_not_in_path(self, prefix: str) -> list[Song]:
        stmt = select(Song).where(not_(Song.file_name.like(_like_prefix(prefix), escape="\\")))
        return await self._scalars(stmt.order_by(Song.file_name))

    async def art_in_path(self, prefix: str) -> list[Art]:
        stmt = select(Art).where(Art.file_name.like(_like_prefix(prefix), escape="\\"))
        return await self._scalars(stmt.order_by(Art.file_name))

    async def art_not_in_path(self, prefix: str) -> list[Art]:
        stmt = select(Art).where(not_(Art.file_name.like(_like_prefix(prefix), escape="\\")))
        return await self._scalars(stmt.order_by(Art.file_name))

    async def delete_songs(self, song_ids: list[int]) -> int:
        """Delete songs by id in one transaction, returning the count removed."""
        if not song_ids:
            return 0

        async def remove(session: AsyncSession) -> int:
            result = await session.execute(delete(Song).where(Song.id.in_(song_ids)))
            return result.rowcount

        return await self.with_tx(remove)

    # Orphan purges: each is one transaction and returns the number of rows removed

    async def purge_orphan_albums(self) -> int:
        """Delete albums no song references."""

        async def purge(session: AsyncSession) -> int:
            orphaned = not_(exists().where(Song.album_id == Album.id))
            result = await session.execute(delete(Album).where(orphaned))
            return result.rowcount

        return await self.with_tx(purge)

    async def purge_orphan_artists(self) -> int:
        """Delete artists referenced by neither an album nor a song."""

        async def purge(session: AsyncSession) -> int:
            orphaned = and_(
                not_(exists().where(Album.artist_id == Artist.id)),
                not_(exists().where(Song.artist_id == Artist.id)),
            )
            result = await session.execute(delete(Artist).where(orphaned))
            return result.rowcount

        return await self.with_tx(purge)

    async def purge_orphan_folders(self) -> int:
        """Delete folders with no songs and no child folders, repeating until none remain."""

        async def purge(session: AsyncSession) -> int:
            child = Folder.__table__.alias("child")
            orphaned = and_(
                not_(exists().where(Song.folder_id == Folder.id)),
                not_(exists().where(child.c.parent_id == Folder.id)),
            )
            total = 0
            while True:
                result = await session.execute(delete(Folder).where(orphaned))
                if not result.rowcount:
                    return total
                total += result.rowcount

        return await self.with_tx(purge)

    async def purge_orphan_art(self, art_ids: list[int] | None = None) -> int:
        """Delete the given art rows (clearing song references), then art no song references."""

        async def purge(session: AsyncSession) -> int:
            total = 0
            if art_ids:
                await session.execute(update(Song).where(Song.art_id.in_(art_ids)).values(art_id=None))
                result = await session.execute(delete(Art).where(Art.id.in_(art_ids)))
                total += result.rowcount
            orphaned = not_(exists().where(Song.art_id == Art.id))
            result = await session.execute(delete(Art).where(orphaned))
            return total + result.rowcount

        return await self.with_tx(purge)

    # Users / sessions

    async def purge_expired_sessions(self, now: int) -> int:
        async def purge(session: AsyncSession) -> int:
            result = await session.execute(delete(Session).where(Session.expire < now))
            return result.rowcount

        return await self.with_tx(purge)

    # Metrics

    async def database_metrics(self) -> dict[str, int]:
        """Row counts per table, for the status endpoint."""
        return {model.__tablename__: await self.count(model) for model in ENTITIES}
