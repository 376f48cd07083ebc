"""
core/database.py -- Shared SQLAlchemy engine and schema metadata.

Uses SQLAlchemy Core (not ORM) so the domain dataclasses in auth/models.py and
posts/models.py remain the authoritative domain representation. Swapping SQLite
for PostgreSQL is a connection string change, not a rewrite.

Both repositories (auth.store.UserStore, posts.store.PostStore) define their
tables on the single `metadata` below so the posts.user_id foreign key can
reference users.id, and both take the same Engine.

SQLite notes:
  - PRAGMA foreign_keys=ON is set per connection; SQLite does not enforce
    foreign keys otherwise, and posts.user_id relies on it.
  - WAL journal mode lets readers proceed during writes.
  - check_same_thread=False because FastAPI runs sync handlers in a threadpool.
  - DATABASE_URL=":memory:" maps to "sqlite://", served through StaticPool.
"""

from __future__ import annotations

from sqlalchemy import MetaData, create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.pool import StaticPool

metadata = MetaData()


def _set_sqlite_pragmas(dbapi_conn, connection_record) -> None:
    """Enable FK enforcement and WAL mode on every new SQLite connection.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.close()


def _is_private_memory_url(db_url: str) -> bool:
    """True for SQLite URLs that open a per-connection in-memory database.

    Named shared-cache URIs (file:name?mode=memory&cache=shared) are excluded:
    every connection to them already sees the same database.
    """
    return db_url in ("sqlite://", "sqlite:///:memory:") or db_url.startswith("sqlite:///:memory:?")


def create_db_engine(db_url: str) -> Engine:
    """Create an Engine for db_url with the SQLite pragmas wired in.

    A plain in-memory SQLite database exists only inside the connection that
    created it, so it gets StaticPool: one connection shared by every thread.
    Otherwise the lifespan would create the schema on one connection and the
    request threads would see an empty database.
    """
    connect_args: dict = {}
    engine_args: dict = {}
    is_sqlite = db_url.startswith("sqlite")
    if is_sqlite:
        connect_args["check_same_thread"] = False
        if _is_private_memory_url(db_url):
            engine_args["poolclass"] = StaticPool
    engine = create_engine(db_url, connect_args=connect_args, **engine_args)
    if is_sqlite:
        event.listen(engine, "connect", _set_sqlite_pragmas)
    return engine


def init_schema(engine: Engine) -> None:
    """Create every table registered on `metadata` if it does not exist yet.

    Callers must import auth.store and posts.store first so their tables are
    registered. The stores call this from their constructors.
    """
    metadata.create_all(engine)
