from __future__ import annotations

from collections.abc import Generator
from contextlib import contextmanager
from typing import Any

from flask import Flask, current_app, g
from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

ENGINE_KEY = "sqlalchemy_engine"
SESSIONMAKER_KEY = "sqlalchemy_sessionmaker"


def engine_options(db_url: str) -> dict[str, Any]:
    opts: dict[str, Any] = {"future": True, "pool_pre_ping": True}
    if db_url.startswith("postgres"):
        opts.update(pool_size=5, max_overflow=10, pool_timeout=30, pool_recycle=1800)
    return opts


def build_engine(db_url: str) -> Engine:
    engine = create_engine(db_url, **engine_options(db_url))
    if engine.dialect.name == "sqlite":
        # Contacts reference their owner with ON DELETE RESTRICT; sqlite only enforces it per connection.
        @event.listens_for(engine, "connect")
        def _enable_foreign_keys(dbapi_connection, _record):  # type: ignore[no-redef]
            cur = dbapi_connection.cursor()
            cur.execute("PRAGMA foreign_keys=ON")
            cur.close()

    return engine


def make_sessionmaker(engine: Engine) -> sessionmaker[Session]:
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False, future=True)


def init_db(app: Flask) -> Engine:
    engine = build_engine(app.config["DATABASE_URL"])
    if app.config.get("ENV") != "production":

        @event.listens_for(engine, "checkout")
        def _log_checkout(_dbapi_connection, _record, _proxy):  # type: ignore[no-redef]
            app.logger.debug("DB connection checkout")

    app.extensions[ENGINE_KEY] = engine
    app.extensions[SESSIONMAKER_KEY] = make_sessionmaker(engine)
    return engine


def get_engine(app: Flask | None = None) -> Engine:
    return (app or current_app).extensions[ENGINE_KEY]


def db_session(app: Flask | None = None) -> Session:
    """
    Session bound to the current request; created on first use and closed at teardown.
    """
    s: Session | None = g.get("db_session")
    if s is None:
        s = (app or current_app).extensions[SESSIONMAKER_KEY]()
        g.db_session = s
    return s


def teardown_db_session(_exc: BaseException | None) -> None:
    s: Session | None = g.pop("db_session", None)
    if s is not None:
        s.close()


@contextmanager
def session_scope(app: Flask) -> Generator[Session, None, None]:
    """Outside a request (scripts, tests): commit on success, roll back on error."""
    s: Session = app.extensions[SESSIONMAKER_KEY]()
    try:
        yield s
        s.commit()
    except Exception:
        s.rollback()
        raise
    finally:
        s.close()


def ping(s: Session) -> bool:
    """Round-trip a trivial statement; raises on connection failure."""
    return s.execute(text("SELECT 1")).scalar() == 1
