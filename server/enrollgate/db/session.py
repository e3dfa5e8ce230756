from __future__ import annotations

from collections.abc import Generator
from typing import cast

from fastapi import Request
from sqlalchemy import Engine, create_engine, event
from sqlalchemy.engine import Connection
from sqlalchemy.orm import Session, sessionmaker

from enrollgate.core.config import Settings, settings


def _install_sqlite_hooks(engine: Engine) -> None:
    # pysqlite's deferred BEGIN lets two writers both take SHARED locks and then
    # fail to upgrade; BEGIN IMMEDIATE makes writers queue on the busy timeout.
    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_conn: object, _record: object) -> None:
        dbapi_conn.isolation_level = None  # type: ignore[attr-defined]
        cur = dbapi_conn.cursor()  # type: ignore[attr-defined]
        cur.execute("PRAGMA foreign_keys=ON")
        cur.close()

    @event.listens_for(engine, "begin")
    def _on_begin(conn: Connection) -> None:
        _ = conn.exec_driver_sql("BEGIN IMMEDIATE")


def build_engine(s: Settings) -> Engine:
    uri = s.sqlalchemy_database_uri
    if uri.startswith("sqlite"):
        pool_kwargs: dict[str, int] = {}
        if ":memory:" not in uri and uri.rstrip("/") != "sqlite:":
            pool_kwargs = {"pool_size": 10, "max_overflow": 60}
        eng = create_engine(
            uri,
            connect_args={
                "timeout": s.sqlite_busy_timeout_seconds,
                "check_same_thread": False,
            },
            **pool_kwargs,
        )
        _install_sqlite_hooks(eng)
        return eng
    return create_engine(uri, pool_pre_ping=True, pool_size=10, max_overflow=60)


def build_session_factory(eng: Engine) -> sessionmaker[Session]:
    return sessionmaker(bind=eng, autoflush=False, autocommit=False, expire_on_commit=False)


# Process-wide defaults for scripts, tests and apps built on the global settings.
engine = build_engine(settings)
SessionLocal = build_session_factory(engine)


def get_db(request: Request) -> Generator[Session, None, None]:
    factory = cast(sessionmaker[Session], request.app.state.session_factory)
    db = factory()
    try:
        yield db
    finally:
        db.close()
