"""Engine, sessions and schema bootstrap for the track catalog."""

from __future__ import annotations

import asyncio
import threading
from collections.abc import Callable, Iterator
from contextlib import AbstractContextManager, contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import TypeVar

from sqlalchemy import Engine, create_engine
from sqlalchemy.engine import URL, make_url
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from tracklinks.config import load_config
from tracklinks.logging import get_logger
from tracklinks.logging_events import log_event


class Base(DeclarativeBase):
    pass


metadata = Base.metadata

logger = get_logger(__name__)

T = TypeVar("T")

SessionCallable = Callable[[Session], T]
SessionFactory = Callable[[], AbstractContextManager[Session]]


@dataclass(slots=True)
class _CatalogEngine:
    url: str
    engine: Engine
    sessions: sessionmaker[Session]


_current: _CatalogEngine | None = None
_lock = threading.Lock()


def _catalog_url(url: str | None) -> URL:
    parsed = make_url(url or load_config().database.url)
    # Sessions run on worker threads, so async sqlite URLs are served by pysqlite.
    if parsed.drivername.lower() in {"sqlite", "sqlite+aiosqlite"}:
        return parsed.set(drivername="sqlite+pysqlite")
    return parsed


def _sqlite_file(url: URL) -> Path | None:
    database = url.database
    if not url.drivername.startswith("sqlite") or not database or database == ":memory:":
        return None
    path = Path(database)
    return path if path.is_absolute() else (Path.cwd() / path).resolve()


def get_engine(url: str | None = None) -> Engine:
    """Return the engine for ``url`` (default: ``DATABASE_URL``), rebuilding it on change."""

    global _current

    target = _catalog_url(url)
    key = target.render_as_string(hide_password=False)
    with _lock:
        if _current is not None and _current.url == key:
            return _current.engine
        if _current is not None:
            _current.engine.dispose()

        connect_args = {"check_same_thread": False} if target.drivername.startswith("sqlite") else {}
        engine = create_engine(target, connect_args=connect_args)
        _current = _CatalogEngine(
            url=key,
            engine=engine,
            sessions=sessionmaker(bind=engine, autoflush=False, expire_on_commit=False),
        )
        return engine


def get_session() -> Session:
    """Open a session on the active engine, building it from ``DATABASE_URL`` if needed."""

    current = _current
    if current is None:
        get_engine()
        current = _current
    if current is None:
        raise RuntimeError("Catalog engine is not initialised.")
    return current.sessions()


@contextmanager
def session_scope() -> Iterator[Session]:
    session = get_session()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def init_db(url: str | None = None) -> None:
    """Create the catalog tables if they do not exist yet."""

    target = _catalog_url(url)
    path = _sqlite_file(target)
    created = path is not None and not path.exists()
    if path is not None:
        path.parent.mkdir(parents=True, exist_ok=True)

    from tracklinks import models  # noqa: F401

    metadata.create_all(bind=get_engine(url), checkfirst=True)
    if created:
        log_event(
            logger,
            "catalog.bootstrap",
            component="db",
            status="created",
            meta={"path": str(path)},
        )


def reset_engine_for_tests() -> None:
    """Dispose the cached engine so the next session reads ``DATABASE_URL`` again."""

    global _current

    with _lock:
        if _current is not None:
            _current.engine.dispose()
        _current = None


def _call_with_session(work: SessionCallable[T], factory: SessionFactory | None) -> T:
    with (factory or session_scope)() as session:
        return work(session)


async def run_session(work: SessionCallable[T], *, factory: SessionFactory | None = None) -> T:
    """Run ``work`` inside a committed session on a worker thread."""

    return await asyncio.to_thread(_call_with_session, work, factory)


__all__ = [
    "Base",
    "SessionCallable",
    "SessionFactory",
    "get_engine",
    "get_session",
    "init_db",
    "metadata",
    "reset_engine_for_tests",
    "run_session",
    "session_scope",
]
