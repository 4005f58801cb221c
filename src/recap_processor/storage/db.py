"""
Инициализация базы данных и сессий SQLAlchemy.

Назначение:
- создание engine по TABLE_DSN (лениво, при первом обращении)
- контекстный менеджер для сессий
"""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

from sqlalchemy import Engine, create_engine
from sqlalchemy.orm import Session, sessionmaker

from recap_processor.common.config import get_settings

# =============================================================================
# ENGINE / SESSION FACTORY
# =============================================================================
_engines: dict[str, Engine] = {}
_session_factories: dict[str, sessionmaker[Session]] = {}


def _ensure_sqlite_dir(dsn: str) -> None:
    prefix = "sqlite:///"
    if dsn.startswith(prefix) and ":memory:" not in dsn:
        Path(dsn[len(prefix) :]).parent.mkdir(parents=True, exist_ok=True)


def get_engine(dsn: str | None = None) -> Engine:
    """Engine на DSN (по умолчанию TABLE_DSN); один на процесс для каждого DSN."""
    dsn = dsn or get_settings().table_dsn
    engine = _engines.get(dsn)
    if engine is None:
        _ensure_sqlite_dir(dsn)
        engine = _engines[dsn] = create_engine(dsn, pool_pre_ping=True)
    return engine


def get_session_factory(dsn: str | None = None) -> sessionmaker[Session]:
    dsn = dsn or get_settings().table_dsn
    factory = _session_factories.get(dsn)
    if factory is None:
        factory = _session_factories[dsn] = sessionmaker(
            bind=get_engine(dsn), autocommit=False, autoflush=False
        )
    return factory


# =============================================================================
# CONTEXT MANAGER
# =============================================================================
@contextmanager
def db_session(factory: sessionmaker[Session] | None = None) -> Iterator[Session]:
    """
    Контекстный менеджер для работы с БД.

    Использование:
        with db_session() as session:
            session.merge(...)
    """
    session: Session = (factory or get_session_factory())()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
