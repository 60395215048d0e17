from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager

from fastapi import Request
from sqlalchemy import create_engine, event, exc, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from home_inventory.config import Settings
from home_inventory.errors import TransientError

logger = logging.getLogger('home_inventory.db')

# Pool exhaustion, dropped connections and server-side timeouts.
TRANSIENT_ERRORS = (exc.TimeoutError, exc.OperationalError, exc.InterfaceError)


def _enable_sqlite_foreign_keys(dbapi_connection, _connection_record) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute('PRAGMA foreign_keys=ON')
    cursor.close()


def build_engine(settings: Settings) -> Engine:
    engine = create_engine(
        settings.database_url_normalized,
        pool_size=settings.db_pool_size,
        max_overflow=0,
        pool_timeout=settings.db_pool_timeout_seconds,
        pool_recycle=settings.db_pool_recycle_seconds,
        pool_pre_ping=True,
    )
    if engine.dialect.name == 'sqlite':
        event.listen(engine, 'connect', _enable_sqlite_foreign_keys)
    return engine


class Database:
    def __init__(self, settings: Settings, engine: Engine | None = None) -> None:
        self.engine = engine or build_engine(settings)
        self._sessions = sessionmaker(bind=self.engine, expire_on_commit=False)

    @contextmanager
    def session(self) -> Iterator[Session]:
        db = self._sessions()
        try:
            yield db
        except TRANSIENT_ERRORS as error:
            db.rollback()
            logger.warning('database unavailable: %s', error)
            raise TransientError(str(error)) from error
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def ping(self) -> None:
        with self.session() as db:
            db.execute(text('SELECT 1'))

    def dispose(self) -> None:
        self.engine.dispose()


def get_database(request: Request) -> Database:
    return request.app.state.database


def get_db(request: Request) -> Iterator[Session]:
    with get_database(request).session() as db:
        yield db
