"""
Инициализация базы данных и сессий SQLAlchemy.

Назначение:
- создание engine по DSN
- контекстный менеджер для сессий (commit / rollback)
- объект Database собирается процессом и передаётся в сервисы явно

SQLite (локальный запуск и тесты):
- транзакции открываются через BEGIN IMMEDIATE, т.е. пишущие транзакции
  сериализуются на уровне файла БД (аналог блокировки строки соревнования)
"""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager

from sqlalchemy import Engine, create_engine, event
from sqlalchemy.orm import Session, sessionmaker

from competition_admission.common.logging import get_project_logger

from .models import Base

log = get_project_logger()

_SQLITE_BUSY_TIMEOUT_SEC = 30


def _install_sqlite_immediate_transactions(engine: Engine) -> None:
    # pysqlite сам управляет BEGIN и делает это лениво; отключаем и шлём свой
    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def build_engine(dsn: str, *, echo: bool = False) -> Engine:
    if dsn.startswith("sqlite"):
        engine = create_engine(
            dsn,
            echo=echo,
            connect_args={"timeout": _SQLITE_BUSY_TIMEOUT_SEC, "check_same_thread": False},
        )
        _install_sqlite_immediate_transactions(engine)
        return engine

    return create_engine(
        dsn,
        echo=echo,
        pool_pre_ping=True,
    )


# =============================================================================
# DATABASE
# =============================================================================
class Database:
    def __init__(self, dsn: str, *, echo: bool = False) -> None:
        self.dsn = dsn
        self.engine = build_engine(dsn, echo=echo)
        self._session_factory = sessionmaker(
            bind=self.engine,
            autocommit=False,
            autoflush=False,
            expire_on_commit=False,
        )

    @property
    def dialect(self) -> str:
        return self.engine.dialect.name

    @contextmanager
    def session(self) -> Iterator[Session]:
        """
        Контекстный менеджер для работы с БД.

        Использование:
            with db.session() as session:
                session.add(...)
        """
        session: Session = self._session_factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def create_all(self) -> None:
        """
        Создать схему без alembic (локальный запуск / тесты).
        """
        Base.metadata.create_all(self.engine)
        log.info("db_schema_created", extra={"payload": {"dialect": self.dialect}})

    def dispose(self) -> None:
        self.engine.dispose()
