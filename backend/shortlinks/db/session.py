from sqlalchemy import event
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from shortlinks.core.config import settings


def _connect_args(url: str) -> dict:
    if url.startswith("postgresql+asyncpg"):
        return {
            "timeout": settings.DB_TIMEOUT_SECONDS,
            "command_timeout": settings.DB_TIMEOUT_SECONDS,
        }
    if url.startswith("sqlite"):
        return {"timeout": settings.DB_TIMEOUT_SECONDS}
    return {}


def build_engine(url: str, **kwargs) -> AsyncEngine:
    """Create the async engine for ``url``.

    pysqlite's own transaction handling breaks SAVEPOINT; for SQLite the driver
    is put in autocommit mode and BEGIN is emitted by SQLAlchemy instead.
    Foreign keys are switched on so ON DELETE CASCADE holds there too.
    """
    engine = create_async_engine(
        url,
        echo=settings.DEBUG,
        pool_pre_ping=True,
        connect_args=_connect_args(url),
        **kwargs,
    )

    if engine.dialect.name == "sqlite":

        @event.listens_for(engine.sync_engine, "connect")
        def _sqlite_connect(dbapi_connection, connection_record):
            dbapi_connection.isolation_level = None
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

        @event.listens_for(engine.sync_engine, "begin")
        def _sqlite_begin(conn):
            conn.exec_driver_sql("BEGIN")

    return engine


engine = build_engine(settings.DATABASE_URL)

async_session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
