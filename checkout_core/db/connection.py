from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine, async_sessionmaker, AsyncSession
from checkout_core.config.settings import config_settings
from checkout_core.db.utils import _normalize_db_url


def _serialize_sqlite_writers(engine: AsyncEngine) -> None:
    # pysqlite's implicit BEGIN is deferred, which lets two writers read the same
    # stock before either locks; take the write lock when the transaction starts.
    @event.listens_for(engine.sync_engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def build_engine(url: str, echo: bool = False) -> AsyncEngine:
    url = _normalize_db_url(url)
    if url.startswith("sqlite"):
        engine = create_async_engine(url, echo=echo, connect_args={"timeout": 30})
        _serialize_sqlite_writers(engine)
        return engine
    return create_async_engine(url, echo=echo, pool_pre_ping=True)


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)


async_engine = build_engine(config_settings.DATABASE_URL, echo=config_settings.DB_ECHO)

async_session = build_session_factory(async_engine)
