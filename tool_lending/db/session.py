from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from tool_lending.db.base import Base


def create_lending_engine(database_url: str, **kwargs) -> Engine:
    if database_url.startswith("sqlite"):
        connect_args = dict(kwargs.pop("connect_args", {}))
        connect_args.setdefault("check_same_thread", False)
        if ":memory:" in database_url or database_url.rstrip("/") in {"sqlite:", "sqlite+pysqlite:"}:
            kwargs.setdefault("poolclass", StaticPool)
        engine = create_engine(database_url, connect_args=connect_args, future=True, **kwargs)
        _serialize_sqlite_writers(engine)
        return engine

    return create_engine(
        database_url,
        pool_pre_ping=True,
        future=True,
        **kwargs,
    )


def _serialize_sqlite_writers(engine: Engine) -> None:
    # SQLite ignores SELECT ... FOR UPDATE; take the write lock when the transaction opens.
    @event.listens_for(engine, "connect")
    def _disable_pysqlite_begin(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def create_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(
        bind=engine,
        autoflush=False,
        autocommit=False,
        expire_on_commit=False,
        future=True,
    )


def init_schema(engine: Engine) -> None:
    import tool_lending.models.lending_models  # noqa: F401  registers the tables

    Base.metadata.create_all(engine)
