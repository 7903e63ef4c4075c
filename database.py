import logging
from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import create_engine, event, inspect
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker
from sqlalchemy.pool import StaticPool

logger = logging.getLogger(__name__)

REQUIRED_TABLES = ("expense", "income", "budget", "checkpoint")


class StorageError(RuntimeError):
    pass


class RecordRejected(StorageError):
    pass


class SchemaError(RuntimeError):
    pass


class Base(DeclarativeBase):
    pass


def create_store(database_url: str) -> Engine:
    connect_args: dict[str, object] = {}
    kwargs: dict[str, object] = {}
    if database_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
    if database_url.endswith(":memory:"):
        # A single shared connection keeps the in-memory database alive for the run.
        kwargs["poolclass"] = StaticPool

    eng = create_engine(database_url, connect_args=connect_args, **kwargs)
    if database_url.startswith("sqlite") and not database_url.endswith(":memory:"):
        event.listen(eng, "connect", _enable_sqlite_pragmas)
    return eng


def _enable_sqlite_pragmas(dbapi_conn, _record):
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA journal_mode=WAL;")
    cursor.close()


def make_sessionmaker(engine: Engine) -> sessionmaker:
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


@contextmanager
def session_scope(engine: Engine) -> Iterator[Session]:
    session: Session = make_sessionmaker(engine)()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def _ledger_tables():
    import models  # noqa: F401  registers the mapped tables on Base.metadata

    return [Base.metadata.tables[name] for name in REQUIRED_TABLES]


class SchemaManager:
    """Keeps the store in the shape the ledger expects.

    There is no migration path. A store missing any ledger table is treated as
    scratch state and rebuilt from nothing by :meth:`reset`.
    """

    def __init__(self, engine: Engine, *, allow_reset: bool = True) -> None:
        self.engine = engine
        self.allow_reset = allow_reset

    def missing_tables(self) -> list[str]:
        try:
            present = set(inspect(self.engine).get_table_names())
        except SQLAlchemyError as exc:
            raise SchemaError(f"Could not inspect store: {exc}") from exc
        return [name for name in REQUIRED_TABLES if name not in present]

    def is_ready(self) -> bool:
        return not self.missing_tables()

    def reset(self) -> None:
        """Drop and recreate every ledger table. All stored records are lost."""
        tables = _ledger_tables()
        try:
            Base.metadata.drop_all(self.engine, tables=tables)
            Base.metadata.create_all(self.engine, tables=tables)
        except SQLAlchemyError as exc:
            raise SchemaError(f"Could not initialize store: {exc}") from exc
        logger.info(f"schema_reset: tables={','.join(REQUIRED_TABLES)}")

    def ensure_ready(self) -> None:
        missing = self.missing_tables()
        if not missing:
            logger.debug("schema_ready: nothing to do")
            return
        if not self.allow_reset:
            raise SchemaError(
                f"Store is missing tables ({', '.join(missing)}) and reset is disabled"
            )
        logger.warning(
            f"schema_incomplete: missing={','.join(missing)}; resetting all ledger tables"
        )
        self.reset()
