import logging
from datetime import datetime, timezone
from threading import Lock
from weakref import WeakSet

from sqlalchemy import DateTime, TypeDecorator, create_engine, event, inspect, text
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.exc import ArgumentError, SQLAlchemyError
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from courseplatform.core import config
from courseplatform.core.errors import ClientInitializationError


logger = logging.getLogger(__name__)

Base = declarative_base()

_schema_lock = Lock()
_schema_checked: "WeakSet[Engine]" = WeakSet()


class UTCDateTime(TypeDecorator):
    """Timezone-aware timestamp that always comes back in UTC.

    Naive values are taken to be UTC already. Backends without a zone-aware
    column type (SQLite) store the UTC wall time.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        return _as_utc(value)

    def process_result_value(self, value, dialect):
        return _as_utc(value)


def _as_utc(value):
    if not isinstance(value, datetime):
        return value
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def build_engine(database_url: str | None = None, echo: bool | None = None) -> Engine:
    url = database_url or config.DATABASE_URL
    if not url:
        raise ClientInitializationError("No datasource URL given and DATABASE_URL is not set.")

    try:
        parsed = make_url(url)
        options = {"echo": config.DATABASE_ECHO if echo is None else echo}
        if parsed.get_backend_name() == "sqlite" and parsed.database in (None, "", ":memory:"):
            # every session must see the same in-memory database
            options["poolclass"] = StaticPool
            options["connect_args"] = {"check_same_thread": False}
        engine = create_engine(parsed, **options)
    except (ArgumentError, ImportError) as exc:
        raise ClientInitializationError(f"Invalid datasource URL: {exc}") from exc

    if engine.dialect.name == "sqlite" and config.SQLITE_FOREIGN_KEYS:
        event.listen(engine, "connect", _enable_sqlite_foreign_keys)
    return engine


def build_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(
        autoflush=False,
        expire_on_commit=False,
        bind=engine,
    )


def ensure_schema(engine: Engine) -> list[str]:
    """Create missing tables and add missing nullable columns.

    Returns the DDL statements that were issued. Runs once per engine.
    """
    if engine in _schema_checked:
        return []

    with _schema_lock:
        if engine in _schema_checked:
            return []

        issued: list[str] = []
        try:
            inspector = inspect(engine)
            existing_tables = set(inspector.get_table_names())
            migration_steps = []

            for table in Base.metadata.sorted_tables:
                if table.name not in existing_tables:
                    continue
                existing_columns = {column["name"] for column in inspector.get_columns(table.name)}
                for column in table.columns:
                    if column.name in existing_columns:
                        continue
                    if not column.nullable and column.server_default is None:
                        logger.warning(
                            "Cannot add required column %s.%s to an existing table; migrate it manually.",
                            table.name,
                            column.name,
                        )
                        continue
                    column_type = column.type.compile(dialect=engine.dialect)
                    migration_steps.append(f"ALTER TABLE {table.name} ADD COLUMN {column.name} {column_type}")

            Base.metadata.create_all(bind=engine)
            with engine.begin() as connection:
                for statement in migration_steps:
                    connection.execute(text(statement))
                    issued.append(statement)
        except SQLAlchemyError:
            logger.exception("Database initialization failed. Check DATABASE_URL and database credentials.")
            raise

        _schema_checked.add(engine)
        return issued
