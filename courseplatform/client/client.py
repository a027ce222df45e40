"""The course platform client: delegates, sessions and transactions."""

import copy
import enum
import time
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Callable

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from sqlalchemy import text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import ArgumentError, SQLAlchemyError
from sqlalchemy.orm import Session as DatabaseSession

from courseplatform import database
from courseplatform.client.delegate import ModelDelegate
from courseplatform.core import config
from courseplatform.core.errors import (
    TRANSACTION_API_ERROR,
    ClientError,
    ClientInitializationError,
    ClientKnownRequestError,
    ClientValidationError,
    format_error,
    translate_database_error,
    validation_error_from_pydantic,
)
from courseplatform.core.events import LogEmitter, LogEvent, parse_log_definitions
from courseplatform.models.comment import Comment
from courseplatform.models.course import Course
from courseplatform.models.enrollment import Enrollment
from courseplatform.models.rating import Rating
from courseplatform.models.session import Session
from courseplatform.models.session_progress import SessionProgress
from courseplatform.models.user import User

MODELS = {
    "user": User,
    "course": Course,
    "session": Session,
    "session_progress": SessionProgress,
    "enrollment": Enrollment,
    "rating": Rating,
    "comment": Comment,
}


class TransactionIsolationLevel(str, enum.Enum):
    READ_UNCOMMITTED = "READ UNCOMMITTED"
    READ_COMMITTED = "READ COMMITTED"
    REPEATABLE_READ = "REPEATABLE READ"
    SERIALIZABLE = "SERIALIZABLE"
    SNAPSHOT = "SNAPSHOT"


class TransactionOptions(BaseModel):
    model_config = ConfigDict(extra="forbid", validate_default=True)

    max_wait: int = Field(default=config.TRANSACTION_MAX_WAIT_MS, ge=0)
    timeout: int = Field(default=config.TRANSACTION_TIMEOUT_MS, gt=0)
    isolation_level: TransactionIsolationLevel | None = config.TRANSACTION_ISOLATION_LEVEL


@dataclass
class _TransactionState:
    db: DatabaseSession
    started: float
    timeout: int
    closed: bool = False

    def check(self) -> None:
        if self.closed:
            raise ClientKnownRequestError(
                "Transaction API error: Transaction already closed: A query cannot be executed on a "
                "committed or rolled back transaction.",
                code=TRANSACTION_API_ERROR,
            )
        elapsed = (time.monotonic() - self.started) * 1000
        if elapsed > self.timeout:
            raise ClientKnownRequestError(
                "Transaction API error: Transaction already closed: A query cannot be executed on an expired "
                f"transaction. The timeout for this transaction was {self.timeout} ms, however {elapsed:.0f} ms "
                "passed since the start of the transaction.",
                code=TRANSACTION_API_ERROR,
                meta={"timeout": self.timeout, "elapsed": round(elapsed)},
            )


def _bound_statement_time(db: DatabaseSession, timeout: int) -> bool:
    """Cap every statement of the transaction at ``timeout`` ms where the backend allows it."""
    if db.get_bind().dialect.name != "postgresql":
        return False
    db.execute(text("SELECT set_config('statement_timeout', :timeout, true)"), {"timeout": str(timeout)})
    return True


def _global_omit(omit: dict[str, Any] | None) -> dict[str, dict[str, bool]]:
    """Client-level ``omit`` keyed by model class name."""
    resolved = {}
    for name, fields in (omit or {}).items():
        if name not in MODELS:
            raise ClientValidationError(f"Unknown model `{name}` in `omit`. Expected one of {', '.join(MODELS)}.")
        if not isinstance(fields, dict):
            raise ClientValidationError(f"`omit.{name}` must map field names to booleans.")
        resolved[MODELS[name].__name__] = dict(fields)
    return resolved


class CoursePlatformClient:
    """Entry point: ``client.user``, ``client.course`` ... plus transactions and raw SQL."""

    def __init__(
        self,
        datasource_url: str | None = None,
        *,
        engine: Engine | None = None,
        log=None,
        error_format: str | None = None,
        omit: dict[str, Any] | None = None,
        transaction_options: dict[str, Any] | None = None,
    ) -> None:
        self.error_format = (error_format or config.CLIENT_ERROR_FORMAT).strip().lower()
        if self.error_format not in config.ERROR_FORMATS:
            raise ClientValidationError(
                f"Invalid error format `{self.error_format}`. Expected one of {', '.join(config.ERROR_FORMATS)}."
            )
        try:
            self._transaction_options = TransactionOptions.model_validate(transaction_options or {})
        except ValidationError as exc:
            raise validation_error_from_pydantic(exc) from exc

        self._emitter = LogEmitter(parse_log_definitions(config.CLIENT_LOG_LEVELS if log is None else log))
        self._global_omit = _global_omit(omit)
        self.engine = engine if engine is not None else database.build_engine(datasource_url)
        self._emitter.attach(self.engine)
        self._session_factory = database.build_session_factory(self.engine)
        self._transaction: _TransactionState | None = None
        self._install_delegates()

    def _install_delegates(self) -> None:
        for name, model in MODELS.items():
            setattr(self, name, ModelDelegate(self, name, model))

    def __enter__(self):
        self.connect()
        return self

    def __exit__(self, exc_type, exc_value, traceback) -> None:
        self.disconnect()

    def on(self, level: str, callback: Callable) -> None:
        self._emitter.on(level, callback)

    def _report(self, error: ClientError, invocation: str) -> None:
        if error.formatted:
            return
        format_error(error, invocation, self.error_format)
        self._emitter.emit("error", LogEvent(error.message))

    @contextmanager
    def _session_scope(self):
        if self._transaction is not None:
            self._transaction.check()
            try:
                yield self._transaction.db
            except SQLAlchemyError as exc:
                raise translate_database_error(exc) from exc
            return

        db = self._session_factory()
        try:
            try:
                db.connection()
            except SQLAlchemyError as exc:
                raise ClientInitializationError(f"Can't reach database server: {exc}") from exc
            yield db
            db.commit()
        except SQLAlchemyError as exc:
            db.rollback()
            raise translate_database_error(exc) from exc
        except BaseException:
            db.rollback()
            raise
        finally:
            db.close()

    def connect(self) -> None:
        try:
            with self.engine.connect():
                pass
        except SQLAlchemyError as exc:
            error = ClientInitializationError(f"Can't reach database server: {exc}")
            self._report(error, "connect")
            raise error from exc
        self._emitter.emit("info", LogEvent(f"Connected to {self.engine.dialect.name} datasource."))

    def disconnect(self) -> None:
        self.engine.dispose()
        self._emitter.emit("info", LogEvent("Disconnected from datasource."))

    def ensure_schema(self) -> list[str]:
        try:
            issued = database.ensure_schema(self.engine)
        except SQLAlchemyError as exc:
            error = ClientInitializationError(f"Schema setup failed: {exc}")
            self._report(error, "ensure_schema")
            raise error from exc
        for statement in issued:
            self._emitter.emit("info", LogEvent(f"Schema updated: {statement}"))
        return issued

    def query_raw(self, sql: str, params: dict[str, Any] | None = None) -> list[dict[str, Any]]:
        try:
            with self._session_scope() as db:
                result = db.execute(text(sql), params or {})
                return [dict(row._mapping) for row in result]
        except ClientError as exc:
            self._report(exc, "query_raw")
            raise

    def execute_raw(self, sql: str, params: dict[str, Any] | None = None) -> int:
        try:
            with self._session_scope() as db:
                return db.execute(text(sql), params or {}).rowcount
        except ClientError as exc:
            self._report(exc, "execute_raw")
            raise

    def _transaction_client(self, state: _TransactionState) -> "CoursePlatformClient":
        tx = copy.copy(self)
        tx._transaction = state
        tx._install_delegates()
        return tx

    def transaction(
        self,
        operations,
        *,
        isolation_level: TransactionIsolationLevel | str | None = None,
        max_wait: int | None = None,
        timeout: int | None = None,
    ):
        """Run ``operations`` atomically.

        ``operations`` is either a callable taking the transaction client, whose
        return value is passed through, or a list of such callables, whose
        results are returned in order. Any exception rolls everything back.
        """
        try:
            return self._run_transaction(operations, isolation_level, max_wait, timeout)
        except ClientError as exc:
            self._report(exc, "transaction")
            raise

    def _run_transaction(self, operations, isolation_level, max_wait, timeout):
        if self._transaction is not None:
            raise ClientValidationError("Nested transactions are not supported; use the transaction client directly.")
        if callable(operations):
            batch = None
        elif isinstance(operations, (list, tuple)) and all(callable(operation) for operation in operations):
            batch = list(operations)
        else:
            raise ClientValidationError("`transaction` takes a callable or a list of callables.")

        options = self._transaction_options
        try:
            options = TransactionOptions.model_validate(
                {
                    "max_wait": options.max_wait if max_wait is None else max_wait,
                    "timeout": options.timeout if timeout is None else timeout,
                    "isolation_level": options.isolation_level if isolation_level is None else isolation_level,
                }
            )
        except ValidationError as exc:
            raise validation_error_from_pydantic(exc) from exc

        requested = time.monotonic()
        db = self._session_factory()
        state = None
        try:
            execution_options = {}
            if options.isolation_level is not None:
                execution_options["isolation_level"] = options.isolation_level.value
            try:
                db.connection(execution_options=execution_options or None)
            except ArgumentError as exc:
                raise ClientValidationError(f"Unsupported isolation level: {exc}") from exc
            except SQLAlchemyError as exc:
                raise ClientInitializationError(f"Can't reach database server: {exc}") from exc

            waited = (time.monotonic() - requested) * 1000
            if waited > options.max_wait:
                raise ClientKnownRequestError(
                    "Transaction API error: Unable to start a transaction in the given time "
                    f"({options.max_wait} ms max wait, {waited:.0f} ms waited).",
                    code=TRANSACTION_API_ERROR,
                    meta={"max_wait": options.max_wait},
                )

            _bound_statement_time(db, options.timeout)
            state = _TransactionState(db=db, started=time.monotonic(), timeout=options.timeout)
            tx = self._transaction_client(state)
            if batch is None:
                result = operations(tx)
            else:
                result = [operation(tx) for operation in batch]
            state.check()
            db.commit()
            return result
        except SQLAlchemyError as exc:
            db.rollback()
            raise translate_database_error(exc) from exc
        except BaseException:
            db.rollback()
            raise
        finally:
            if state is not None:
                state.closed = True
            db.close()
