"""Error kinds surfaced by the course platform client.

Every failure reaching a caller is a ``ClientError``. Database failures are
classified into stable codes so callers can tell a uniqueness conflict from a
missing row without parsing driver messages.
"""

import re

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

UNIQUE_CONSTRAINT_FAILED = "P2002"
FOREIGN_KEY_CONSTRAINT_FAILED = "P2003"
NULL_CONSTRAINT_VIOLATION = "P2011"
RECORD_NOT_FOUND = "P2025"
TRANSACTION_API_ERROR = "P2028"

_PG_UNIQUE = "23505"
_PG_FOREIGN_KEY = "23503"
_PG_NOT_NULL = "23502"
_PG_QUERY_CANCELED = "57014"
_MYSQL_UNIQUE = {1062}
_MYSQL_FOREIGN_KEY = {1451, 1452}
_MYSQL_NOT_NULL = {1048}

_SQLITE_COLUMNS = re.compile(r"constraint failed: (?P<columns>[\w., ]+)")


class ClientError(Exception):
    """Base class for every error raised by the client."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message
        self.formatted = False


class ClientKnownRequestError(ClientError):
    """The database rejected a well-formed request for a domain reason."""

    def __init__(self, message: str, code: str, meta: dict | None = None) -> None:
        super().__init__(message)
        self.code = code
        self.meta = meta or {}


class RecordNotFoundError(ClientKnownRequestError):
    def __init__(self, message: str, meta: dict | None = None) -> None:
        super().__init__(message, code=RECORD_NOT_FOUND, meta=meta)


class ClientUnknownRequestError(ClientError):
    """The database returned an error that could not be classified."""


class ClientInitializationError(ClientError):
    """The datasource could not be configured or reached."""


class ClientValidationError(ClientError):
    """The call arguments do not fit the schema."""


def validation_error_from_pydantic(exc: PydanticValidationError) -> ClientValidationError:
    problems = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error["loc"]) or "arguments"
        problems.append(f"{location}: {error['msg']}")
    return ClientValidationError("; ".join(problems))


def _driver_code(exc: SQLAlchemyError):
    original = getattr(exc, "orig", None)
    if original is None:
        return None
    code = getattr(original, "pgcode", None) or getattr(original, "sqlstate", None)
    if code:
        return code
    args = getattr(original, "args", ())
    if args and isinstance(args[0], int):
        return args[0]
    return None


def _sqlite_target(text: str) -> list[str]:
    match = _SQLITE_COLUMNS.search(text)
    if not match:
        return []
    return [column.strip().split(".")[-1] for column in match.group("columns").split(",")]


def _postgres_target(exc: SQLAlchemyError) -> list[str]:
    diag = getattr(getattr(exc, "orig", None), "diag", None)
    constraint = getattr(diag, "constraint_name", None)
    return [constraint] if constraint else []


def translate_database_error(exc: SQLAlchemyError) -> ClientError:
    """Map a SQLAlchemy error onto the client's error kinds."""
    text = str(getattr(exc, "orig", None) or exc)
    code = _driver_code(exc)
    if code == _PG_QUERY_CANCELED:
        # statement_timeout set for an interactive transaction
        return ClientKnownRequestError(
            f"Transaction API error: Transaction already closed: A statement was cancelled. {text}",
            code=TRANSACTION_API_ERROR,
        )
    if not isinstance(exc, IntegrityError):
        return ClientUnknownRequestError(text)

    lowered = text.lower()

    if code == _PG_UNIQUE or code in _MYSQL_UNIQUE or "unique constraint failed" in lowered:
        target = _sqlite_target(text) or _postgres_target(exc)
        fields = ", ".join(f"`{field}`" for field in target) or "a unique field"
        return ClientKnownRequestError(
            f"Unique constraint failed on the fields: ({fields})",
            code=UNIQUE_CONSTRAINT_FAILED,
            meta={"target": target},
        )
    if code == _PG_FOREIGN_KEY or code in _MYSQL_FOREIGN_KEY or "foreign key constraint failed" in lowered:
        return ClientKnownRequestError(
            "Foreign key constraint failed on the field: "
            + (", ".join(_postgres_target(exc)) or "(not available)"),
            code=FOREIGN_KEY_CONSTRAINT_FAILED,
            meta={"field_name": _postgres_target(exc)},
        )
    if code == _PG_NOT_NULL or code in _MYSQL_NOT_NULL or "not null constraint failed" in lowered:
        target = _sqlite_target(text)
        return ClientKnownRequestError(
            "Null constraint violation on the fields: (" + ", ".join(f"`{f}`" for f in target) + ")",
            code=NULL_CONSTRAINT_VIOLATION,
            meta={"target": target},
        )
    return ClientUnknownRequestError(text)


def format_error(error: ClientError, invocation: str, error_format: str) -> ClientError:
    """Render ``error`` for the given call site once and return it."""
    if error.formatted:
        return error
    error.formatted = True
    if error_format == "minimal":
        return error
    if error_format == "pretty":
        header = f"\x1b[31mInvalid \x1b[1m`client.{invocation}()`\x1b[22m invocation:\x1b[39m"
    else:
        header = f"Invalid `client.{invocation}()` invocation:"
    error.args = (f"{header}\n\n{error.message}",)
    return error
