import pytest
from pydantic import BaseModel, ValidationError
from sqlalchemy.exc import IntegrityError, OperationalError

from courseplatform.core.errors import (
    FOREIGN_KEY_CONSTRAINT_FAILED,
    NULL_CONSTRAINT_VIOLATION,
    TRANSACTION_API_ERROR,
    UNIQUE_CONSTRAINT_FAILED,
    ClientKnownRequestError,
    ClientUnknownRequestError,
    ClientValidationError,
    format_error,
    translate_database_error,
    validation_error_from_pydantic,
)


class FakePostgresError(Exception):
    def __init__(self, message: str, pgcode: str, constraint_name: str | None = None):
        super().__init__(message)
        self.pgcode = pgcode
        self.diag = type('Diag', (), {'constraint_name': constraint_name})()


def test_postgres_unique_violation_uses_constraint_name() -> None:
    original = FakePostgresError('duplicate key value violates unique constraint', '23505', 'users_email_key')

    error = translate_database_error(IntegrityError('INSERT INTO users ...', {}, original))

    assert isinstance(error, ClientKnownRequestError)
    assert error.code == UNIQUE_CONSTRAINT_FAILED
    assert error.meta == {'target': ['users_email_key']}


def test_postgres_foreign_key_violation() -> None:
    original = FakePostgresError('violates foreign key constraint', '23503', 'enrollments_user_id_fkey')

    error = translate_database_error(IntegrityError('DELETE FROM users ...', {}, original))

    assert error.code == FOREIGN_KEY_CONSTRAINT_FAILED
    assert error.meta == {'field_name': ['enrollments_user_id_fkey']}


def test_mysql_duplicate_entry_is_a_unique_violation() -> None:
    original = Exception(1062, "Duplicate entry 'ada@example.edu' for key 'email'")

    error = translate_database_error(IntegrityError('INSERT INTO users ...', {}, original))

    assert error.code == UNIQUE_CONSTRAINT_FAILED


def test_sqlite_not_null_violation_reports_columns() -> None:
    original = Exception('NOT NULL constraint failed: users.name')

    error = translate_database_error(IntegrityError('INSERT INTO users ...', {}, original))

    assert error.code == NULL_CONSTRAINT_VIOLATION
    assert error.meta == {'target': ['name']}
    assert error.message == 'Null constraint violation on the fields: (`name`)'


def test_other_database_errors_are_unknown_requests() -> None:
    error = translate_database_error(OperationalError('SELECT 1', {}, Exception('database is locked')))

    assert isinstance(error, ClientUnknownRequestError)
    assert error.message == 'database is locked'


def test_postgres_statement_timeout_is_a_transaction_error() -> None:
    original = FakePostgresError('canceling statement due to statement timeout', '57014')

    error = translate_database_error(OperationalError('SELECT pg_sleep(10)', {}, original))

    assert isinstance(error, ClientKnownRequestError)
    assert error.code == TRANSACTION_API_ERROR
    assert 'statement timeout' in error.message


def test_format_error_colorless_adds_invocation_header() -> None:
    error = format_error(ClientValidationError('Argument `where` is missing.'), 'user.update', 'colorless')

    assert str(error) == 'Invalid `client.user.update()` invocation:\n\nArgument `where` is missing.'
    assert error.message == 'Argument `where` is missing.'


def test_format_error_pretty_uses_ansi_colours() -> None:
    error = format_error(ClientValidationError('bad'), 'user.update', 'pretty')

    assert str(error).startswith('\x1b[31m')


def test_format_error_only_formats_once() -> None:
    error = format_error(ClientValidationError('bad'), 'user.update', 'colorless')

    format_error(error, 'transaction', 'colorless')

    assert 'client.user.update()' in str(error)
    assert 'client.transaction()' not in str(error)


def test_validation_error_from_pydantic_joins_locations() -> None:
    class Sample(BaseModel):
        skip: int

    with pytest.raises(ValidationError) as exception_info:
        Sample.model_validate({'skip': 'many'})

    error = validation_error_from_pydantic(exception_info.value)

    assert isinstance(error, ClientValidationError)
    assert error.message.startswith('skip: ')
