import pytest

from courseplatform.core.errors import ClientValidationError
from courseplatform.models.rating import Rating
from courseplatform.models.session_progress import SessionProgress
from courseplatform.models.user import User
from courseplatform.query.filters import require_unique_where, scalar_fields, unique_keys

# relationships resolve only once every model is imported
from courseplatform.client.client import MODELS  # noqa: F401


def test_unique_keys_include_compound_constraints() -> None:
    assert unique_keys(User) == {'id': ('id',), 'email': ('email',)}
    assert unique_keys(Rating) == {'id': ('id',), 'user_id_course_id': ('user_id', 'course_id')}
    assert unique_keys(SessionProgress)['user_id_session_id'] == ('user_id', 'session_id')


def test_scalar_fields_exclude_relations() -> None:
    assert scalar_fields(User) == ['id', 'name', 'email', 'password', 'role']


@pytest.mark.parametrize(
    'where',
    [
        {'id': 1},
        {'email': {'equals': 'ada@example.edu'}},
        {'email': 'ada@example.edu', 'name': 'Ada'},
    ],
)
def test_require_unique_where_accepts_unique_equality(where) -> None:
    require_unique_where(User, where)


@pytest.mark.parametrize(
    'where',
    [
        {},
        {'name': 'Ada'},
        {'email': {'contains': 'ada'}},
        {'id': None},
    ],
)
def test_require_unique_where_rejects_non_unique_filters(where) -> None:
    with pytest.raises(ClientValidationError):
        require_unique_where(User, where)


def test_require_unique_where_accepts_compound_key() -> None:
    require_unique_where(Rating, {'user_id_course_id': {'user_id': 1, 'course_id': 2}})
