import pytest

from courseplatform.client.client import CoursePlatformClient
from courseplatform.core.errors import ClientValidationError


@pytest.fixture
def private_client():
    platform_client = CoursePlatformClient('sqlite://', log=[], omit={'user': {'password': True}})
    platform_client.ensure_schema()
    try:
        yield platform_client
    finally:
        platform_client.disconnect()


def test_client_level_omit_hides_field_unless_overridden(private_client) -> None:
    created = private_client.user.create(data={'name': 'Ada', 'email': 'ada@example.edu', 'password': 'secret'})

    revealed = private_client.user.find_unique(where={'id': created['id']}, omit={'password': False})

    assert 'password' not in created
    assert revealed['password'] == 'secret'


def test_client_level_omit_rejects_unknown_model() -> None:
    with pytest.raises(ClientValidationError):
        CoursePlatformClient('sqlite://', log=[], omit={'teacher': {'password': True}})


def test_select_returns_only_requested_fields(client) -> None:
    created = client.user.create(data={'name': 'Ada', 'email': 'ada@example.edu'})

    selected = client.user.find_unique(where={'id': created['id']}, select={'email': True, 'name': False})

    assert selected == {'email': 'ada@example.edu'}


def test_select_and_include_together_are_rejected(client) -> None:
    with pytest.raises(ClientValidationError) as exception_info:
        client.user.find_many(select={'id': True}, include={'ratings': True})

    assert 'Please either use `include` or `select`' in exception_info.value.message


def test_include_rejects_scalar_fields(client) -> None:
    with pytest.raises(ClientValidationError):
        client.user.find_many(include={'email': True})


def test_include_with_nested_arguments(client, catalog) -> None:
    course = client.course.find_unique(
        where={'id': catalog['python']['id']},
        include={
            'sessions': {'order_by': {'title': 'desc'}, 'take': 1, 'select': {'title': True}},
            'ratings': {'where': {'stars': {'gte': 4}}, 'include': {'user': {'select': {'name': True}}}},
        },
    )

    assert course['sessions'] == [{'title': 'Variables'}]
    assert [(rating['user']['name'], rating['stars']) for rating in course['ratings']] == [('Ada', 5), ('Alan', 4)]


def test_include_missing_to_one_relation_is_none(client, catalog) -> None:
    course = client.course.find_unique(where={'id': catalog['design']['id']}, include={'instructor': True})

    assert course['instructor'] is None


def test_include_relation_counts(client, catalog) -> None:
    courses = client.course.find_many(
        select={
            'title': True,
            '_count': {'select': {'enrollments': True, 'ratings': {'where': {'stars': {'gte': 4}}}}},
        },
    )

    assert courses == [
        {'title': 'Python Basics', '_count': {'enrollments': 3, 'ratings': 2}},
        {'title': 'Design 101', '_count': {'enrollments': 0, 'ratings': 0}},
    ]


def test_nested_take_must_not_be_negative(client, catalog) -> None:
    with pytest.raises(ClientValidationError):
        client.course.find_many(include={'sessions': {'take': -1}})


def test_nested_skip_must_not_be_negative(client, catalog) -> None:
    with pytest.raises(ClientValidationError) as exception_info:
        client.course.find_many(include={'sessions': {'skip': -1}})

    assert exception_info.value.message == '`skip` for relation `sessions` must not be negative.'
