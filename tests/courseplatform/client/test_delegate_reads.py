import pytest

from courseplatform.core.errors import ClientValidationError, RecordNotFoundError

NAMES = ['b', 'a', 'b', 'c', 'a', 'b', 'd']


@pytest.fixture
def people(client) -> list[dict]:
    return [
        client.user.create(data={'name': name, 'email': f'user{index}@Example.edu'})
        for index, name in enumerate(NAMES)
    ]


def test_skip_take_windows_cover_every_row_once(client, people) -> None:
    seen = []
    for skip in range(0, len(people), 3):
        page = client.user.find_many(order_by={'name': 'asc'}, skip=skip, take=3)
        seen.extend(record['id'] for record in page)

    assert sorted(seen) == sorted(person['id'] for person in people)
    assert len(seen) == len(set(seen))


def test_order_by_breaks_ties_on_primary_key(client, people) -> None:
    records = client.user.find_many(order_by=[{'name': 'desc'}])

    assert [record['name'] for record in records] == ['d', 'c', 'b', 'b', 'b', 'a', 'a']
    b_ids = [record['id'] for record in records if record['name'] == 'b']
    assert b_ids == sorted(b_ids)


def test_negative_take_reads_from_the_end(client, people) -> None:
    records = client.user.find_many(order_by={'id': 'asc'}, take=-2)

    assert [record['id'] for record in records] == [people[5]['id'], people[6]['id']]


def test_cursor_page_includes_the_cursor_row(client, people) -> None:
    page = client.user.find_many(cursor={'id': people[2]['id']}, take=2)
    after = client.user.find_many(cursor={'id': people[2]['id']}, skip=1, take=2)

    assert [record['id'] for record in page] == [people[2]['id'], people[3]['id']]
    assert [record['id'] for record in after] == [people[3]['id'], people[4]['id']]


def test_cursor_with_negative_take_pages_backwards(client, people) -> None:
    page = client.user.find_many(cursor={'id': people[2]['id']}, take=-2)

    assert [record['id'] for record in page] == [people[1]['id'], people[2]['id']]


def test_unknown_cursor_yields_an_empty_page(client, people) -> None:
    assert client.user.find_many(cursor={'id': 999}, take=2) == []


def test_cursor_rejects_relation_ordering(client, people) -> None:
    with pytest.raises(ClientValidationError):
        client.user.find_many(cursor={'id': people[0]['id']}, order_by={'enrollments': {'_count': 'desc'}})


@pytest.fixture
def thumbnails(client) -> dict[str, int]:
    ids = {}
    for title, thumbnail in [('a', 'a'), ('b', None), ('c', 'c'), ('d', None), ('e', 'e')]:
        course = client.course.create(
            data={'title': title, 'description': 'x', 'category': 'misc', 'thumbnail': thumbnail}
        )
        ids[title] = course['id']
    return ids


def test_cursor_pages_reach_null_rows_sorted_last(client, thumbnails) -> None:
    order = {'thumbnail': {'sort': 'asc', 'nulls': 'last'}}

    first = client.course.find_many(order_by=order, take=2)
    rest = client.course.find_many(order_by=order, cursor={'id': thumbnails['c']}, skip=1)
    from_null = client.course.find_many(order_by=order, cursor={'id': thumbnails['b']}, skip=1)

    assert [record['title'] for record in first] == ['a', 'c']
    assert [record['title'] for record in rest] == ['e', 'b', 'd']
    assert [record['title'] for record in from_null] == ['d']


def test_cursor_pages_backwards_across_null_rows(client, thumbnails) -> None:
    order = {'thumbnail': {'sort': 'asc', 'nulls': 'last'}}

    page = client.course.find_many(order_by=order, cursor={'id': thumbnails['d']}, take=-3)

    assert [record['title'] for record in page] == ['e', 'b', 'd']


def test_cursor_follows_default_null_placement(client, thumbnails) -> None:
    order = {'thumbnail': 'desc'}

    everything = client.course.find_many(order_by=order)
    after_a = client.course.find_many(order_by=order, cursor={'id': thumbnails['a']}, skip=1)

    assert [record['title'] for record in everything] == ['e', 'c', 'a', 'b', 'd']
    assert [record['title'] for record in after_a] == ['b', 'd']


def test_negative_skip_is_rejected(client) -> None:
    with pytest.raises(ClientValidationError):
        client.user.find_many(skip=-1)


def test_distinct_keeps_first_row_per_value(client, people) -> None:
    records = client.user.find_many(distinct='name', order_by={'name': 'asc'})

    assert [record['name'] for record in records] == ['a', 'b', 'c', 'd']
    assert records[0]['id'] == people[1]['id']


def test_find_first_follows_ordering(client, people) -> None:
    first = client.user.find_first(order_by={'id': 'desc'})

    assert first['id'] == people[-1]['id']
    assert client.user.find_first(where={'name': 'zzz'}) is None


def test_find_first_or_throw_raises_when_nothing_matches(client, people) -> None:
    with pytest.raises(RecordNotFoundError):
        client.user.find_first_or_throw(where={'name': 'zzz'})


def test_scalar_filters_compose(client, people) -> None:
    records = client.user.find_many(
        where={
            'OR': [{'name': 'a'}, {'name': {'in': ['d']}}],
            'NOT': {'id': people[1]['id']},
        },
    )

    assert [record['id'] for record in records] == [people[4]['id'], people[6]['id']]


def test_insensitive_contains_filter(client, people) -> None:
    assert client.user.count(where={'email': {'contains': 'EXAMPLE', 'mode': 'insensitive'}}) == len(people)
    assert client.user.count(where={'email': {'starts_with': 'user1', 'not': {'ends_with': '.org'}}}) == 1


def test_insensitive_mode_applies_to_lists_and_comparisons(client, people) -> None:
    wanted = ['USER0@EXAMPLE.EDU', 'user1@example.edu']

    assert client.user.count(where={'email': {'in': wanted}}) == 0
    assert client.user.count(where={'email': {'in': wanted, 'mode': 'insensitive'}}) == 2
    assert client.user.count(where={'email': {'not_in': wanted, 'mode': 'insensitive'}}) == len(people) - 2
    assert client.user.count(where={'name': {'gte': 'C'}}) == len(people)
    assert client.user.count(where={'name': {'gte': 'C', 'mode': 'insensitive'}}) == 2
    assert client.user.count(where={'name': {'lt': 'B', 'mode': 'insensitive'}}) == 2


def test_null_filters(client) -> None:
    client.user.create(data={'name': 'Ada', 'email': 'ada@example.edu', 'password': 'x'})
    client.user.create(data={'name': 'Alan', 'email': 'alan@example.edu'})

    assert [record['name'] for record in client.user.find_many(where={'password': None})] == ['Alan']
    assert [record['name'] for record in client.user.find_many(where={'password': {'not': None}})] == ['Ada']


def test_unknown_filter_field_is_rejected(client) -> None:
    with pytest.raises(ClientValidationError) as exception_info:
        client.user.find_many(where={'nickname': 'ada'})

    assert 'nickname' in exception_info.value.message


def test_relation_filters(client, catalog) -> None:
    enrolled = client.course.find_many(where={'enrollments': {'some': {'user_id': catalog['students'][0]['id']}}})
    unenrolled = client.course.find_many(where={'enrollments': {'none': {}}})
    without_instructor = client.course.find_many(where={'instructor': None})
    taught_by_grace = client.course.find_many(where={'instructor': {'is': {'email': 'grace@example.edu'}}})

    assert [course['title'] for course in enrolled] == ['Python Basics']
    assert [course['title'] for course in unenrolled] == ['Design 101']
    assert [course['title'] for course in without_instructor] == ['Design 101']
    assert [course['title'] for course in taught_by_grace] == ['Python Basics']


def test_every_filter_on_to_many_relation(client, catalog) -> None:
    courses = client.course.find_many(where={'ratings': {'every': {'stars': {'gte': 3}}}})

    assert [course['title'] for course in courses] == ['Python Basics']


def test_order_by_relation_count(client, catalog) -> None:
    courses = client.course.find_many(order_by={'ratings': {'_count': 'desc'}})

    assert [course['title'] for course in courses] == ['Python Basics', 'Design 101']


def test_order_by_to_one_relation_field(client, catalog) -> None:
    ratings = client.rating.find_many(order_by=[{'user': {'name': 'desc'}}, {'stars': 'asc'}])

    assert [rating['stars'] for rating in ratings] == [3, 4, 2, 5]
