import pytest

from courseplatform.client.client import CoursePlatformClient


@pytest.fixture
def client():
    platform_client = CoursePlatformClient(
        'sqlite://',
        log=[
            {'level': 'query', 'emit': 'event'},
            {'level': 'info', 'emit': 'event'},
            {'level': 'warn', 'emit': 'event'},
            {'level': 'error', 'emit': 'event'},
        ],
    )
    platform_client.ensure_schema()
    try:
        yield platform_client
    finally:
        platform_client.disconnect()


@pytest.fixture
def catalog(client):
    """Two instructors' worth of courses with a few students, sessions and ratings."""
    instructor = client.user.create(
        data={'name': 'Grace', 'email': 'grace@example.edu', 'password': 'pw', 'role': 'INSTRUCTOR'},
    )
    students = [
        client.user.create(data={'name': name, 'email': f'{name.lower()}@example.edu'})
        for name in ('Ada', 'Alan', 'Barbara')
    ]
    python = client.course.create(
        data={
            'title': 'Python Basics',
            'description': 'Intro course',
            'category': 'programming',
            'instructor': {'connect': {'id': instructor['id']}},
            'sessions': {
                'create': [
                    {'title': 'Variables', 'video_url': 'https://videos.example/1', 'content': 'x = 1'},
                    {'title': 'Loops', 'video_url': 'https://videos.example/2', 'content': 'for x in y'},
                ],
            },
        },
    )
    design = client.course.create(
        data={'title': 'Design 101', 'description': 'Shapes', 'category': 'design'},
    )
    for student in students:
        client.enrollment.create(data={'user_id': student['id'], 'course_id': python['id']})
    for student, stars in zip(students, (5, 4, 3)):
        client.rating.create(data={'user_id': student['id'], 'course_id': python['id'], 'stars': stars})
    client.rating.create(data={'user_id': students[0]['id'], 'course_id': design['id'], 'stars': 2})
    return {'instructor': instructor, 'students': students, 'python': python, 'design': design}
