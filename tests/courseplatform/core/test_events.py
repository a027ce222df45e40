import logging

import pytest

from courseplatform.core.errors import ClientValidationError
from courseplatform.core.events import LogEmitter, LogEvent, QueryEvent, parse_log_definitions


def test_parse_log_definitions_accepts_levels_and_dicts() -> None:
    definitions = parse_log_definitions(['Warn', {'level': 'query', 'emit': 'event'}])

    assert definitions == {'warn': 'stdout', 'query': 'event'}


@pytest.mark.parametrize('entry', ['verbose', {'level': 'info', 'emit': 'email'}, 42])
def test_parse_log_definitions_rejects_invalid_entries(entry) -> None:
    with pytest.raises(ClientValidationError):
        parse_log_definitions([entry])


def test_event_levels_reach_registered_callbacks() -> None:
    emitter = LogEmitter({'info': 'event'})
    received = []
    emitter.on('info', received.append)

    emitter.emit('info', LogEvent('hello'))
    emitter.emit('warn', LogEvent('ignored'))

    assert [event.message for event in received] == ['hello']


def test_stdout_levels_go_through_logging(caplog: pytest.LogCaptureFixture) -> None:
    emitter = LogEmitter({'warn': 'stdout', 'query': 'stdout'})

    with caplog.at_level(logging.DEBUG, logger='courseplatform'):
        emitter.emit('warn', LogEvent('careful'))
        emitter.emit('query', QueryEvent(query='SELECT 1', params='()', duration_ms=1.5))

    assert [record.levelno for record in caplog.records] == [logging.WARNING, logging.DEBUG]
    assert caplog.records[0].getMessage() == 'careful'
    assert caplog.records[1].getMessage() == 'Query: SELECT 1 Params: () Duration: 1.50ms'
