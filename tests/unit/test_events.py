"""
Unit tests for the EventBus (leadcapture/bus/events.py).
Pure Python, no mocking required.
"""

import logging

import pytest

from leadcapture.bus.events import (
    EventBus,
    EVENT_LEAD_CREATED, EVENT_LEAD_UPDATED, EVENT_LEAD_SUBMITTED,
    EVENT_LEAD_STATUS_CHANGED, EVENT_LEAD_DELETED,
    EVENT_PARTICIPATION_CREATED, EVENT_PARTICIPATION_REMOVED,
)


@pytest.fixture
def bus():
    """Fresh EventBus per test."""
    return EventBus()


def test_handler_receives_data(bus):
    received = []
    bus.on('evt', received.append)
    bus.emit('evt', {'lead_id': 42})
    assert received == [{'lead_id': 42}]


def test_handlers_called_in_registration_order(bus):
    calls = []
    bus.on('evt', lambda d: calls.append('a'))
    bus.on('evt', lambda d: calls.append('b'))
    bus.emit('evt')
    assert calls == ['a', 'b']


def test_emit_without_data_passes_empty_dict(bus):
    received = []
    bus.on('evt', received.append)
    bus.emit('evt')
    assert received == [{}]


def test_emit_without_handlers_is_silent(bus):
    bus.emit('nobody_listens', {'x': 1})


def test_other_events_not_delivered(bus):
    received = []
    bus.on(EVENT_LEAD_CREATED, received.append)
    bus.emit(EVENT_LEAD_DELETED, {'lead_id': 1})
    assert received == []


def test_failing_handler_does_not_stop_others(bus, caplog):
    received = []

    def broken(data):
        raise RuntimeError('webhook down')

    bus.on('evt', broken)
    bus.on('evt', received.append)
    with caplog.at_level(logging.ERROR, logger='leadcapture.bus.events'):
        bus.emit('evt', {'lead_id': 3})

    assert received == [{'lead_id': 3}]
    assert any('webhook down' in r.message for r in caplog.records)


def test_clear_removes_handlers(bus):
    received = []
    bus.on('evt', received.append)
    bus.clear()
    bus.emit('evt', {'x': 1})
    assert received == []


def test_event_names_are_distinct():
    names = [
        EVENT_LEAD_CREATED, EVENT_LEAD_UPDATED, EVENT_LEAD_SUBMITTED, EVENT_LEAD_STATUS_CHANGED,
        EVENT_LEAD_DELETED, EVENT_PARTICIPATION_CREATED, EVENT_PARTICIPATION_REMOVED,
    ]
    assert len(set(names)) == len(names)


def test_emit_returns_number_of_successful_handlers(bus):
    bus.on('evt', lambda d: None)
    bus.on('evt', lambda d: 1 / 0)
    bus.on('evt', lambda d: None)
    assert bus.emit('evt') == 2


def test_off_unsubscribes_single_handler(bus):
    received = []
    bus.on('evt', received.append)
    assert bus.off('evt', received.append) is True
    assert bus.off('evt', received.append) is False
    bus.emit('evt', {'x': 1})
    assert received == []


def test_on_returns_handler(bus):
    def handler(data):
        pass
    assert bus.on('evt', handler) is handler


def test_handler_unsubscribing_during_emit_does_not_skip_others(bus):
    calls = []

    def once(data):
        calls.append('once')
        bus.off('evt', once)

    bus.on('evt', once)
    bus.on('evt', lambda d: calls.append('after'))
    bus.emit('evt')
    bus.emit('evt')
    assert calls == ['once', 'after', 'after']
