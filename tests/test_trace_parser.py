"""Tests for decoding extended events XML."""

import pytest

from common import event_xml, ring_buffer_xml
from sqlcoverlib.errors import TraceEventParseError
from sqlcoverlib.trace import parse_raw_event, split_ring_buffer


def test_split_ring_buffer():
    xml = ring_buffer_xml([event_xml(101, 10), event_xml(102, 20, 40)])

    events = split_ring_buffer(xml)

    assert len(events) == 2
    assert all(e.startswith("<event") for e in events)
    assert parse_raw_event(events[1]).object_id == 102


@pytest.mark.parametrize("target_data", [None, "", b""])
def test_split_empty_target(target_data):
    assert split_ring_buffer(target_data) == []


def test_split_accepts_bytes():
    xml = ring_buffer_xml([event_xml(101, 10)]).encode("utf-8")

    assert len(split_ring_buffer(xml)) == 1


def test_split_detects_utf16_bytes():
    """Bytes are handed to lxml as they are, so a declared UTF-16 document is decoded by the parser."""
    xml = '<?xml version="1.0" encoding="utf-16"?>' + ring_buffer_xml([event_xml(101, 10), event_xml(102, 20)])

    events = split_ring_buffer(xml.encode("utf-16"))

    assert [parse_raw_event(e).object_id for e in events] == [101, 102]


def test_split_invalid_xml():
    with pytest.raises(TraceEventParseError):
        split_ring_buffer("<RingBufferTarget><event></RingBufferTarget>")


def test_parse_event_fields():
    event = parse_raw_event(event_xml(101, 84, 130, timestamp="2024-05-01T10:00:00.123Z"))

    assert event.object_id == 101
    assert event.statement_start_offset == 84
    assert event.statement_end_offset == 130
    assert not event.marks_start_only
    assert event.timestamp is not None
    assert event.timestamp.year == 2024
    assert event.timestamp.utcoffset().total_seconds() == 0


def test_offset_end_minus_one_means_end_of_module():
    event = parse_raw_event(event_xml(101, 84, -1))

    assert event.statement_end_offset is None
    assert event.marks_start_only


def test_missing_offset_end():
    event = parse_raw_event(event_xml(101, 84, None))

    assert event.statement_end_offset is None


def test_unparsable_timestamp_is_dropped():
    event = parse_raw_event(event_xml(101, 84, timestamp="yesterday"))

    assert event.timestamp is None


@pytest.mark.parametrize("raw", [
    "<event name='sp_statement_starting'>",
    "<event name='sp_statement_starting'><data name='offset'><value>4</value></data></event>",
    "<event name='sp_statement_starting'><data name='object_id'><value>x</value></data>"
    "<data name='offset'><value>4</value></data></event>",
])
def test_malformed_events(raw):
    with pytest.raises(TraceEventParseError):
        parse_raw_event(raw)
