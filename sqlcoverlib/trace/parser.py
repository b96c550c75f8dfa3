import logging
from datetime import datetime
from typing import List, Optional, Union

from lxml import etree

from sqlcoverlib.errors import TraceEventParseError
from sqlcoverlib.models import TraceEvent

log = logging.getLogger(__name__)

XPATH_EVENTS = etree.XPath('/RingBufferTarget/event')
XPATH_DATA_VALUE = etree.XPath('string(data[@name=$name]/value)')


def _to_bytes(xml: Union[str, bytes]) -> bytes:
    # lxml detects the encoding of bytes itself, from a BOM or the XML declaration
    if isinstance(xml, bytes):
        return xml
    return xml.encode("utf-8")


def split_ring_buffer(target_data: Union[str, bytes, None]) -> List[str]:
    """Splits the XML of a ring_buffer target into one XML string per <event>."""
    if not target_data:
        return []
    try:
        root = etree.fromstring(_to_bytes(target_data))
    except etree.XMLSyntaxError as e:
        raise TraceEventParseError(f"Ring buffer target data is not valid XML: {e}") from e
    return [etree.tostring(event, encoding="unicode", with_tail=False) for event in XPATH_EVENTS(root)]


def _int_field(event, name: str) -> Optional[int]:
    value = XPATH_DATA_VALUE(event, name=name).strip()
    if not value:
        return None
    try:
        return int(value)
    except ValueError:
        raise TraceEventParseError(f"Field {name} is not an integer: {value!r}")


def _timestamp(event) -> Optional[datetime]:
    ts = event.get("timestamp")
    if not ts:
        return None
    try:
        return datetime.fromisoformat(ts.replace("Z", "+00:00"))
    except ValueError:
        log.debug("Unparsable event timestamp %r", ts)
        return None


def parse_raw_event(raw: Union[str, bytes]) -> TraceEvent:
    """
    Decodes one sp_statement_starting <event> element.

    The offsets are kept exactly as reported (UTF-16 byte offsets). An offset_end of -1 means
    "until the end of the module" and is reported as None.
    """
    try:
        event = etree.fromstring(_to_bytes(raw))
    except etree.XMLSyntaxError as e:
        raise TraceEventParseError(f"Event is not valid XML: {e}") from e

    object_id = _int_field(event, "object_id")
    offset = _int_field(event, "offset")
    if object_id is None or offset is None:
        raise TraceEventParseError(f"Event {event.get('name')!r} does not carry object_id and offset")

    offset_end = _int_field(event, "offset_end")
    if offset_end is not None and offset_end < 0:
        offset_end = None

    return TraceEvent(
        object_id=object_id,
        statement_start_offset=offset,
        statement_end_offset=offset_end,
        timestamp=_timestamp(event),
    )
