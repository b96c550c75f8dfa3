from .base import RawEvent, TraceSource
from .parser import parse_raw_event, split_ring_buffer
from .session import FixedDelayWaitPolicy, NoWaitPolicy, SessionState, TraceSessionManager, WaitPolicy
from .xevents import ExtendedEventsTraceSource, build_trace_source
