import abc
import logging
import time
from enum import Enum
from typing import List, Optional

from sqlcoverlib.diagnostics import DiagnosticsCollector
from sqlcoverlib.errors import SessionError, TraceEventParseError
from sqlcoverlib.models import Diagnostic, Severity, Stage, TraceEvent
from sqlcoverlib.trace.base import TraceSource
from sqlcoverlib.trace.parser import parse_raw_event

log = logging.getLogger(__name__)


class WaitPolicy(abc.ABC):
    """How long to block after the workload so the server can dispatch the buffered events."""

    @abc.abstractmethod
    def wait(self) -> None:
        raise NotImplementedError


class FixedDelayWaitPolicy(WaitPolicy):
    def __init__(self, seconds: float = 1.0):
        self.seconds = seconds

    def wait(self) -> None:
        time.sleep(self.seconds)

    def __repr__(self):
        return f"FixedDelayWaitPolicy(seconds={self.seconds})"


class NoWaitPolicy(WaitPolicy):
    def wait(self) -> None:
        pass


class SessionState(Enum):
    IDLE = "idle"
    RUNNING = "running"
    STOPPED = "stopped"
    DROPPED = "dropped"


class TraceSessionManager:
    '''
    Owns the lifecycle of one trace session: start, read, stop, drop.

    Creation and start failures are fatal and raised as SessionError. Everything after a
    successful start is best effort: stop and drop failures end up as diagnostics so that the
    events that were already captured are never lost.
    '''
    def __init__(self, source: TraceSource, wait_policy: Optional[WaitPolicy] = None,
                 diagnostics: Optional[DiagnosticsCollector] = None):
        self.source = source
        self.wait_policy = wait_policy or FixedDelayWaitPolicy()
        self.diagnostics = diagnostics if diagnostics is not None else DiagnosticsCollector()
        self.state = SessionState.IDLE

    @property
    def is_active(self) -> bool:
        return self.state == SessionState.RUNNING

    def start(self) -> None:
        if self.is_active:
            raise SessionError(f"Trace session {self.source.name} is already active")
        try:
            self.source.start()
        except Exception as e:
            # a half created session must not stay behind on the server
            self.state = SessionState.STOPPED
            self.drop()
            if isinstance(e, SessionError):
                raise
            raise SessionError(f"Could not start trace session {self.source.name}: {e}") from e
        self.state = SessionState.RUNNING
        log.debug("Trace session %s started", self.source.name)

    def wait_for_dispatch(self) -> None:
        self.wait_policy.wait()

    def read_events(self) -> List[TraceEvent]:
        if self.state not in (SessionState.RUNNING, SessionState.STOPPED):
            raise SessionError(f"Trace session {self.source.name} is {self.state.value}, nothing to read")
        events = []
        for raw in self.source.read_raw():
            try:
                events.append(parse_raw_event(raw))
            except TraceEventParseError as e:
                self.diagnostics.add(Diagnostic.from_exception(Stage.SESSION, e, severity=Severity.WARNING))
        log.debug("Trace session %s captured %d events", self.source.name, len(events))
        return events

    def stop(self) -> None:
        if self.state != SessionState.RUNNING:
            return
        self.state = SessionState.STOPPED
        try:
            self.source.stop()
        except Exception as e:
            log.warning("Failed to stop trace session %s: %s", self.source.name, e)
            self.diagnostics.add(Diagnostic.from_exception(Stage.SESSION, SessionError(f"Failed to stop trace session {self.source.name}: {e}"), severity=Severity.WARNING))

    def drop(self) -> None:
        if self.state in (SessionState.IDLE, SessionState.DROPPED):
            return
        self.state = SessionState.DROPPED
        try:
            self.source.drop()
        except Exception as e:
            log.warning("Failed to drop trace session %s: %s", self.source.name, e)
            self.diagnostics.add(Diagnostic.from_exception(Stage.SESSION, SessionError(f"Failed to drop trace session {self.source.name}: {e}"), severity=Severity.WARNING))

    def close(self) -> None:
        self.stop()
        self.drop()

    def __enter__(self):
        self.start()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False
