"""Pytest configuration and fixtures."""

import pytest

from common import (
    INTERNAL_HELPER, INTERNAL_HELPER_NAME, PROC1, PROC1_NAME, SCRIPTS,
    CommandRunningProcessRunner, DispatchingWaitPolicy, FakeServer, FakeSourceGateway, FakeTraceSource, ScriptedGateway,
)
from sqlcoverlib import CodeCoverage
from sqlcoverlib.models import ObjectKind


@pytest.fixture
def server() -> FakeServer:
    return FakeServer([
        (101, PROC1_NAME, ObjectKind.PROCEDURE, PROC1),
        (102, INTERNAL_HELPER_NAME, ObjectKind.PROCEDURE, INTERNAL_HELPER),
    ])


@pytest.fixture
def gateway(server) -> ScriptedGateway:
    return ScriptedGateway(server, dict(SCRIPTS))


@pytest.fixture
def trace_source(server) -> FakeTraceSource:
    return FakeTraceSource(server)


@pytest.fixture
def make_coverage(server, gateway, trace_source):
    """Builds a CodeCoverage wired to the fake server."""
    def _make(exclude_filter=None, trace_source_factory=None, source_gateway=None, **kwargs):
        kwargs.setdefault("process_runner", CommandRunningProcessRunner(gateway))
        kwargs.setdefault("wait_policy", DispatchingWaitPolicy(server))
        return CodeCoverage(
            None,
            "TestDb",
            exclude_filter,
            gateway=gateway,
            source_gateway=source_gateway or FakeSourceGateway(server),
            trace_source_factory=trace_source_factory or (lambda: trace_source),
            **kwargs,
        )
    return _make
