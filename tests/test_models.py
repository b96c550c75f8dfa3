"""Tests for the result and source models and the diagnostics collector."""

import logging

import pytest
from pydantic import ValidationError

from common import PROC1
from sqlcoverlib.diagnostics import DiagnosticsCollector, LoggingDiagnosticSink
from sqlcoverlib.errors import SessionError
from sqlcoverlib.models import (
    CoverageResult, CoverageStats, Diagnostic, ObjectCoverage, ObjectKind, Severity, SourceObject, Stage, StatementSpan,
)
from sqlcoverlib.utils import log_elapsed, parse_env_flag, quote_identifier, quote_literal


def span(ordinal, start, end, executed=False):
    return StatementSpan(ordinal=ordinal, start_offset=start, end_offset=end, start_line=1, end_line=1, executed=executed)


def test_span_must_not_be_empty():
    with pytest.raises(ValidationError):
        span(0, 5, 5)


def test_span_is_immutable():
    s = span(0, 0, 4)

    with pytest.raises(ValidationError):
        s.executed = True


def test_stats_from_counts():
    assert CoverageStats.from_counts(1, 4).percentage == 25.0
    assert CoverageStats.from_counts(0, 0).percentage == 0.0
    assert str(CoverageStats.from_counts(1, 3)) == "1/3 (33.3%)"


def test_result_lookups():
    proc = ObjectCoverage(object_id=1, name="[dbo].[P]", kind=ObjectKind.PROCEDURE,
                          spans=(span(0, 0, 4, executed=True),), stats=CoverageStats.from_counts(1, 1))
    result = CoverageResult(database_name="TestDb", objects=(proc,))

    assert "[dbo].[P]" in result
    assert "[dbo].[Q]" not in result
    assert result.per_object["[dbo].[P]"][0].executed
    assert result.object_stats["[dbo].[P]"].percentage == 100.0
    assert result.get("[dbo].[Q]") is None
    assert CoverageResult.empty("TestDb").objects == ()


def test_source_line_numbers():
    obj = SourceObject(object_id=1, name="p", kind=ObjectKind.PROCEDURE, raw_text=PROC1)

    assert obj.line_at(0) == 1
    assert obj.line_at(PROC1.index("SET NOCOUNT")) == 4
    assert obj.line_at(len(PROC1) - 1) == 6


def test_char_offset_bmp_text():
    obj = SourceObject(object_id=1, name="p", kind=ObjectKind.PROCEDURE, raw_text="SELECT 1")

    assert obj.char_offset(0) == 0
    assert obj.char_offset(14) == 7
    assert obj.char_offset(-1) is None
    assert obj.char_offset(100) is None


def test_char_offset_with_surrogate_pairs():
    text = "PRINT N'\U0001F600'; SELECT 1"
    obj = SourceObject(object_id=1, name="p", kind=ObjectKind.PROCEDURE, raw_text=text)
    byte_offset = len(text[:text.index("SELECT")].encode("utf-16-le"))

    assert obj.char_offset(byte_offset) == text.index("SELECT")


@pytest.mark.parametrize("code,kind", [
    ("P", ObjectKind.PROCEDURE),
    ("TF", ObjectKind.FUNCTION),
    ("tr ", ObjectKind.TRIGGER),
    ("V", None),
])
def test_object_kind_from_type_code(code, kind):
    assert ObjectKind.from_type_code(code) is kind


def test_diagnostic_from_exception():
    d = Diagnostic.from_exception(Stage.SESSION, SessionError("no permission"), object_name="[dbo].[P]")

    assert d.severity == Severity.ERROR
    assert d.category == "SessionError"
    assert str(d) == "session/error [[dbo].[P]]: SessionError: no permission"


def test_collector_forwards_to_logging_sink(caplog):
    collector = DiagnosticsCollector(LoggingDiagnosticSink(logging.getLogger("sqlcoverlib.test")))

    with caplog.at_level(logging.INFO, logger="sqlcoverlib.test"):
        collector.record(Stage.CORRELATION, "3 events unmapped", severity=Severity.INFO)
        collector.record(Stage.SOURCE, "fetch failed", severity=Severity.ERROR, object_name="[dbo].[P]")

    assert len(collector) == 2
    assert [r.levelno for r in caplog.records] == [logging.INFO, logging.ERROR]
    assert [d.message for d in collector.by_stage(Stage.SOURCE)] == ["fetch failed"]


def test_quoting():
    assert quote_identifier("odd]name") == "[odd]]name]"
    assert quote_literal("it's") == "N'it''s'"


@pytest.mark.parametrize("value,expected", [("Yes", True), (" on ", True), ("0", False), ("off", False)])
def test_parse_env_flag(value, expected):
    assert parse_env_flag("SQLCOVERLIB_LOGGING", value) is expected


def test_parse_env_flag_names_the_variable():
    with pytest.raises(ValueError, match="SQLCOVERLIB_LOGGING='maybe'"):
        parse_env_flag("SQLCOVERLIB_LOGGING", "maybe")


def test_log_elapsed_logs_on_failure(caplog):
    logger = logging.getLogger("sqlcoverlib.test")

    with caplog.at_level(logging.INFO, logger="sqlcoverlib.test"):
        with pytest.raises(RuntimeError):
            with log_elapsed(logger, "Segmenting 3 modules"):
                raise RuntimeError("boom")

    assert [r.getMessage().split(" took ")[0] for r in caplog.records] == ["Segmenting 3 modules"]
