from .base import SqlCoverBaseModel, FrozenModel
from .diagnostics import Diagnostic, Stage, Severity
from .source import ObjectKind, SourceObject
from .trace import TraceEvent
from .coverage import StatementSpan, CoverageStats, ObjectCoverage, CoverageResult
