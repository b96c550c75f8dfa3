import abc
import logging
from typing import Iterable, List, Optional, Tuple

from sqlcoverlib.models.diagnostics import Diagnostic, Severity, Stage

log = logging.getLogger(__name__)

SEVERITY_TO_LEVEL = {
    Severity.INFO: logging.INFO,
    Severity.WARNING: logging.WARNING,
    Severity.ERROR: logging.ERROR,
}


class DiagnosticSink(abc.ABC):
    @abc.abstractmethod
    def record(self, diagnostic: Diagnostic) -> None:
        raise NotImplementedError


class NullDiagnosticSink(DiagnosticSink):
    def record(self, diagnostic: Diagnostic) -> None:
        pass


class LoggingDiagnosticSink(DiagnosticSink):
    def __init__(self, logger: Optional[logging.Logger] = None):
        self.logger = logger or log

    def record(self, diagnostic: Diagnostic) -> None:
        self.logger.log(SEVERITY_TO_LEVEL[diagnostic.severity], "%s", diagnostic)


class DiagnosticsCollector:
    '''
    Accumulates the diagnostics of a single coverage run and forwards each one to a sink
    as soon as it is recorded. The collected list ends up on the CoverageResult.
    '''
    def __init__(self, sink: Optional[DiagnosticSink] = None):
        self.sink = sink or NullDiagnosticSink()
        self._diagnostics: List[Diagnostic] = []

    def add(self, diagnostic: Diagnostic) -> Diagnostic:
        self._diagnostics.append(diagnostic)
        self.sink.record(diagnostic)
        return diagnostic

    def record(self, stage: Stage, message: str, severity: Severity = Severity.WARNING, object_name: Optional[str] = None) -> Diagnostic:
        return self.add(Diagnostic(stage=stage, severity=severity, message=message, object_name=object_name))

    def extend(self, diagnostics: Iterable[Diagnostic]) -> None:
        for d in diagnostics:
            self.add(d)

    @property
    def diagnostics(self) -> Tuple[Diagnostic, ...]:
        return tuple(self._diagnostics)

    def by_stage(self, stage: Stage) -> List[Diagnostic]:
        return [d for d in self._diagnostics if d.stage == stage]

    def __len__(self):
        return len(self._diagnostics)
