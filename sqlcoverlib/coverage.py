import logging
from typing import Callable, List, Optional

from sqlcoverlib.aggregation import CoverageAggregator
from sqlcoverlib.config import DEFAULT_DISPATCH_LATENCY_SECONDS, CoverageConfig
from sqlcoverlib.correlation import EventCorrelator
from sqlcoverlib.diagnostics import DiagnosticSink, DiagnosticsCollector, LoggingDiagnosticSink, NullDiagnosticSink
from sqlcoverlib.errors import SessionError, SourceFetchError, WorkloadError
from sqlcoverlib.gateway import DatabaseGateway, DatabaseSourceGateway, ProcessRunner, SourceGateway, SqlAlchemyDatabaseGateway, SubprocessRunner
from sqlcoverlib.models import CoverageResult, Diagnostic, Severity, SourceObject, Stage, TraceEvent
from sqlcoverlib.source import ExcludeFilter, SourceSegmenter
from sqlcoverlib.trace import FixedDelayWaitPolicy, TraceSessionManager, TraceSource, WaitPolicy, build_trace_source
from sqlcoverlib.utils import log_elapsed

log = logging.getLogger(__name__)


class CodeCoverage:
    '''
    Measures which statements of the procedures, functions and triggers of one database run
    while a workload executes.

    Every run owns its own trace session: start() opens it and stop() (or cover() /
    cover_workload(), which do the whole cycle) tears it down and builds the result. Nothing
    raised inside a run escapes stop(), cover() or cover_workload(); failures are reported as
    diagnostics on the returned CoverageResult.
    '''
    def __init__(
        self,
        connection: Optional[str],
        database_name: str,
        exclude_filter: Optional[List[str]] = None,
        enable_logging: bool = False,
        *,
        gateway: Optional[DatabaseGateway] = None,
        source_gateway: Optional[SourceGateway] = None,
        trace_source_factory: Optional[Callable[[], TraceSource]] = None,
        process_runner: Optional[ProcessRunner] = None,
        wait_policy: Optional[WaitPolicy] = None,
        diagnostics_sink: Optional[DiagnosticSink] = None,
        dispatch_latency_seconds: float = DEFAULT_DISPATCH_LATENCY_SECONDS,
        max_workers: int = 1,
    ):
        self.database_name = database_name
        self.exclude_filter = ExcludeFilter(exclude_filter or [])
        self.enable_logging = enable_logging
        self.max_workers = max_workers

        if gateway is None:
            if connection is None:
                raise ValueError("Either a connection or a gateway is required")
            gateway = SqlAlchemyDatabaseGateway(connection, database_name)
        self.gateway = gateway
        self.source_gateway = source_gateway or DatabaseSourceGateway(gateway)
        self.trace_source_factory = trace_source_factory or (
            lambda: build_trace_source(self.gateway, self.database_name, dispatch_latency_seconds)
        )
        self.process_runner = process_runner or SubprocessRunner()
        self.wait_policy = wait_policy or FixedDelayWaitPolicy(dispatch_latency_seconds)
        if diagnostics_sink is None:
            diagnostics_sink = LoggingDiagnosticSink(log) if enable_logging else NullDiagnosticSink()
        self.diagnostics_sink = diagnostics_sink

        self.segmenter = SourceSegmenter(self.exclude_filter)
        self.aggregator = CoverageAggregator()

        self._session: Optional[TraceSessionManager] = None
        self._diagnostics = DiagnosticsCollector(self.diagnostics_sink)
        self._result: Optional[CoverageResult] = None

    @classmethod
    def from_config(cls, config: CoverageConfig, **kwargs) -> "CodeCoverage":
        return cls(
            config.connection,
            config.database,
            config.exclude_filter,
            config.logging,
            dispatch_latency_seconds=config.dispatch_latency_seconds,
            max_workers=config.max_workers,
            **kwargs,
        )

    def _debug(self, message, *args):
        if self.enable_logging:
            log.info(message, *args)

    @property
    def is_running(self) -> bool:
        return self._session is not None

    def start(self) -> None:
        """Starts a trace session. Raises SessionError if one is already active or it cannot be created."""
        if self._session is not None:
            raise SessionError("A trace session is already active for this coverage run, stop() it first")
        self._diagnostics = DiagnosticsCollector(self.diagnostics_sink)
        try:
            source = self.trace_source_factory()
        except SessionError:
            raise
        except Exception as e:
            raise SessionError(f"Could not create trace session: {e}") from e
        session = TraceSessionManager(source, self.wait_policy, self._diagnostics)
        session.start()
        self._session = session

    def stop(self) -> CoverageResult:
        """Waits for the trace to flush, tears the session down and returns the coverage of this run."""
        session = self._session
        if session is None:
            return self._misuse("stop() called without an active trace session")
        self._session = None

        events: List[TraceEvent] = []
        try:
            self._debug("Waiting %s for trace events to be dispatched", self.wait_policy)
            session.wait_for_dispatch()
            events = session.read_events()
        except Exception as e:
            log.warning("Could not read trace events: %s", e)
            self._diagnostics.add(Diagnostic.from_exception(Stage.SESSION, e))
        finally:
            session.close()

        try:
            self._result = self._build_result(events)
        except Exception as e:
            log.exception("Could not build the coverage result")
            self._diagnostics.add(Diagnostic.from_exception(Stage.AGGREGATION, e))
            self._result = CoverageResult(database_name=self.database_name, diagnostics=self._diagnostics.diagnostics)
        return self._result

    def cover(self, command: str) -> CoverageResult:
        """Runs `command` on the database and returns the statements it executed."""
        return self._run(lambda: self.gateway.execute(command), f"command {command!r}")

    def cover_workload(self, executable_path, arguments=None, working_directory=None) -> CoverageResult:
        """Runs an external process as the workload and returns the statements it executed."""
        return self._run(
            lambda: self.process_runner.run(executable_path, arguments, working_directory),
            f"process {executable_path} {arguments or ''}".strip(),
        )

    def results(self) -> CoverageResult:
        if self._result is None:
            return CoverageResult.empty(self.database_name)
        return self._result

    def _run(self, workload: Callable[[], object], description: str) -> CoverageResult:
        if self._session is not None:
            return self._misuse(f"Cannot run {description} while a trace session is active")

        self._debug("Starting code coverage")
        try:
            self.start()
        except Exception as e:
            log.error("Could not start code coverage: %s", e)
            self._diagnostics.add(Diagnostic.from_exception(Stage.SESSION, e))
            self._result = CoverageResult(database_name=self.database_name, diagnostics=self._diagnostics.diagnostics)
            return self._result
        self._debug("Starting code coverage...done")

        self._debug("Executing %s", description)
        try:
            workload()
        except Exception as e:
            error = e if isinstance(e, WorkloadError) else WorkloadError(f"{description} failed: {e}")
            log.warning("%s", error)
            self._diagnostics.add(Diagnostic.from_exception(Stage.WORKLOAD, error))
        self._debug("Executing %s...done", description)

        return self.stop()

    def _misuse(self, message: str) -> CoverageResult:
        log.error(message)
        diagnostics = DiagnosticsCollector(self.diagnostics_sink)
        diagnostics.add(Diagnostic.from_exception(Stage.SESSION, SessionError(message)))
        return CoverageResult(database_name=self.database_name, diagnostics=diagnostics.diagnostics)

    def _fetch_sources(self) -> List[SourceObject]:
        try:
            return self.source_gateway.get_objects(self.exclude_filter, self._diagnostics)
        except SourceFetchError as e:
            log.warning("%s", e)
            self._diagnostics.add(Diagnostic.from_exception(Stage.SOURCE, e))
            return []

    def _build_result(self, events: List[TraceEvent]) -> CoverageResult:
        with log_elapsed(log, "Fetching module sources"):
            sources = self._fetch_sources()

        with log_elapsed(log, f"Segmenting {len(sources)} modules"):
            segmented = self.segmenter.segment_all(sources, max_workers=self.max_workers)
        for outcome in segmented:
            self._diagnostics.extend(outcome.diagnostics)

        correlation = EventCorrelator(segmented).correlate(events)
        self._diagnostics.extend(correlation.diagnostics)
        if correlation.unmapped:
            self._diagnostics.record(
                Stage.CORRELATION, f"{correlation.unmapped} of {len(events)} events could not be mapped to a statement",
                severity=Severity.INFO,
            )
        self._debug("Correlated %d events (%d matched, %d discarded)", len(events), correlation.matched, correlation.discarded)

        return self.aggregator.aggregate(self.database_name, segmented, correlation.hits, self._diagnostics.diagnostics)
