"""In-memory stand-ins for the database server, used by the tests."""
from typing import Dict, Iterable, List, Optional, Tuple

from sqlcoverlib.diagnostics import DiagnosticSink
from sqlcoverlib.gateway import DatabaseGateway, ModuleInfo, ProcessRunner, SourceGateway
from sqlcoverlib.models import ObjectKind, SourceObject
from sqlcoverlib.trace import TraceSource, WaitPolicy

PROC1_NAME = "[dbo].[Proc1]"
INTERNAL_HELPER_NAME = "[dbo].[InternalHelper]"
BROKEN_NAME = "[dbo].[Broken]"

PROC1 = (
    "CREATE PROCEDURE [dbo].[Proc1]\n"
    "    @id int\n"
    "AS\n"
    "SET NOCOUNT ON;\n"
    "SELECT @id AS requested;\n"
    "UPDATE dbo.Items SET seen = 1 WHERE id = @id;\n"
)

INTERNAL_HELPER = (
    "CREATE PROCEDURE [dbo].[InternalHelper] AS\n"
    "SELECT 1;\n"
    "SELECT 2;\n"
)

BROKEN = (
    "CREATE PROCEDURE [dbo].[Broken] AS\n"
    "BEGIN\n"
    "    SELECT 'never closed\n"
)


def event_xml(object_id: int, offset: int, offset_end: Optional[int] = -1, timestamp: str = "2024-05-01T10:00:00.123Z") -> str:
    end = "" if offset_end is None else f'<data name="offset_end"><type name="int32" package="package0"/><value>{offset_end}</value></data>'
    return (
        f'<event name="sp_statement_starting" package="sqlserver" timestamp="{timestamp}">'
        f'<data name="source_database_id"><value>5</value></data>'
        f'<data name="object_id"><type name="int32" package="package0"/><value>{object_id}</value></data>'
        f'<data name="offset"><type name="int32" package="package0"/><value>{offset}</value></data>'
        f'{end}'
        f'</event>'
    )


def ring_buffer_xml(events: Iterable[str]) -> str:
    events = list(events)
    return f'<RingBufferTarget truncated="0" eventCount="{len(events)}">' + "".join(events) + '</RingBufferTarget>'


class FakeServer:
    '''
    Holds the modules of one database and buffers execution events the way the server does:
    emitted events only become readable once they are dispatched.
    '''
    def __init__(self, modules: Iterable[Tuple[int, str, ObjectKind, str]] = ()):
        self.modules: Dict[str, SourceObject] = {}
        for object_id, name, kind, text in modules:
            self.add_module(object_id, name, text, kind)
        self.pending: List[str] = []
        self.dispatched: List[str] = []
        self.session_active = False

    def add_module(self, object_id: int, name: str, text: str, kind: ObjectKind = ObjectKind.PROCEDURE):
        self.modules[name] = SourceObject(object_id=object_id, name=name, kind=kind, raw_text=text)

    def execute_statement(self, name: str, statement: str):
        module = self.modules[name]
        start = module.raw_text.index(statement)
        if self.session_active:
            self.pending.append(event_xml(module.object_id, start * 2, (start + len(statement)) * 2))

    def emit_raw(self, raw: str):
        if self.session_active:
            self.pending.append(raw)

    def dispatch(self):
        self.dispatched.extend(self.pending)
        self.pending = []


class FakeTraceSource(TraceSource):
    def __init__(self, server: FakeServer, fail_on: Iterable[str] = ()):
        self.server = server
        self.name = "fake-trace"
        self.fail_on = set(fail_on)
        self.calls: List[str] = []

    def _call(self, what):
        self.calls.append(what)
        if what in self.fail_on:
            raise RuntimeError(f"{what} failed on the server")

    def start(self):
        self._call("start")
        self.server.session_active = True
        self.server.pending = []
        self.server.dispatched = []

    def read_raw(self):
        self._call("read")
        return list(self.server.dispatched)

    def stop(self):
        self._call("stop")
        self.server.session_active = False

    def drop(self):
        self._call("drop")


class DispatchingWaitPolicy(WaitPolicy):
    """Waiting out the latency bound flushes everything the server has buffered."""
    def __init__(self, server: FakeServer):
        self.server = server
        self.waits = 0

    def wait(self):
        self.waits += 1
        self.server.dispatch()


class ScriptedGateway(DatabaseGateway):
    '''
    Executes commands by looking them up in `scripts`: each command maps to the
    (object name, statement text) pairs it runs. Unknown commands fail like a syntax error.
    '''
    def __init__(self, server: FakeServer, scripts: Optional[Dict[str, List[Tuple[str, str]]]] = None):
        self.server = server
        self.scripts = scripts or {}
        self.executed: List[str] = []

    def execute(self, command: str) -> None:
        self.executed.append(command)
        if command not in self.scripts:
            raise RuntimeError(f"Incorrect syntax near '{command}'")
        for name, statement in self.scripts[command]:
            self.server.execute_statement(name, statement)

    def query(self, sql, params=None):
        raise AssertionError(f"unexpected query {sql}")

    def fetch_object_source(self, name: str) -> Optional[str]:
        module = self.server.modules.get(name)
        return module.raw_text if module else None


class FakeSourceGateway(SourceGateway):
    def __init__(self, server: FakeServer, failing: Iterable[str] = ()):
        self.server = server
        self.failing = set(failing)
        self.fetched: List[str] = []

    def list_modules(self) -> List[ModuleInfo]:
        return [ModuleInfo(object_id=m.object_id, name=m.name, kind=m.kind) for m in self.server.modules.values()]

    def fetch_source(self, module: ModuleInfo) -> str:
        self.fetched.append(module.name)
        if module.name in self.failing:
            raise RuntimeError("permission denied")
        return self.server.modules[module.name].raw_text


class CommandRunningProcessRunner(ProcessRunner):
    """An external workload that connects on its own and runs every command passed as an argument."""
    def __init__(self, gateway: ScriptedGateway):
        self.gateway = gateway
        self.runs = []

    def run(self, executable_path, arguments=None, working_directory=None) -> int:
        self.runs.append((executable_path, arguments, working_directory))
        commands = [arguments] if isinstance(arguments, str) else arguments or []
        for command in commands:
            self.gateway.execute(command)
        return 0


class RecordingGateway(DatabaseGateway):
    """Records commands and answers queries from canned results keyed by a SQL fragment."""
    def __init__(self, answers: Optional[Dict[str, List[tuple]]] = None):
        self.answers = answers or {}
        self.executed: List[str] = []
        self.queries: List[Tuple[str, dict]] = []

    def execute(self, command: str) -> None:
        self.executed.append(command)

    def query(self, sql, params=None):
        self.queries.append((sql, params or {}))
        for fragment, rows in self.answers.items():
            if fragment in sql:
                return rows
        return []


class RecordingSink(DiagnosticSink):
    def __init__(self):
        self.recorded = []

    def record(self, diagnostic):
        self.recorded.append(diagnostic)


SCRIPTS = {
    "EXEC dbo.Proc1 @id = 1": [(PROC1_NAME, "SELECT @id AS requested;")],
    "EXEC dbo.Proc1 @id = 1; EXEC dbo.Proc1 @id = 1": [
        (PROC1_NAME, "SELECT @id AS requested;"),
        (PROC1_NAME, "SELECT @id AS requested;"),
    ],
    "EXEC dbo.InternalHelper": [
        (INTERNAL_HELPER_NAME, "SELECT 1;"),
        (INTERNAL_HELPER_NAME, "SELECT 2;"),
    ],
}
