import logging
import math
import uuid
from typing import List, Optional

from sqlcoverlib.errors import SessionError
from sqlcoverlib.trace.base import RawEvent, TraceSource
from sqlcoverlib.trace.parser import split_ring_buffer
from sqlcoverlib.utils import quote_identifier, quote_literal

log = logging.getLogger(__name__)

AZURE_SQL_DATABASE_EDITION = 5

SERVER_SCOPE = "SERVER"
DATABASE_SCOPE = "DATABASE"

CREATE_SESSION_TEMPLATE = '''CREATE EVENT SESSION {session} ON {scope}
ADD EVENT sqlserver.sp_statement_starting(
    WHERE ([source_database_id] = ({database_id})))
ADD TARGET package0.ring_buffer(SET max_memory = 500000)
WITH (EVENT_RETENTION_MODE = ALLOW_MULTIPLE_EVENT_LOSS, MAX_DISPATCH_LATENCY = {latency} SECONDS, STARTUP_STATE = OFF)'''

SESSION_CATALOG = {
    SERVER_SCOPE: "sys.server_event_sessions",
    DATABASE_SCOPE: "sys.database_event_sessions",
}
RUNNING_SESSIONS = {
    SERVER_SCOPE: "sys.dm_xe_sessions",
    DATABASE_SCOPE: "sys.dm_xe_database_sessions",
}
SESSION_TARGETS = {
    SERVER_SCOPE: "sys.dm_xe_session_targets",
    DATABASE_SCOPE: "sys.dm_xe_database_session_targets",
}


def new_session_name() -> str:
    return f"sqlcoverlib-trace-{uuid.uuid4().hex}"


class ExtendedEventsTraceSource(TraceSource):
    '''
    Captures sp_statement_starting events of one database into a ring buffer.

    SQL Server sessions are server scoped, Azure SQL Database only offers database scoped ones.
    '''
    def __init__(self, gateway, database_name: str, scope: str = SERVER_SCOPE,
                 dispatch_latency_seconds: float = 1.0, session_name: Optional[str] = None):
        if scope not in SESSION_CATALOG:
            raise ValueError(f"Unknown event session scope {scope}")
        self.gateway = gateway
        self.database_name = database_name
        self.scope = scope
        self.dispatch_latency_seconds = dispatch_latency_seconds
        self.name = session_name or new_session_name()

    @property
    def quoted_name(self) -> str:
        return quote_identifier(self.name)

    def _database_id(self) -> int:
        database_id = self.gateway.query_scalar("SELECT DB_ID(:name)", {"name": self.database_name})
        if database_id is None:
            raise SessionError(f"Database {self.database_name} does not exist")
        return int(database_id)

    def create_command(self, database_id: int) -> str:
        # The server only accepts whole seconds, never go below the configured wait.
        latency = max(1, math.ceil(self.dispatch_latency_seconds))
        return CREATE_SESSION_TEMPLATE.format(
            session=self.quoted_name, scope=self.scope, database_id=database_id, latency=latency,
        )

    def start(self) -> None:
        database_id = self._database_id()
        log.debug("Creating event session %s on %s for database id %d", self.name, self.scope, database_id)
        self.gateway.execute(self.create_command(database_id))
        self.gateway.execute(f"ALTER EVENT SESSION {self.quoted_name} ON {self.scope} STATE = START")

    def read_raw(self) -> List[RawEvent]:
        rows = self.gateway.query(
            f"SELECT CAST(t.target_data AS nvarchar(max)) "
            f"FROM {SESSION_TARGETS[self.scope]} t "
            f"JOIN {RUNNING_SESSIONS[self.scope]} s ON s.address = t.event_session_address "
            f"WHERE s.name = :name AND t.target_name = 'ring_buffer'",
            {"name": self.name},
        )
        events = []
        for row in rows:
            events.extend(split_ring_buffer(row[0]))
        log.debug("Read %d raw events from %s", len(events), self.name)
        return events

    def stop(self) -> None:
        self.gateway.execute(
            f"IF EXISTS (SELECT 1 FROM {RUNNING_SESSIONS[self.scope]} WHERE name = {quote_literal(self.name)}) "
            f"ALTER EVENT SESSION {self.quoted_name} ON {self.scope} STATE = STOP"
        )

    def drop(self) -> None:
        self.gateway.execute(
            f"IF EXISTS (SELECT 1 FROM {SESSION_CATALOG[self.scope]} WHERE name = {quote_literal(self.name)}) "
            f"DROP EVENT SESSION {self.quoted_name} ON {self.scope}"
        )


def detect_scope(gateway) -> str:
    edition = gateway.query_scalar("SELECT CAST(SERVERPROPERTY('EngineEdition') AS int)")
    if edition is not None and int(edition) == AZURE_SQL_DATABASE_EDITION:
        return DATABASE_SCOPE
    return SERVER_SCOPE


def build_trace_source(gateway, database_name: str, dispatch_latency_seconds: float = 1.0) -> ExtendedEventsTraceSource:
    scope = detect_scope(gateway)
    log.debug("Using %s scoped event session for %s", scope.lower(), database_name)
    return ExtendedEventsTraceSource(gateway, database_name, scope=scope, dispatch_latency_seconds=dispatch_latency_seconds)
