import abc
import logging
from contextlib import contextmanager
from typing import Any, Dict, List, Optional
from urllib.parse import quote_plus

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine

from sqlcoverlib.utils import quote_identifier

log = logging.getLogger(__name__)


def to_sqlalchemy_url(connection: str) -> str:
    """
    Accepts either a SQLAlchemy URL or a raw ODBC connection string
    ("Driver={ODBC Driver 18 for SQL Server};Server=...;") and returns a SQLAlchemy URL.
    """
    if "://" in connection:
        return connection
    return "mssql+pyodbc:///?odbc_connect=" + quote_plus(connection)


class DatabaseGateway(abc.ABC):
    @abc.abstractmethod
    def execute(self, command: str) -> None:
        raise NotImplementedError

    @abc.abstractmethod
    def query(self, sql: str, params: Optional[Dict[str, Any]] = None) -> List[tuple]:
        raise NotImplementedError

    def query_scalar(self, sql: str, params: Optional[Dict[str, Any]] = None) -> Any:
        rows = self.query(sql, params)
        if not rows:
            return None
        return rows[0][0]

    def fetch_object_source(self, name: str) -> Optional[str]:
        return self.query_scalar("SELECT OBJECT_DEFINITION(OBJECT_ID(:name))", {"name": name})


class SqlAlchemyDatabaseGateway(DatabaseGateway):
    '''
    Runs commands on the target database through a SQLAlchemy engine in autocommit mode,
    event session DDL cannot run inside a user transaction.
    '''
    def __init__(self, connection: str, database_name: str, engine: Optional[Engine] = None):
        self.database_name = database_name
        self.engine = engine or create_engine(to_sqlalchemy_url(connection), isolation_level="AUTOCOMMIT")

    @contextmanager
    def _connect(self):
        with self.engine.connect() as conn:
            if conn.dialect.name == "mssql":
                conn.exec_driver_sql(f"USE {quote_identifier(self.database_name)}")
            yield conn

    def execute(self, command: str) -> None:
        """
        Runs a batch and steps through every result set it produces before committing. A batch
        that calls several procedures is only run up to the first result set otherwise, and
        errors raised after it are lost.
        """
        log.debug("Executing %r", command)
        with self._connect() as conn:
            cursor = conn.connection.cursor()
            try:
                cursor.execute(command)
                # sqlite3 cursors have no nextset
                nextset = getattr(cursor, "nextset", None)
                while nextset is not None and nextset():
                    pass
            finally:
                cursor.close()
            conn.commit()

    def query(self, sql: str, params: Optional[Dict[str, Any]] = None) -> List[tuple]:
        with self._connect() as conn:
            return [tuple(row) for row in conn.execute(text(sql), params or {})]

    def close(self):
        self.engine.dispose()
