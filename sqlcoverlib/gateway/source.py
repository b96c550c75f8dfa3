import abc
import logging
from dataclasses import dataclass
from typing import List, Optional

from sqlcoverlib.diagnostics import DiagnosticsCollector
from sqlcoverlib.errors import SourceFetchError
from sqlcoverlib.models import Diagnostic, ObjectKind, Severity, SourceObject, Stage
from sqlcoverlib.source.filters import ExcludeFilter

log = logging.getLogger(__name__)

LIST_MODULES_SQL = '''SELECT o.object_id, QUOTENAME(s.name) + '.' + QUOTENAME(o.name) AS name, o.type
FROM sys.sql_modules m
JOIN sys.objects o ON o.object_id = m.object_id
JOIN sys.schemas s ON s.schema_id = o.schema_id
WHERE o.is_ms_shipped = 0
  AND m.definition IS NOT NULL
  AND o.type IN ('P', 'FN', 'IF', 'TF', 'TR')
ORDER BY name'''


@dataclass(frozen=True)
class ModuleInfo:
    object_id: int
    name: str
    kind: ObjectKind


class SourceGateway(abc.ABC):
    @abc.abstractmethod
    def list_modules(self) -> List[ModuleInfo]:
        raise NotImplementedError

    @abc.abstractmethod
    def fetch_source(self, module: ModuleInfo) -> str:
        raise NotImplementedError

    def get_objects(self, exclude_filter=None, diagnostics: Optional[DiagnosticsCollector] = None) -> List[SourceObject]:
        """
        Fetches the source of every module that is not excluded. A module whose source cannot be
        fetched is skipped with a diagnostic, failing to list the modules raises SourceFetchError.
        """
        exclude_filter = ExcludeFilter.coerce(exclude_filter)
        diagnostics = diagnostics if diagnostics is not None else DiagnosticsCollector()
        try:
            modules = self.list_modules()
        except SourceFetchError:
            raise
        except Exception as e:
            raise SourceFetchError(f"Could not list database modules: {e}") from e

        objects = []
        for module in modules:
            if exclude_filter.matches(module.name):
                log.debug("Not fetching excluded object %s", module.name)
                continue
            try:
                raw_text = self.fetch_source(module)
                if raw_text is None:
                    raise SourceFetchError(f"No source available for {module.name}")
            except Exception as e:
                error = e if isinstance(e, SourceFetchError) else SourceFetchError(f"Could not fetch source of {module.name}: {e}")
                diagnostics.add(Diagnostic.from_exception(Stage.SOURCE, error, severity=Severity.ERROR, object_name=module.name))
                continue
            objects.append(SourceObject(object_id=module.object_id, name=module.name, kind=module.kind, raw_text=raw_text))
        return objects


class DatabaseSourceGateway(SourceGateway):
    def __init__(self, gateway):
        self.gateway = gateway

    def list_modules(self) -> List[ModuleInfo]:
        modules = []
        for object_id, name, type_code in self.gateway.query(LIST_MODULES_SQL):
            kind = ObjectKind.from_type_code(type_code)
            if kind is None:
                continue
            modules.append(ModuleInfo(object_id=int(object_id), name=name, kind=kind))
        return modules

    def fetch_source(self, module: ModuleInfo) -> str:
        return self.gateway.fetch_object_source(module.name)
