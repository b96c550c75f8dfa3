from enum import Enum
from typing import Optional

from pydantic import Field

from sqlcoverlib.models.base import FrozenModel


class Stage(str, Enum):
    SESSION = "session"
    WORKLOAD = "workload"
    SOURCE = "source"
    SEGMENTATION = "segmentation"
    CORRELATION = "correlation"
    AGGREGATION = "aggregation"


class Severity(str, Enum):
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


class Diagnostic(FrozenModel):
    stage: Stage = Field(description="The pipeline stage that produced this diagnostic")
    severity: Severity = Field(default=Severity.WARNING)
    message: str = Field(description="Human readable description of what happened")
    object_name: Optional[str] = Field(default=None, description="The database object this refers to, if any")
    category: Optional[str] = Field(default=None, description="Name of the error or warning class, e.g. SessionError")

    @classmethod
    def from_exception(cls, stage: Stage, exc: BaseException, severity: Severity = Severity.ERROR, object_name: Optional[str] = None) -> "Diagnostic":
        return cls(stage=stage, severity=severity, message=str(exc) or repr(exc), object_name=object_name, category=type(exc).__name__)

    def __str__(self):
        where = f" [{self.object_name}]" if self.object_name else ""
        category = f" {self.category}:" if self.category else ""
        return f"{self.stage.value}/{self.severity.value}{where}:{category} {self.message}"
