from typing import Dict, Optional, Tuple

from pydantic import Field, model_validator

from sqlcoverlib.models.base import FrozenModel
from sqlcoverlib.models.diagnostics import Diagnostic
from sqlcoverlib.models.source import ObjectKind


class StatementSpan(FrozenModel):
    ordinal: int = Field(description="Position of the statement in its object, starting at 0")
    start_offset: int = Field(description="Index of the first character of the statement")
    end_offset: int = Field(description="Index one past the last character of the statement")
    start_line: int
    end_line: int
    kind: str = Field(default="", description="Leading keyword of the statement, e.g. SELECT or IF")
    executed: bool = Field(default=False)

    @model_validator(mode='after')
    def sanity_check_model(self) -> "StatementSpan":
        if self.end_offset <= self.start_offset:
            raise ValueError(f'Empty or inverted span [{self.start_offset}, {self.end_offset})')
        if self.end_line < self.start_line:
            raise ValueError('Span ends before it starts')
        return self

    def contains(self, offset: int) -> bool:
        return self.start_offset <= offset < self.end_offset

    def text(self, source: str) -> str:
        return source[self.start_offset:self.end_offset]


class CoverageStats(FrozenModel):
    hit_count: int = 0
    total: int = 0
    percentage: float = 0.0

    @classmethod
    def from_counts(cls, hit_count: int, total: int) -> "CoverageStats":
        percentage = (hit_count / total * 100.0) if total else 0.0
        return cls(hit_count=hit_count, total=total, percentage=percentage)

    def __str__(self):
        return f"{self.hit_count}/{self.total} ({self.percentage:.1f}%)"


class ObjectCoverage(FrozenModel):
    object_id: int
    name: str
    kind: ObjectKind
    spans: Tuple[StatementSpan, ...] = ()
    stats: CoverageStats = Field(default_factory=CoverageStats)


class CoverageResult(FrozenModel):
    database_name: str
    objects: Tuple[ObjectCoverage, ...] = ()
    overall: CoverageStats = Field(default_factory=CoverageStats)
    diagnostics: Tuple[Diagnostic, ...] = ()

    @classmethod
    def empty(cls, database_name: str) -> "CoverageResult":
        return cls(database_name=database_name)

    @property
    def per_object(self) -> Dict[str, Tuple[StatementSpan, ...]]:
        return {o.name: o.spans for o in self.objects}

    @property
    def object_stats(self) -> Dict[str, CoverageStats]:
        return {o.name: o.stats for o in self.objects}

    def get(self, name: str) -> Optional[ObjectCoverage]:
        for o in self.objects:
            if o.name == name:
                return o
        return None

    def __contains__(self, name: str) -> bool:
        return self.get(name) is not None
