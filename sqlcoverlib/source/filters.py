import fnmatch
import logging
from typing import Iterable, List, Set

log = logging.getLogger(__name__)

WILDCARDS = set("*?")


def _normalize(name: str) -> str:
    return name.replace("[", "").replace("]", "").strip().lower()


def _name_candidates(name: str) -> Set[str]:
    # "[dbo].[Proc]" is matched as "dbo.proc" and as "proc"
    full = _normalize(name)
    return {full, full.rsplit(".", 1)[-1]}


class ExcludeFilter:
    """
    Case-insensitive object name filter.

    Patterns containing `*` or `?` are globs matched against the whole name, with and without
    the schema. Other patterns match as substrings. Square brackets are stripped from patterns and
    names alike, so they quote identifiers and cannot form fnmatch character classes: `Proc[12]*`
    is the glob `proc12*`.
    """
    def __init__(self, patterns: Iterable[str] = ()):
        self.patterns: List[str] = [p for p in (patterns or []) if p and p.strip()]
        self._normalized = [_normalize(p) for p in self.patterns]

    def matches(self, name: str) -> bool:
        candidates = _name_candidates(name)
        for pattern in self._normalized:
            if WILDCARDS & set(pattern):
                if any(fnmatch.fnmatchcase(c, pattern) for c in candidates):
                    return True
            elif any(pattern in c for c in candidates):
                return True
        return False

    def __bool__(self):
        return bool(self.patterns)

    def __repr__(self):
        return f"ExcludeFilter({self.patterns!r})"

    @classmethod
    def coerce(cls, value) -> "ExcludeFilter":
        if isinstance(value, ExcludeFilter):
            return value
        return cls(value or ())
