import logging
from bisect import bisect_right
from dataclasses import dataclass, field
from typing import Dict, FrozenSet, Iterable, List, Optional, Set

from sqlcoverlib.errors import CorrelationWarning
from sqlcoverlib.models import Diagnostic, Severity, SourceObject, Stage, StatementSpan, TraceEvent
from sqlcoverlib.source.segmenter import SegmentationOutcome

log = logging.getLogger(__name__)


@dataclass
class _SegmentedObject:
    source: SourceObject
    spans: List[StatementSpan]
    starts: List[int]


@dataclass
class CorrelationOutcome:
    hits: Dict[str, FrozenSet[int]] = field(default_factory=dict)
    matched: int = 0
    discarded: int = 0
    unmapped: int = 0
    diagnostics: List[Diagnostic] = field(default_factory=list)


class EventCorrelator:
    '''
    Maps trace events onto the statement spans of the segmented objects.

    Hits are kept as a set of span ordinals per object, so a statement executed many times
    counts once and is never unmarked. Events for objects that were not segmented (system
    objects, excluded objects, dynamic SQL) are discarded without a diagnostic.
    '''
    def __init__(self, segmented: Iterable[SegmentationOutcome]):
        self._objects: Dict[int, _SegmentedObject] = {}
        self._hits: Dict[str, Set[int]] = {}
        for outcome in segmented:
            if outcome.excluded or outcome.failed:
                continue
            spans = sorted(outcome.spans, key=lambda s: s.start_offset)
            self._objects[outcome.source.object_id] = _SegmentedObject(
                source=outcome.source, spans=spans, starts=[s.start_offset for s in spans],
            )
            self._hits[outcome.source.name] = set()

    def locate(self, event: TraceEvent) -> Optional[StatementSpan]:
        """
        Returns the span containing the event's start offset or, for events that only mark a
        statement start, the span starting at or most closely before it.
        """
        segmented = self._objects.get(event.object_id)
        if segmented is None:
            return None
        offset = segmented.source.char_offset(event.statement_start_offset)
        if offset is None:
            return None
        idx = bisect_right(segmented.starts, offset) - 1
        if idx < 0:
            return None
        span = segmented.spans[idx]
        if span.contains(offset) or event.marks_start_only:
            return span
        return None

    def knows(self, object_id: int) -> bool:
        return object_id in self._objects

    def correlate(self, events: Iterable[TraceEvent]) -> CorrelationOutcome:
        outcome = CorrelationOutcome()
        for event in events:
            segmented = self._objects.get(event.object_id)
            if segmented is None:
                outcome.discarded += 1
                continue
            span = self.locate(event)
            if span is None:
                outcome.unmapped += 1
                warning = CorrelationWarning(
                    f"No statement at offset {event.statement_start_offset} "
                    f"(end {event.statement_end_offset})"
                )
                outcome.diagnostics.append(Diagnostic.from_exception(
                    Stage.CORRELATION, warning, severity=Severity.WARNING, object_name=segmented.source.name,
                ))
                continue
            self._hits[segmented.source.name].add(span.ordinal)
            outcome.matched += 1

        log.debug("Correlated events: %d matched, %d discarded, %d unmapped", outcome.matched, outcome.discarded, outcome.unmapped)
        outcome.hits = self.hits
        return outcome

    @property
    def hits(self) -> Dict[str, FrozenSet[int]]:
        return {name: frozenset(ordinals) for name, ordinals in self._hits.items()}
