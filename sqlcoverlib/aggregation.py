import logging
from typing import Iterable, Mapping, Sequence, Set

from sqlcoverlib.models import CoverageResult, CoverageStats, Diagnostic, ObjectCoverage
from sqlcoverlib.source.segmenter import SegmentationOutcome

log = logging.getLogger(__name__)


class CoverageAggregator:
    def build_object(self, outcome: SegmentationOutcome, hit_ordinals: Set[int]) -> ObjectCoverage:
        spans = tuple(
            span.model_copy(update={"executed": True}) if span.ordinal in hit_ordinals else span
            for span in outcome.spans
        )
        hit_count = sum(1 for span in spans if span.executed)
        return ObjectCoverage(
            object_id=outcome.source.object_id,
            name=outcome.source.name,
            kind=outcome.source.kind,
            spans=spans,
            stats=CoverageStats.from_counts(hit_count, len(spans)),
        )

    def aggregate(self, database_name: str, segmented: Iterable[SegmentationOutcome],
                  hits: Mapping[str, Iterable[int]], diagnostics: Sequence[Diagnostic] = ()) -> CoverageResult:
        """
        Builds the immutable result of a run. Excluded objects are left out entirely, objects
        without statements are listed as 0/0 and do not count towards the overall percentage.
        """
        objects = []
        for outcome in segmented:
            if outcome.excluded:
                continue
            objects.append(self.build_object(outcome, set(hits.get(outcome.source.name, ()))))
        objects.sort(key=lambda o: o.name)

        counted = [o for o in objects if o.stats.total > 0]
        overall = CoverageStats.from_counts(
            sum(o.stats.hit_count for o in counted),
            sum(o.stats.total for o in counted),
        )
        log.debug("Coverage of %s: %s over %d objects", database_name, overall, len(objects))
        return CoverageResult(
            database_name=database_name,
            objects=tuple(objects),
            overall=overall,
            diagnostics=tuple(diagnostics),
        )
