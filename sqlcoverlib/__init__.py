import logging

LOG_FORMAT = (
    "%(asctime)s [%(levelname)-8s] "
    "%(name)s:%(lineno)d | %(message)s"
)

log = logging.getLogger("sqlcoverlib")

from .errors import SqlCoverError, SessionError, WorkloadError, SourceFetchError, SegmentationError, CorrelationWarning
from .models import ObjectKind, SourceObject, StatementSpan, TraceEvent, CoverageStats, ObjectCoverage, CoverageResult
from .config import CoverageConfig
from .coverage import CodeCoverage
