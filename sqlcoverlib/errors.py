class SqlCoverError(Exception):
    pass

class SessionError(SqlCoverError):
    """The trace session could not be created, started or was misused."""
    pass

class WorkloadError(SqlCoverError):
    """The measured command or process failed."""
    pass

class SourceFetchError(SqlCoverError):
    pass

class SegmentationError(SqlCoverError):
    def __init__(self, message, offset=None):
        super().__init__(message)
        self.offset = offset

class CorrelationWarning(UserWarning):
    """An execution event could not be mapped onto a statement span."""
    pass

class TraceEventParseError(SqlCoverError):
    pass
