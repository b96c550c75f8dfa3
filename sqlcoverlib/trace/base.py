import abc
from typing import List, TypeAlias

# One <event> element of the ring buffer target, serialized as XML.
RawEvent: TypeAlias = str


class TraceSource(abc.ABC):
    """A server side execution trace. Implementations talk to the server, TraceSessionManager owns the lifecycle."""

    name: str = "trace"

    @abc.abstractmethod
    def start(self) -> None:
        raise NotImplementedError

    @abc.abstractmethod
    def read_raw(self) -> List[RawEvent]:
        raise NotImplementedError

    @abc.abstractmethod
    def stop(self) -> None:
        raise NotImplementedError

    @abc.abstractmethod
    def drop(self) -> None:
        raise NotImplementedError
