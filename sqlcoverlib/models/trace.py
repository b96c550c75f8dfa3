from datetime import datetime
from typing import Optional

from pydantic import Field

from sqlcoverlib.models.base import FrozenModel


class TraceEvent(FrozenModel):
    object_id: int = Field(description="The object id of the module the statement belongs to")
    statement_start_offset: int = Field(description="UTF-16 byte offset of the statement start in the module text")
    statement_end_offset: Optional[int] = Field(default=None, description="UTF-16 byte offset of the statement end, None when the server reported -1")
    timestamp: Optional[datetime] = Field(default=None)

    @property
    def marks_start_only(self) -> bool:
        return self.statement_end_offset is None
