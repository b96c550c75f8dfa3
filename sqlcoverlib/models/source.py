from bisect import bisect_right
from enum import Enum
from functools import cached_property
from typing import List, Optional

from pydantic import Field

from sqlcoverlib.models.base import FrozenModel


class ObjectKind(str, Enum):
    PROCEDURE = "procedure"
    FUNCTION = "function"
    TRIGGER = "trigger"

    @classmethod
    def from_type_code(cls, type_code: str) -> Optional["ObjectKind"]:
        """Maps a sys.objects type code onto a kind, None for kinds we do not cover."""
        return OBJECT_TYPE_CODES.get(type_code.strip().upper())


OBJECT_TYPE_CODES = {
    "P": ObjectKind.PROCEDURE,
    "PC": ObjectKind.PROCEDURE,
    "FN": ObjectKind.FUNCTION,
    "IF": ObjectKind.FUNCTION,
    "TF": ObjectKind.FUNCTION,
    "FS": ObjectKind.FUNCTION,
    "FT": ObjectKind.FUNCTION,
    "TR": ObjectKind.TRIGGER,
    "TA": ObjectKind.TRIGGER,
}


def compute_line_starts(text: str) -> List[int]:
    starts = [0]
    for i, c in enumerate(text):
        if c == "\n":
            starts.append(i + 1)
    return starts


def line_number_at(line_starts: List[int], offset: int) -> int:
    """1-based line number of the character at `offset`."""
    return bisect_right(line_starts, offset)


class SourceObject(FrozenModel):
    object_id: int = Field(description="sys.objects.object_id, matches the object_id reported by the trace")
    name: str = Field(description="Two part name, e.g. [dbo].[MyProc]")
    kind: ObjectKind
    raw_text: str = Field(description="The module definition exactly as stored by the server")

    @cached_property
    def line_starts(self) -> List[int]:
        return compute_line_starts(self.raw_text)

    @cached_property
    def utf16_prefix(self) -> Optional[List[int]]:
        # None when every character is a single UTF-16 code unit.
        if all(ord(c) < 0x10000 for c in self.raw_text):
            return None
        prefix = [0]
        for c in self.raw_text:
            prefix.append(prefix[-1] + (2 if ord(c) >= 0x10000 else 1))
        return prefix

    def line_at(self, offset: int) -> int:
        return line_number_at(self.line_starts, offset)

    def char_offset(self, byte_offset: int) -> Optional[int]:
        """
        Converts a UTF-16 byte offset as reported by the server into an index into raw_text.
        Returns None for negative offsets or offsets past the end of the text.
        """
        if byte_offset < 0:
            return None
        units = byte_offset // 2
        prefix = self.utf16_prefix
        if prefix is None:
            return units if units <= len(self.raw_text) else None
        if units > prefix[-1]:
            return None
        return bisect_right(prefix, units) - 1
