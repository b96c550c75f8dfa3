"""
Splits the definition of a module (procedure, function, trigger) into statement spans.

The grammar is a deliberately conservative approximation of T-SQL. It recognises the module
header, BEGIN/END, TRY/CATCH, IF/ELSE and WHILE blocks, CASE expressions and parentheses, and
otherwise ends a statement at a semicolon, at a block delimiter or at the next keyword that
starts a statement. IF and WHILE spans only cover the keyword and the condition, which is the
range SQL Server reports when it evaluates them.
"""
import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Sequence

from sqlcoverlib.errors import SegmentationError
from sqlcoverlib.models import Diagnostic, ObjectKind, Severity, SourceObject, Stage, StatementSpan
from sqlcoverlib.models.source import compute_line_starts, line_number_at
from sqlcoverlib.source.filters import ExcludeFilter
from sqlcoverlib.source.tokenizer import Token, TokenKind, significant_tokens

log = logging.getLogger(__name__)

STATEMENT_KEYWORDS = frozenset([
    "SELECT", "INSERT", "UPDATE", "DELETE", "MERGE", "WITH",
    "SET", "DECLARE", "EXEC", "EXECUTE", "PRINT", "RAISERROR", "THROW",
    "RETURN", "BREAK", "CONTINUE", "GOTO", "WAITFOR", "BEGIN", "IF", "WHILE",
    "OPEN", "CLOSE", "FETCH", "DEALLOCATE",
    "CREATE", "ALTER", "DROP", "TRUNCATE",
    "COMMIT", "ROLLBACK", "SAVE",
    "GRANT", "DENY", "REVOKE", "REVERT",
    "BULK", "DBCC", "CHECKPOINT", "KILL", "RECONFIGURE", "SHUTDOWN",
    "BACKUP", "RESTORE", "READTEXT", "WRITETEXT", "UPDATETEXT",
])
# WITH only ever opens a statement. In the middle of one it is a table hint or an option clause.
BREAKING_KEYWORDS = STATEMENT_KEYWORDS - {"WITH"}

MODULE_KINDS = {"PROC", "PROCEDURE", "FUNCTION", "TRIGGER"}
BEGIN_STATEMENTS = {"TRAN", "TRANSACTION", "DISTRIBUTED", "DIALOG", "CONVERSATION"}
SET_OPERATORS = {"UNION", "ALL", "EXCEPT", "INTERSECT"}
INSERT_SOURCES = {"SELECT", "EXEC", "EXECUTE"}
CTE_BODIES = {"SELECT", "INSERT", "UPDATE", "DELETE", "MERGE"}
PERMISSION_STATEMENTS = {"GRANT", "DENY", "REVOKE"}
# Object kinds that follow DROP as a statement of its own, never as an ALTER TABLE clause.
DROPPABLE_OBJECTS = frozenset([
    "TABLE", "VIEW", "PROC", "PROCEDURE", "FUNCTION", "TRIGGER", "INDEX", "SCHEMA", "TYPE",
    "SYNONYM", "SEQUENCE", "STATISTICS", "DEFAULT", "RULE", "USER", "ROLE", "ASSEMBLY", "DATABASE",
])
IF_EXISTS_TARGETS = DROPPABLE_OBJECTS | {"COLUMN", "CONSTRAINT"}
ROW_LIMITS = {"ROW", "ROWS"}


@dataclass
class RawStatement:
    first: int
    last: int
    kind: str


def find_body_start(tokens: Sequence[Token]) -> int:
    """
    Returns the index of the first token after the module header, i.e. after the AS of
    CREATE PROCEDURE ... AS. Text without a CREATE/ALTER header is all body.
    """
    if not tokens or tokens[0].upper not in ("CREATE", "ALTER"):
        return 0
    i = 1
    if len(tokens) > 3 and tokens[1].upper == "OR" and tokens[2].upper == "ALTER":
        i = 3
    if i >= len(tokens) or tokens[i].upper not in MODULE_KINDS:
        return 0

    depth = 0
    for j in range(i + 1, len(tokens)):
        t = tokens[j]
        if t.is_punct("("):
            depth += 1
        elif t.is_punct(")"):
            depth -= 1
        elif depth == 0 and t.upper == "AS":
            prev = tokens[j - 1]
            # EXECUTE AS OWNER, and "@param AS int" in unparenthesized parameter lists
            if prev.upper in ("EXEC", "EXECUTE") or prev.is_variable:
                continue
            return j + 1
    raise SegmentationError("Module header is not followed by AS", offset=tokens[0].start)


class _StatementState:
    def __init__(self, head: str, in_function: bool):
        self.head = head
        self.in_function = in_function
        self.source_seen = False

    def continues(self, keyword: str, prev: Token, next_token: Optional[Token]) -> bool:
        """Whether `keyword` is part of the current statement rather than the start of the next one."""
        prev_upper = prev.upper
        if prev.is_punct("."):
            return True
        if prev_upper in SET_OPERATORS and keyword == "SELECT":
            return True
        # DECLARE c CURSOR FOR SELECT ... FOR UPDATE
        if prev_upper == "FOR":
            return True
        if keyword == "ALTER" and next_token is not None and next_token.upper == "COLUMN":
            return True
        if keyword == "UPDATE" and next_token is not None and next_token.is_punct("("):
            return True
        # DROP TABLE IF EXISTS, ALTER TABLE ... DROP COLUMN IF EXISTS
        if keyword == "IF" and prev_upper in IF_EXISTS_TARGETS and next_token is not None and next_token.upper == "EXISTS":
            return True
        # ORDER BY ... OFFSET n ROWS FETCH NEXT m ROWS ONLY
        if keyword == "FETCH" and prev_upper in ROW_LIMITS:
            return True

        head = self.head
        if head == "MERGE":
            # MERGE has to be terminated with a semicolon
            return True
        if head in PERMISSION_STATEMENTS and (prev_upper in PERMISSION_STATEMENTS or prev.is_punct(",")):
            return True
        if head in ("CREATE", "ALTER") and prev_upper == "ON":
            return True
        if head == "ALTER" and keyword == "DROP" and not (next_token is not None and next_token.upper in DROPPABLE_OBJECTS):
            return True

        if self.source_seen:
            return False
        if head == "INSERT" and keyword in INSERT_SOURCES:
            self.source_seen = True
            return True
        if head == "UPDATE" and keyword == "SET":
            self.source_seen = True
            return True
        if head == "WITH" and keyword in CTE_BODIES:
            self.head = keyword
            return True
        if head == "RETURN" and self.in_function and prev_upper == "RETURN" and keyword == "SELECT":
            self.head = keyword
            return True
        return False

    def observe(self, keyword: str) -> None:
        # INSERT ... VALUES and INSERT ... DEFAULT VALUES have no SELECT or EXEC source
        if self.head == "INSERT" and keyword == "VALUES":
            self.source_seen = True


class _StatementParser:
    def __init__(self, tokens: Sequence[Token], in_function: bool = False):
        self.tokens = tokens
        self.in_function = in_function
        self.pos = 0
        self.statements: List[RawStatement] = []

    def peek(self, k=0) -> Optional[Token]:
        i = self.pos + k
        return self.tokens[i] if i < len(self.tokens) else None

    def _is_end_statement(self) -> bool:
        nxt = self.peek(1)
        return nxt is not None and nxt.upper == "CONVERSATION"

    def parse(self, start: int = 0) -> List[RawStatement]:
        self.pos = start
        while (t := self.peek()) is not None:
            if t.upper == "END" and not self._is_end_statement():
                raise SegmentationError(f"END at offset {t.start} has no matching BEGIN", offset=t.start)
            self.parse_statement()
        return self.statements

    def parse_block(self, begin: Token, closing: Optional[str]):
        while True:
            t = self.peek()
            if t is None:
                raise SegmentationError(f"BEGIN at offset {begin.start} has no matching END", offset=begin.start)
            if t.upper == "END" and not self._is_end_statement():
                self.pos += 1
                if closing is not None:
                    nxt = self.peek()
                    if nxt is None or nxt.upper != closing:
                        raise SegmentationError(f"Expected END {closing} at offset {t.start}", offset=t.start)
                    self.pos += 1
                return
            self.parse_statement()

    def parse_statement(self):
        t = self.peek()
        u = t.upper
        if t.is_punct(";"):
            self.pos += 1
            return
        if t.is_punct(")"):
            raise SegmentationError(f"Unbalanced closing parenthesis at offset {t.start}", offset=t.start)

        if u == "BEGIN":
            nxt = self.peek(1)
            nu = nxt.upper if nxt is not None else ""
            if nu in ("TRY", "CATCH"):
                self.pos += 2
                self.parse_block(t, nu)
                return
            if nu not in BEGIN_STATEMENTS:
                self.pos += 1
                if nu == "ATOMIC":
                    self._skip_atomic_options()
                self.parse_block(t, None)
                return
        elif u == "ELSE":
            raise SegmentationError(f"ELSE at offset {t.start} does not follow an IF", offset=t.start)
        elif u in ("IF", "WHILE"):
            self.parse_conditional(t)
            return
        elif t.kind is TokenKind.WORD and not t.is_variable and u not in STATEMENT_KEYWORDS:
            nxt = self.peek(1)
            if nxt is not None and nxt.is_punct(":"):
                # label
                self.pos += 2
                return

        self.parse_simple()

    def _skip_atomic_options(self):
        # BEGIN ATOMIC WITH (TRANSACTION ISOLATION LEVEL = SNAPSHOT, LANGUAGE = N'us_english')
        self.pos += 1
        if self.peek() is not None and self.peek().upper == "WITH":
            self.pos += 1
            if self.peek() is not None and self.peek().is_punct("("):
                depth = 0
                while (t := self.peek()) is not None:
                    self.pos += 1
                    if t.is_punct("("):
                        depth += 1
                    elif t.is_punct(")"):
                        depth -= 1
                        if depth == 0:
                            return
                raise SegmentationError("Unclosed BEGIN ATOMIC options", offset=self.tokens[-1].start)

    def parse_conditional(self, keyword: Token):
        start = self.pos
        self.pos += 1
        self._scan_condition()
        if self.pos == start + 1:
            raise SegmentationError(f"{keyword.upper} at offset {keyword.start} has no condition", offset=keyword.start)
        self.statements.append(RawStatement(start, self.pos, keyword.upper))

        self._parse_controlled(keyword)
        if keyword.upper == "IF":
            t = self.peek()
            if t is not None and t.upper == "ELSE":
                self.pos += 1
                self._parse_controlled(t)

    def _parse_controlled(self, keyword: Token):
        t = self.peek()
        if t is None or t.upper in ("END", "ELSE") or t.is_punct(";"):
            raise SegmentationError(f"{keyword.upper} at offset {keyword.start} is not followed by a statement", offset=keyword.start)
        self.parse_statement()

    def _starts_statement(self, t: Token, prev: Optional[Token]) -> bool:
        if t.is_punct(";"):
            return True
        u = t.upper
        if u in ("END", "ELSE"):
            return True
        if u not in STATEMENT_KEYWORDS:
            return False
        if prev is not None and prev.is_punct("."):
            return False
        if u == "UPDATE":
            # IF UPDATE(column) inside triggers
            nxt = self.peek(1)
            return not (nxt is not None and nxt.is_punct("("))
        return True

    def _scan_condition(self):
        depth = 0
        case_depth = 0
        prev = None
        while (t := self.peek()) is not None:
            if t.is_punct("("):
                depth += 1
            elif t.is_punct(")"):
                if depth == 0:
                    raise SegmentationError(f"Unbalanced closing parenthesis at offset {t.start}", offset=t.start)
                depth -= 1
            elif depth == 0:
                u = t.upper
                if u == "CASE":
                    case_depth += 1
                elif u == "END" and case_depth:
                    case_depth -= 1
                elif case_depth == 0 and self._starts_statement(t, prev):
                    break
            self.pos += 1
            prev = t
        if depth:
            raise SegmentationError("Unclosed parenthesis in condition", offset=prev.start if prev else None)

    def parse_simple(self):
        start = self.pos
        head = self.tokens[start]
        state = _StatementState(head.upper, self.in_function)
        depth = 0
        case_depth = 0
        prev = None
        while (t := self.peek()) is not None:
            if t.is_punct("("):
                depth += 1
            elif t.is_punct(")"):
                if depth == 0:
                    raise SegmentationError(f"Unbalanced closing parenthesis at offset {t.start}", offset=t.start)
                depth -= 1
            elif depth == 0 and prev is not None:
                if t.is_punct(";"):
                    self.pos += 1
                    break
                u = t.upper
                if u == "CASE":
                    case_depth += 1
                elif u == "END":
                    if not case_depth:
                        break
                    case_depth -= 1
                elif case_depth == 0:
                    if u == "ELSE":
                        break
                    state.observe(u)
                    if u == "WITH" and prev.upper == "RETURN":
                        state.head = "WITH"
                    elif u in BREAKING_KEYWORDS and not state.continues(u, prev, self.peek(1)):
                        break
            self.pos += 1
            prev = t

        if depth:
            raise SegmentationError(f"Unclosed parenthesis in statement at offset {head.start}", offset=head.start)
        if case_depth:
            raise SegmentationError(f"CASE without END in statement at offset {head.start}", offset=head.start)
        self.statements.append(RawStatement(start, self.pos, head.upper or head.text))


@dataclass
class SegmentationOutcome:
    source: SourceObject
    spans: List[StatementSpan] = field(default_factory=list)
    diagnostics: List[Diagnostic] = field(default_factory=list)
    excluded: bool = False

    @property
    def failed(self) -> bool:
        return any(d.severity == Severity.ERROR for d in self.diagnostics)


class SourceSegmenter:
    def __init__(self, exclude_filter=None):
        self.exclude_filter = ExcludeFilter.coerce(exclude_filter)

    def segment(self, name: str, raw_text: str, exclude_filter=None, kind: ObjectKind = ObjectKind.PROCEDURE) -> List[StatementSpan]:
        """
        Segments one module into ordered, non-overlapping statement spans.

        Returns an empty list when `name` matches the exclude filter (the segmenter's own filter
        unless one is passed). Raises SegmentationError when the text cannot be parsed.
        """
        name_filter = self.exclude_filter if exclude_filter is None else ExcludeFilter.coerce(exclude_filter)
        if name_filter.matches(name):
            log.debug("Skipping excluded object %s", name)
            return []

        tokens = significant_tokens(raw_text)
        parser = _StatementParser(tokens, in_function=(kind == ObjectKind.FUNCTION))
        statements = parser.parse(find_body_start(tokens))

        line_starts = compute_line_starts(raw_text)
        spans = []
        for ordinal, stmt in enumerate(sorted(statements, key=lambda s: s.first)):
            start = tokens[stmt.first].start
            end = tokens[stmt.last - 1].end
            spans.append(StatementSpan(
                ordinal=ordinal,
                start_offset=start,
                end_offset=end,
                start_line=line_number_at(line_starts, start),
                end_line=line_number_at(line_starts, end - 1),
                kind=stmt.kind,
            ))
        return spans

    def segment_object(self, source: SourceObject) -> SegmentationOutcome:
        if self.exclude_filter.matches(source.name):
            return SegmentationOutcome(source=source, excluded=True)

        try:
            spans = self.segment(source.name, source.raw_text, exclude_filter=ExcludeFilter(), kind=source.kind)
        except SegmentationError as e:
            log.warning("Could not segment %s: %s", source.name, e)
            return SegmentationOutcome(source=source, diagnostics=[Diagnostic(
                stage=Stage.SEGMENTATION, severity=Severity.ERROR, object_name=source.name,
                message=f"Unparsable source, object skipped: {e}",
            )])
        except Exception as e:
            log.exception("Unexpected error while segmenting %s", source.name)
            return SegmentationOutcome(source=source, diagnostics=[Diagnostic(
                stage=Stage.SEGMENTATION, severity=Severity.ERROR, object_name=source.name,
                message=f"Segmentation failed, object skipped: {e!r}",
            )])

        outcome = SegmentationOutcome(source=source, spans=spans)
        if not spans:
            outcome.diagnostics.append(Diagnostic(
                stage=Stage.SEGMENTATION, severity=Severity.INFO, object_name=source.name,
                message="No executable statements found",
            ))
        return outcome

    def segment_all(self, sources: Iterable[SourceObject], max_workers: int = 1) -> List[SegmentationOutcome]:
        # Objects are independent, every worker only produces the outcome for its own object.
        sources = list(sources)
        if max_workers <= 1 or len(sources) < 2:
            return [self.segment_object(s) for s in sources]
        with ThreadPoolExecutor(max_workers=max_workers) as executor:
            return list(executor.map(self.segment_object, sources))
