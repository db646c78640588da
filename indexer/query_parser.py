"""Free-text query parsing for the lexical index.

Supported syntax: bare terms, ``"quoted phrases"``, ``field:term`` and
``field:"quoted phrase"`` where field is one of the indexed text fields.
Unscoped clauses match any field; clauses are OR-ed and ranked by relevance.
An unknown ``prefix:`` is read as plain text so that inputs such as
``std::vec`` or URLs stay searchable.

User text never reaches the FTS5 expression unescaped: words are extracted
with a Unicode word pattern and always emitted inside double quotes.
"""

import re
from dataclasses import dataclass
from typing import Optional, Sequence, Tuple

SEARCH_FIELDS = ("title", "body")

_FIELD_RE = re.compile(r"(\w+):")
_WORD_RE = re.compile(r"\w+")


class QuerySyntaxError(ValueError):
    """Raised for malformed user queries."""


@dataclass(frozen=True)
class Clause:
    """A term or phrase, optionally scoped to one field."""
    field: Optional[str]
    words: Tuple[str, ...]

    def to_fts(self) -> str:
        phrase = '"' + " ".join(self.words) + '"'
        if self.field:
            return f"{self.field} : {phrase}"
        return phrase


@dataclass(frozen=True)
class ParsedQuery:
    """Structured form of a user query."""
    text: str
    clauses: Tuple[Clause, ...]

    @property
    def is_empty(self) -> bool:
        return not self.clauses

    @property
    def expression(self) -> str:
        """FTS5 MATCH expression."""
        return " OR ".join(c.to_fts() for c in self.clauses)


def parse_query(text: str, fields: Sequence[str] = SEARCH_FIELDS) -> ParsedQuery:
    """Parse free text into a :class:`ParsedQuery`.

    Raises:
        QuerySyntaxError: on an unbalanced quote or a field without a value.
    """
    known = {f.lower() for f in fields}
    clauses = []
    pos, n = 0, len(text)

    while pos < n:
        if text[pos].isspace():
            pos += 1
            continue

        field = None
        m = _FIELD_RE.match(text, pos)
        if m and m.group(1).lower() in known:
            field = m.group(1).lower()
            pos = m.end()
            if pos >= n or text[pos].isspace():
                raise QuerySyntaxError(f"Field '{field}' has no value")

        if text[pos] == '"':
            end = text.find('"', pos + 1)
            if end == -1:
                raise QuerySyntaxError("Unbalanced quote in query")
            raw = text[pos + 1:end]
            pos = end + 1
        else:
            end = pos
            while end < n and not text[end].isspace() and text[end] != '"':
                end += 1
            raw = text[pos:end]
            pos = end

        words = tuple(w.lower() for w in _WORD_RE.findall(raw))
        if words:
            clauses.append(Clause(field, words))

    return ParsedQuery(text=text, clauses=tuple(clauses))
