"""
CSV helpers shared by the vendor parsers and the exporters.

Quoting rules (what every supported password manager writes):
- fields are comma separated
- a field may be wrapped in double quotes; inside, commas and newlines
  are literal
- ``""`` inside a quoted field is one literal quote
"""

from typing import Any, Iterator, List, Sequence, Tuple

BOM = "\ufeff"


def parse_csv_line(line: str) -> List[str]:
    """Split one CSV record into fields."""
    fields: List[str] = []
    current: List[str] = []
    in_quotes = False
    i = 0
    while i < len(line):
        char = line[i]
        if char == '"':
            if in_quotes and i + 1 < len(line) and line[i + 1] == '"':
                current.append('"')
                i += 2
                continue
            in_quotes = not in_quotes
        elif char == "," and not in_quotes:
            fields.append("".join(current))
            current = []
        else:
            current.append(char)
        i += 1
    fields.append("".join(current))
    return fields


def iter_csv_records(content: str) -> Iterator[Tuple[int, str]]:
    """
    Yield ``(line_number, record)`` for every non-blank record.

    Physical lines are joined while a quoted field is still open, so a
    note spanning several lines stays one record. Line numbers are
    1-based and point at the first line of the record.
    """
    content = content.lstrip(BOM)
    pending: List[str] = []
    start = 0
    quotes = 0
    for number, line in enumerate(content.splitlines(), start=1):
        if not pending:
            start = number
        pending.append(line)
        quotes += line.count('"')
        if quotes % 2:
            continue
        record = "\n".join(pending)
        pending = []
        quotes = 0
        if record.strip():
            yield start, record.strip()
    if pending and "".join(pending).strip():
        yield start, "\n".join(pending)


def escape_csv_field(value: Any) -> str:
    text = "" if value is None else str(value)
    if "," in text or '"' in text or "\n" in text:
        return '"' + text.replace('"', '""') + '"'
    return text


def csv_row(values: Sequence[Any]) -> str:
    return ",".join(escape_csv_field(v) for v in values)


def find_column(header: Sequence[str], aliases: Sequence[str]) -> int:
    """
    Index of the first header column matching an alias, or -1.

    Exact (case-insensitive) matches win over substring matches, so a
    ``username`` column is never taken for ``name``.
    """
    columns = [c.strip().strip('"').lower() for c in header]
    for alias in aliases:
        if alias in columns:
            return columns.index(alias)
    for index, column in enumerate(columns):
        if any(alias in column for alias in aliases):
            return index
    return -1
