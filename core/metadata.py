"""
SPECGRAPH METADATA CODEC - Textual Patching of Node Documents

Reads and rewrites the two structured shapes embedded in a node document:

1. Fields: `- **Label**: value` lines, normally under `## Metadata`
2. Tables: pipe-delimited rows following a section heading

Design Principles:
- PATCH, DON'T REWRITE: Every operation edits the targeted line(s) and
  splices them back. Lines outside the target are returned byte-for-byte,
  including CRLF endings and a missing trailing newline.
- EXACT LABELS, LOOSE WHITESPACE: `**Status**` never matches `**Status Code**`,
  but `|  CAP-100001   |` matches key `CAP-100001`.
- FENCE AWARE: Headings inside ``` blocks (mermaid diagrams, code) are not
  section boundaries.

A section runs from its heading to the next heading of equal or higher level
(fewer or equal `#`), or to the end of the document. The table of a section
is its first contiguous run of lines starting with `|`.
"""
import re
from typing import List, Optional, Tuple, Iterable, Sequence, Mapping

import msgspec

from core.errors import ParseFailureError
from core.ontology import SECTION_METADATA
from core.schemas import TableRow


_HEADING_RE = re.compile(r"^(#{1,6})[ \t]+(.+?)[ \t]*$")
_FENCE_RE = re.compile(r"^\s*(```|~~~)")
_ANY_FIELD_RE = re.compile(r"^\s*-\s*\*\*[^*]+\*\*:")
_SEPARATOR_RE = re.compile(r"^\s*\|?[\s:|-]*-[\s:|-]*\|?\s*$")
_CELL_SPLIT_RE = re.compile(r"(?<!\\)\|")


# =============================================================================
# LINE HANDLING
# =============================================================================

def _split_lines(text: str) -> List[str]:
    """Split keeping line endings so that ''.join(result) == text."""
    parts = text.split("\n")
    lines = [part + "\n" for part in parts[:-1]]
    if parts[-1]:
        lines.append(parts[-1])
    return lines


def _body(line: str) -> str:
    return line.rstrip("\r\n")


def _ending(line: str) -> str:
    return line[len(_body(line)):]


def _newline_for(lines: Sequence[str]) -> str:
    """The line ending the document already uses ('\\n' for new documents)."""
    for line in lines:
        ending = _ending(line)
        if ending:
            return ending
    return "\n"


def _insert_line(lines: List[str], index: int, body: str) -> None:
    """Insert a new line at index, keeping the document's final-newline state."""
    newline = _newline_for(lines)
    if index > 0 and index == len(lines) and not _ending(lines[index - 1]):
        lines[index - 1] = lines[index - 1] + newline
        lines.insert(index, body)
        return
    lines.insert(index, body + newline)


def _delete_lines(lines: List[str], indexes: Iterable[int]) -> None:
    """Delete lines (highest index first), keeping the final-newline state."""
    for index in sorted(set(indexes), reverse=True):
        was_last_unterminated = index == len(lines) - 1 and not _ending(lines[index])
        del lines[index]
        if was_last_unterminated and lines:
            lines[-1] = _body(lines[-1])


# =============================================================================
# SECTIONS
# =============================================================================

class _Heading(msgspec.Struct, frozen=True):
    index: int
    level: int
    title: str


def _headings(lines: Sequence[str]) -> List[_Heading]:
    headings = []
    in_fence = False
    for index, line in enumerate(lines):
        body = _body(line)
        if _FENCE_RE.match(body):
            in_fence = not in_fence
            continue
        if in_fence:
            continue
        match = _HEADING_RE.match(body)
        if match:
            headings.append(_Heading(index=index, level=len(match.group(1)), title=match.group(2).strip()))
    return headings


def section_bounds(lines: Sequence[str], heading: str) -> Optional[Tuple[int, int]]:
    """
    Locate a section by its heading text.

    Returns:
        (heading_index, end_index) where end_index is exclusive, or None.
    """
    wanted = heading.strip()
    headings = _headings(lines)
    for position, candidate in enumerate(headings):
        if candidate.title != wanted:
            continue
        end = len(lines)
        for following in headings[position + 1:]:
            if following.level <= candidate.level:
                end = following.index
                break
        return candidate.index, end
    return None


# =============================================================================
# TABLES
# =============================================================================

class _TableBlock(msgspec.Struct, kw_only=True):
    header: Optional[int]
    separator: Optional[int]
    rows: List[int]
    end: int                      # Index after the last pipe line


def normalize_value(value: Optional[str]) -> str:
    """Collapse whitespace runs (newlines included) to single spaces."""
    return " ".join(str(value).split()) if value else ""


def split_cells(line: str) -> List[str]:
    """'| a | b\\| c |' -> ['a', 'b| c'] (empty middle cells are kept)."""
    body = _body(line).strip()
    if body.startswith("|"):
        body = body[1:]
    if body.endswith("|") and not body.endswith("\\|"):
        body = body[:-1]
    return [cell.strip().replace("\\|", "|") for cell in _CELL_SPLIT_RE.split(body)]


def format_table_row(cells: Iterable[str]) -> str:
    """['a', 'b|c'] -> '| a | b\\|c |'. Pipes are escaped, whitespace is normalized."""
    cleaned = [normalize_value(cell).replace("|", "\\|") for cell in cells]
    return "| " + " | ".join(cleaned) + " |"


def _find_table(lines: Sequence[str], heading: str) -> Optional[_TableBlock]:
    bounds = section_bounds(lines, heading)
    if bounds is None:
        return None
    start, end = bounds

    first = None
    for index in range(start + 1, end):
        if _body(lines[index]).lstrip().startswith("|"):
            first = index
            break
    if first is None:
        return None

    last = first
    while last + 1 < end and _body(lines[last + 1]).lstrip().startswith("|"):
        last += 1
    run = list(range(first, last + 1))

    header: Optional[int] = None
    separator: Optional[int] = None
    if _SEPARATOR_RE.match(_body(lines[run[0]])):
        separator = run.pop(0)
    else:
        header = run.pop(0)
        if run and _SEPARATOR_RE.match(_body(lines[run[0]])):
            separator = run.pop(0)

    return _TableBlock(header=header, separator=separator, rows=run, end=last + 1)


def _require_table(lines: Sequence[str], heading: str) -> _TableBlock:
    block = _find_table(lines, heading)
    if block is None:
        if section_bounds(lines, heading) is None:
            raise ParseFailureError(f"Section not found: {heading!r}", section=heading)
        raise ParseFailureError(f"No table under section {heading!r}", section=heading)
    return block


def has_table(text: str, heading: str) -> bool:
    """True if the section exists and holds a table."""
    return _find_table(_split_lines(text), heading) is not None


def extract_table(text: str, heading: str) -> List[TableRow]:
    """
    Data rows of the table under `heading`, in document order.

    Header and separator rows are excluded, and so are placeholder rows whose
    cells are all blank.

    Raises:
        ParseFailureError: If the section or its table is missing.
    """
    lines = _split_lines(text)
    block = _require_table(lines, heading)
    rows = []
    for index in block.rows:
        cells = split_cells(lines[index])
        if any(cells):
            rows.append(TableRow(cells=tuple(cells)))
    return rows


def extract_table_header(text: str, heading: str) -> List[str]:
    """Column titles of the table under `heading` ([] if it has no header row)."""
    lines = _split_lines(text)
    block = _require_table(lines, heading)
    if block.header is None:
        return []
    return split_cells(lines[block.header])


def upsert_table_row(text: str, heading: str, row_key: str, row_values: Sequence[str]) -> str:
    """
    Replace or append the row whose first cell equals `row_key`.

    An existing row is rewritten in place (order preserved, its line ending
    kept). A new row goes immediately after the last data row, or after the
    separator (header) when the table has no rows yet.

    Raises:
        ParseFailureError: If the section or its table is missing.
    """
    lines = _split_lines(text)
    block = _require_table(lines, heading)
    key = row_key.strip()
    new_body = format_table_row([key, *row_values])

    for index in block.rows:
        cells = split_cells(lines[index])
        if cells and cells[0] == key:
            lines[index] = new_body + _ending(lines[index])
            return "".join(lines)

    if block.rows:
        position = block.rows[-1] + 1
    elif block.separator is not None:
        position = block.separator + 1
    else:
        position = block.header + 1
    _insert_line(lines, position, new_body)
    return "".join(lines)


def remove_table_row(text: str, heading: str, row_key: str, keep_first: bool = False) -> str:
    """
    Remove rows keyed by `row_key` from the table under `heading`.

    Args:
        keep_first: Only drop duplicates, keeping the first matching row.

    Raises:
        ParseFailureError: If the section or its table is missing.
    """
    lines = _split_lines(text)
    block = _require_table(lines, heading)
    key = row_key.strip()
    matches = [i for i in block.rows if (split_cells(lines[i]) or [""])[0] == key]
    if keep_first:
        matches = matches[1:]
    if not matches:
        return text
    _delete_lines(lines, matches)
    return "".join(lines)


def count_table_rows(text: str, heading: str, row_key: str) -> int:
    """How many rows of the table are keyed by `row_key` (0 if no table)."""
    lines = _split_lines(text)
    block = _find_table(lines, heading)
    if block is None:
        return 0
    key = row_key.strip()
    return sum(1 for i in block.rows if (split_cells(lines[i]) or [""])[0] == key)


def find_table_row(text: str, heading: str, row_key: str) -> Optional[TableRow]:
    """First row keyed by `row_key`, or None (also None when the table is missing)."""
    if not has_table(text, heading):
        return None
    key = row_key.strip()
    for row in extract_table(text, heading):
        if row.key == key:
            return row
    return None


# =============================================================================
# FIELDS
# =============================================================================

def _field_re(label: str) -> re.Pattern:
    return re.compile(r"^\s*-\s*\*\*" + re.escape(label) + r"\*\*:[ \t]*(.*?)[ \t]*$")


def _find_field(lines: Sequence[str], label: str) -> Optional[Tuple[int, re.Match]]:
    pattern = _field_re(label)
    bounds = section_bounds(lines, SECTION_METADATA)
    ranges = []
    if bounds is not None:
        ranges.append(range(bounds[0] + 1, bounds[1]))
    ranges.append(range(len(lines)))
    for candidates in ranges:
        for index in candidates:
            match = pattern.match(_body(lines[index]))
            if match:
                return index, match
    return None


def extract_field(text: str, label: str) -> Optional[str]:
    """
    Value of the `- **label**: value` line, or None if absent.

    The `## Metadata` block is searched first, then the whole document.
    """
    found = _find_field(_split_lines(text), label)
    if found is None:
        return None
    return found[1].group(1).strip()


def upsert_field(text: str, label: str, value: str) -> str:
    """
    Set a metadata field, touching nothing but that line.

    An existing line keeps its bullet and label formatting; only the value
    span changes. A missing field is inserted after the last field line of
    the `## Metadata` block.

    Raises:
        ParseFailureError: If the field is absent and there is no metadata block.
    """
    value = normalize_value(value)
    lines = _split_lines(text)
    found = _find_field(lines, label)

    if found is not None:
        index, match = found
        body = _body(lines[index])
        prefix = body[:match.start(1)]
        if value and prefix.endswith(":"):
            prefix += " "
        lines[index] = prefix + value + body[match.end(1):] + _ending(lines[index])
        return "".join(lines)

    bounds = section_bounds(lines, SECTION_METADATA)
    if bounds is None:
        raise ParseFailureError(
            f"Cannot add field {label!r}: no {SECTION_METADATA!r} section", section=SECTION_METADATA
        )
    start, end = bounds
    position = start + 1
    for index in range(start + 1, end):
        if _ANY_FIELD_RE.match(_body(lines[index])):
            position = index + 1
    new_body = f"- **{label}**: {value}" if value else f"- **{label}**:"
    _insert_line(lines, position, new_body)
    return "".join(lines)


def upsert_fields(text: str, fields: Mapping[str, Optional[str]]) -> str:
    """Apply several upsert_field calls; None values are skipped."""
    for label, value in fields.items():
        if value is None:
            continue
        text = upsert_field(text, label, value)
    return text


# =============================================================================
# TITLE
# =============================================================================

def extract_title(text: str) -> Optional[str]:
    """Text of the first level-1 heading."""
    lines = _split_lines(text)
    for heading in _headings(lines):
        if heading.level == 1:
            return heading.title
    return None


def upsert_title(text: str, title: str) -> str:
    """Rewrite the first level-1 heading. Documents without one are returned unchanged."""
    lines = _split_lines(text)
    for heading in _headings(lines):
        if heading.level == 1:
            title = " ".join(title.split())
            lines[heading.index] = f"# {title}" + _ending(lines[heading.index])
            return "".join(lines)
    return text
