"""Unified diff parser producing hunks of typed, numbered lines.

Truncation only limits the projection handed to the caller; the total line
count always reflects the whole diff, and reparsing the same text with
``show_full=True`` yields every line.
"""

import logging
import re
from dataclasses import replace
from typing import List, Optional

from common.config.config import DIFF_MAX_LINES
from repobar.services.git.models import Diff, DiffHunk, DiffLine, DiffLineType

logger = logging.getLogger(__name__)

# "@@ -o,oc +n,nc @@ section" and the combined form "@@@ -a,b -c,d +n,nc @@@"
HUNK_HEADER_RE = re.compile(r"^(?P<ats>@{2,}) (?P<ranges>[-+0-9, ]+?) (?P=ats)(?P<section>.*)$")
RANGE_RE = re.compile(r"^(?P<sign>[-+])(?P<start>\d+)(?:,(?P<count>\d+))?$")
BINARY_RE = re.compile(r"^(?:Binary files .* differ|GIT binary patch)$", re.MULTILINE)

CONFLICT_MARKERS = ("<<<<<<<", "|||||||", ">>>>>>>")
CONFLICT_SEPARATOR = "======="


def is_binary_diff(text: str) -> bool:
    return BINARY_RE.search(text) is not None


def is_conflict_marker(text: str) -> bool:
    """True for merge conflict marker lines (diff3 base marker included)."""
    if text.rstrip() == CONFLICT_SEPARATOR:
        return True
    for marker in CONFLICT_MARKERS:
        if text.startswith(marker) and (len(text) == len(marker) or text[len(marker)] == " "):
            return True
    return False


def _parse_hunk_header(line: str) -> Optional[DiffHunk]:
    match = HUNK_HEADER_RE.match(line)
    if not match:
        return None

    old_ranges = []
    new_range = None
    for part in match.group("ranges").split():
        range_match = RANGE_RE.match(part)
        if not range_match:
            return None
        start = int(range_match.group("start"))
        count = int(range_match.group("count")) if range_match.group("count") is not None else 1
        if range_match.group("sign") == "-":
            old_ranges.append((start, count))
        else:
            new_range = (start, count)

    if not old_ranges or new_range is None:
        return None
    old_start, old_count = old_ranges[0]
    new_start, new_count = new_range
    return DiffHunk(
        header=line,
        old_start=old_start,
        old_count=old_count,
        new_start=new_start,
        new_count=new_count,
    )


def _project(hunks: List[DiffHunk], limit: int) -> List[DiffHunk]:
    """First `limit` lines across hunks, leaving the originals untouched."""
    projected: List[DiffHunk] = []
    budget = limit
    for hunk in hunks:
        if budget <= 0:
            break
        projected.append(replace(hunk, lines=hunk.lines[:budget]))
        budget -= len(hunk.lines)
    return projected


def parse_diff(
    text: str,
    file_path: str = "",
    max_lines: Optional[int] = None,
    show_full: bool = False,
) -> Diff:
    """Parse unified diff text.

    Args:
        text: Raw diff output
        file_path: Path the diff belongs to
        max_lines: Truncation threshold (defaults to DIFF_MAX_LINES)
        show_full: Skip truncation and return every line

    Returns:
        Diff; binary diffs come back with is_binary set and no hunks
    """
    if is_binary_diff(text):
        return Diff(file_path=file_path, is_binary=True)

    limit = DIFF_MAX_LINES if max_lines is None else max_lines
    hunks: List[DiffHunk] = []
    current: Optional[DiffHunk] = None
    columns = 1
    old_number = new_number = 0
    old_left = new_left = 0
    total = 0
    has_conflict = False

    for raw in text.splitlines():
        header = _parse_hunk_header(raw) if raw.startswith("@@") else None
        if header is not None:
            current = header
            hunks.append(current)
            columns = len(raw) - len(raw.lstrip("@")) - 1
            old_number, new_number = current.old_start, current.new_start
            old_left, new_left = current.old_count, current.new_count
            continue

        if current is None:
            # File header metadata: diff --git, index, ---/+++, mode and rename lines
            continue

        if raw.startswith("\\"):
            current.lines.append(DiffLine(DiffLineType.META, raw))
            total += 1
            continue

        if raw.startswith("diff "):
            current = None
            continue

        if columns == 1 and old_left <= 0 and new_left <= 0:
            # Hunk fully consumed; whatever follows is metadata
            continue

        prefix, content = raw[:columns], raw[columns:]
        if "+" in prefix:
            line_type = DiffLineType.ADD
            line = DiffLine(line_type, content, new_line_number=new_number)
            new_number += 1
            new_left -= 1
        elif "-" in prefix:
            line_type = DiffLineType.REMOVE
            line = DiffLine(line_type, content, old_line_number=old_number)
            old_number += 1
            old_left -= 1
        else:
            line_type = DiffLineType.CONTEXT
            line = DiffLine(line_type, content, old_line_number=old_number, new_line_number=new_number)
            old_number += 1
            new_number += 1
            old_left -= 1
            new_left -= 1

        if is_conflict_marker(content) or is_conflict_marker(raw):
            line = replace(line, type=DiffLineType.CONFLICT)
            has_conflict = True

        current.lines.append(line)
        total += 1

    truncated = not show_full and limit > 0 and total > limit
    if truncated:
        logger.debug(f"Truncating diff for {file_path or '<unknown>'}: {total} lines > {limit}")

    return Diff(
        file_path=file_path,
        hunks=_project(hunks, limit) if truncated else hunks,
        is_binary=False,
        is_truncated=truncated,
        total_line_count=total,
        has_conflict_markers=has_conflict,
    )
