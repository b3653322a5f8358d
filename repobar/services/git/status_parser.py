"""Parser for two-column porcelain status output (``git status --porcelain=v1``)."""

import logging
from typing import Iterable, List, Optional, Tuple

from repobar.services.git.models import FileChange, StatusSnapshot

logger = logging.getLogger(__name__)

RENAME_SEPARATOR = " -> "
CONFLICT_PAIRS = {"AA", "DD"}
_ESCAPES = {"n": b"\n", "t": b"\t", '"': b'"', "\\": b"\\", "a": b"\a", "b": b"\b", "f": b"\f", "r": b"\r", "v": b"\v"}


def unquote_path(raw: str) -> str:
    """Undo git's C-style quoting of paths with special characters."""
    if len(raw) < 2 or not (raw.startswith('"') and raw.endswith('"')):
        return raw
    inner = raw[1:-1]
    out = bytearray()
    i = 0
    while i < len(inner):
        char = inner[i]
        if char != "\\" or i + 1 >= len(inner):
            out.extend(char.encode("utf-8"))
            i += 1
            continue
        nxt = inner[i + 1]
        octal = inner[i + 1 : i + 4]
        if len(octal) == 3 and all(c in "01234567" for c in octal):
            out.append(int(octal, 8))
            i += 4
        elif nxt in _ESCAPES:
            out.extend(_ESCAPES[nxt])
            i += 2
        else:
            out.extend(char.encode("utf-8"))
            i += 1
    return out.decode("utf-8", errors="replace")


def is_conflict(index_state: str, worktree_state: str) -> bool:
    return (
        index_state == "U"
        or worktree_state == "U"
        or f"{index_state}{worktree_state}" in CONFLICT_PAIRS
    )


def split_paths(index_state: str, worktree_state: str, rest: str) -> Tuple[str, Optional[str]]:
    """Return (path, old_path); old_path only for rename/copy entries."""
    if (index_state in "RC" or worktree_state in "RC") and RENAME_SEPARATOR in rest:
        old, new = rest.split(RENAME_SEPARATOR, 1)
        return unquote_path(new), unquote_path(old)
    return unquote_path(rest), None


def parse_status_line(line: str) -> Tuple[Optional[FileChange], Optional[FileChange], Optional[FileChange]]:
    """Classify one ``XY path`` line.

    Returns:
        Tuple of (staged, unstaged, untracked) entries, each possibly None
    """
    if len(line) < 4 or line[2] != " ":
        if line.strip():
            logger.debug(f"Ignoring malformed status line: {line!r}")
        return None, None, None

    index_state, worktree_state, rest = line[0], line[1], line[3:]
    if index_state == "!" and worktree_state == "!":
        return None, None, None

    path, old_path = split_paths(index_state, worktree_state, rest)

    if index_state == "?" and worktree_state == "?":
        return None, None, FileChange(path=path, status_code="?")

    if is_conflict(index_state, worktree_state):
        # Unmerged entries need resolution in the worktree before they can be staged
        return None, FileChange(path, f"{index_state}{worktree_state}", has_conflict=True), None

    staged = None
    unstaged = None
    if index_state not in (" ", "?"):
        staged = FileChange(path=path, status_code=index_state, old_path=old_path)
    if worktree_state not in (" ", "?"):
        unstaged = FileChange(path=path, status_code=worktree_state, old_path=old_path)
    return staged, unstaged, None


def parse_status(lines: Iterable[str]) -> StatusSnapshot:
    """Turn porcelain status lines into a StatusSnapshot."""
    staged: List[FileChange] = []
    unstaged: List[FileChange] = []
    untracked: List[FileChange] = []

    for line in lines:
        staged_entry, unstaged_entry, untracked_entry = parse_status_line(line.rstrip("\r\n"))
        if staged_entry:
            staged.append(staged_entry)
        if unstaged_entry:
            unstaged.append(unstaged_entry)
        if untracked_entry:
            untracked.append(untracked_entry)

    return StatusSnapshot(staged=staged, unstaged=unstaged, untracked=untracked)
