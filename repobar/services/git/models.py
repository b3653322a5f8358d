"""
Shared types for repository status and diffs.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional


class DiffLineType(str, Enum):
    ADD = "add"
    REMOVE = "remove"
    CONTEXT = "context"
    META = "meta"
    CONFLICT = "conflict"


@dataclass(frozen=True)
class FileChange:
    path: str
    status_code: str
    has_conflict: bool = False
    old_path: Optional[str] = None


@dataclass(frozen=True)
class StatusSnapshot:
    staged: List[FileChange] = field(default_factory=list)
    unstaged: List[FileChange] = field(default_factory=list)
    untracked: List[FileChange] = field(default_factory=list)

    @property
    def is_clean(self) -> bool:
        return not (self.staged or self.unstaged or self.untracked)

    @property
    def conflicted(self) -> List[FileChange]:
        return [change for change in self.unstaged if change.has_conflict]

    def is_untracked(self, path: str) -> bool:
        return any(change.path == path for change in self.untracked)


@dataclass(frozen=True)
class DiffLine:
    type: DiffLineType
    content: str
    old_line_number: Optional[int] = None
    new_line_number: Optional[int] = None


@dataclass
class DiffHunk:
    header: str
    old_start: int
    old_count: int
    new_start: int
    new_count: int
    lines: List[DiffLine] = field(default_factory=list)


@dataclass
class Diff:
    file_path: str
    hunks: List[DiffHunk] = field(default_factory=list)
    is_binary: bool = False
    is_truncated: bool = False
    total_line_count: int = 0
    has_conflict_markers: bool = False

    @property
    def displayed_line_count(self) -> int:
        return sum(len(hunk.lines) for hunk in self.hunks)

    @property
    def lines(self) -> List[DiffLine]:
        return [line for hunk in self.hunks for line in hunk.lines]
