"""
Git Module

Local repository state including:
- Porcelain status and unified diff parsing
- Repository session (status, branch, ahead/behind, staging, commit, push)
- Change detection over the repository metadata directory
"""

from repobar.services.git.change_detector import ChangeDetector
from repobar.services.git.client import GitClient
from repobar.services.git.diff_parser import parse_diff
from repobar.services.git.models import Diff, DiffHunk, DiffLine, DiffLineType, FileChange, StatusSnapshot
from repobar.services.git.session import RepositorySession
from repobar.services.git.status_parser import parse_status

__all__ = [
    "ChangeDetector",
    "Diff",
    "DiffHunk",
    "DiffLine",
    "DiffLineType",
    "FileChange",
    "GitClient",
    "RepositorySession",
    "StatusSnapshot",
    "parse_diff",
    "parse_status",
]
