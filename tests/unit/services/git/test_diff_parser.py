"""Tests for unified diff parsing and truncation."""

from repobar.services.git.diff_parser import is_conflict_marker, parse_diff
from repobar.services.git.models import DiffLineType

SIMPLE_DIFF = """diff --git a/app.py b/app.py
index 83db48f..bf269f4 100644
--- a/app.py
+++ b/app.py
@@ -1,4 +1,4 @@ def main():
 import os
-import sys
+import json

 print("hi")
"""


def _big_diff(added: int) -> str:
    body = "\n".join(f"+line {i}" for i in range(added))
    return f"--- /dev/null\n+++ b/big.txt\n@@ -0,0 +1,{added} @@\n{body}\n"


class TestParseDiff:
    """Test parse_diff structure and line numbering."""

    def test_hunk_and_line_numbers(self):
        """Test a simple hunk is parsed with old and new numbers."""
        diff = parse_diff(SIMPLE_DIFF, file_path="app.py")

        assert diff.file_path == "app.py"
        assert len(diff.hunks) == 1
        hunk = diff.hunks[0]
        assert (hunk.old_start, hunk.old_count, hunk.new_start, hunk.new_count) == (1, 4, 1, 4)

        types = [line.type for line in hunk.lines]
        assert types == [
            DiffLineType.CONTEXT,
            DiffLineType.REMOVE,
            DiffLineType.ADD,
            DiffLineType.CONTEXT,
            DiffLineType.CONTEXT,
        ]
        removed, added = hunk.lines[1], hunk.lines[2]
        assert (removed.content, removed.old_line_number, removed.new_line_number) == ("import sys", 2, None)
        assert (added.content, added.old_line_number, added.new_line_number) == ("import json", None, 2)
        last = hunk.lines[-1]
        assert (last.old_line_number, last.new_line_number) == (4, 4)
        assert diff.total_line_count == 5
        assert diff.is_truncated is False

    def test_empty_text(self):
        """Test empty diff text yields an empty, non-binary diff."""
        diff = parse_diff("")

        assert diff.hunks == []
        assert diff.is_binary is False
        assert diff.total_line_count == 0

    def test_binary_diff(self):
        """Test binary diffs are flagged and carry no hunks."""
        text = "diff --git a/logo.png b/logo.png\nindex 1..2 100644\nBinary files a/logo.png and b/logo.png differ\n"
        diff = parse_diff(text, file_path="logo.png")

        assert diff.is_binary is True
        assert diff.hunks == []

    def test_header_count_default_is_one(self):
        """Test ranges without counts default to one line."""
        diff = parse_diff("@@ -3 +3 @@\n-old\n+new\n")

        hunk = diff.hunks[0]
        assert (hunk.old_count, hunk.new_count) == (1, 1)
        assert [line.type for line in hunk.lines] == [DiffLineType.REMOVE, DiffLineType.ADD]

    def test_no_newline_marker_is_meta(self):
        """Test the no-newline marker becomes a meta line."""
        diff = parse_diff("@@ -1 +1 @@\n-a\n\\ No newline at end of file\n+b\n")

        assert [line.type for line in diff.lines] == [DiffLineType.REMOVE, DiffLineType.META, DiffLineType.ADD]

    def test_removed_line_looking_like_header(self):
        """Test '---' content inside a hunk is a removal, not a file header."""
        diff = parse_diff("@@ -1,2 +1,1 @@\n--- a yaml separator\n keep\n")

        first = diff.lines[0]
        assert first.type is DiffLineType.REMOVE
        assert first.content == "-- a yaml separator"

    def test_multiple_files_and_hunks(self):
        """Test hunks of consecutive file sections are all collected."""
        text = SIMPLE_DIFF + "diff --git a/b.txt b/b.txt\n--- a/b.txt\n+++ b/b.txt\n@@ -10,1 +10,2 @@\n ctx\n+more\n"
        diff = parse_diff(text)

        assert len(diff.hunks) == 2
        assert diff.hunks[1].lines[1].new_line_number == 11


class TestTruncation:
    """Test truncation against max_lines."""

    def test_exactly_at_limit_not_truncated(self):
        """Test a diff of exactly max_lines lines is shown whole."""
        diff = parse_diff(_big_diff(500), max_lines=500)

        assert diff.is_truncated is False
        assert diff.displayed_line_count == 500

    def test_one_over_limit_truncated(self):
        """Test 501 lines with max 500 are truncated but counted in full."""
        diff = parse_diff(_big_diff(501), max_lines=500)

        assert diff.is_truncated is True
        assert diff.displayed_line_count == 500
        assert diff.total_line_count == 501

    def test_larger_limit_not_truncated(self):
        """Test 501 lines with max 501 are not truncated."""
        diff = parse_diff(_big_diff(501), max_lines=501)

        assert diff.is_truncated is False
        assert diff.displayed_line_count == 501

    def test_show_full_returns_every_line(self):
        """Test reparsing with show_full restores the whole diff."""
        text = _big_diff(600)
        truncated = parse_diff(text, max_lines=500)
        full = parse_diff(text, max_lines=500, show_full=True)

        assert truncated.is_truncated is True
        assert full.is_truncated is False
        assert full.displayed_line_count == full.total_line_count == 600
        assert full.lines[:500] == truncated.lines

    def test_truncation_spans_hunks(self):
        """Test the limit is applied across hunks."""
        text = "@@ -1,2 +1,2 @@\n a\n b\n@@ -10,2 +10,2 @@\n c\n d\n"
        diff = parse_diff(text, max_lines=3)

        assert diff.is_truncated is True
        assert [len(h.lines) for h in diff.hunks] == [2, 1]


class TestConflictMarkers:
    """Test conflict marker detection."""

    def test_markers_in_added_lines(self):
        """Test markers are reclassified and flagged on the diff."""
        text = (
            "@@ -1,1 +1,5 @@\n"
            "+<<<<<<< HEAD\n"
            "+ours\n"
            "+=======\n"
            "+theirs\n"
            "+>>>>>>> feature\n"
        )
        diff = parse_diff(text)

        assert diff.has_conflict_markers is True
        types = [line.type for line in diff.lines]
        assert types == [
            DiffLineType.CONFLICT,
            DiffLineType.ADD,
            DiffLineType.CONFLICT,
            DiffLineType.ADD,
            DiffLineType.CONFLICT,
        ]
        assert diff.lines[2].new_line_number == 3

    def test_no_markers(self):
        """Test ordinary diffs are not flagged."""
        assert parse_diff(SIMPLE_DIFF).has_conflict_markers is False

    def test_marker_shapes(self):
        """Test marker recognition is strict about the marker shape."""
        assert is_conflict_marker("<<<<<<< HEAD") is True
        assert is_conflict_marker("||||||| base") is True
        assert is_conflict_marker(">>>>>>>") is True
        assert is_conflict_marker("=======") is True
        assert is_conflict_marker("========") is False
        assert is_conflict_marker("<<<<<<<<") is False
        assert is_conflict_marker("x <<<<<<< y") is False
