"""Tests for RepositorySession refresh orchestration and mutations."""

import asyncio

import pytest

from repobar.errors import InvocationError, ValidationError
from repobar.events import ErrorRaised, PropertyChanged, RefreshCompleted
from repobar.services.git.client import GitClient
from repobar.services.git.models import FileChange
from repobar.services.git.session import RepositorySession

STATUS = ["status", "--porcelain=v1", "--untracked-files=all"]
BRANCH = ["branch", "--show-current"]
UPSTREAM = ["rev-parse", "--abbrev-ref", "@{upstream}"]
AHEAD_BEHIND = ["rev-list", "--left-right", "--count", "HEAD...@{upstream}"]


def _session(runner, **kwargs):
    return RepositorySession(GitClient(runner), **kwargs)


class TestSetPath:
    """Test repository selection."""

    @pytest.mark.asyncio
    async def test_valid_repository_refreshes(self, fake_runner, git_repo):
        """Test a valid path is accepted and the first refresh fills the fields."""
        fake_runner.respond(STATUS, stdout="M  a.txt\n M b.txt\n?? c.txt\n")
        session = _session(fake_runner)

        assert await session.set_path(str(git_repo)) is True

        assert session.is_valid_repo is True
        assert session.branch == "main"
        assert session.status.staged == [FileChange("a.txt", "M")]
        assert session.status.unstaged == [FileChange("b.txt", "M")]
        assert session.status.untracked == [FileChange("c.txt", "?")]
        assert session.upstream is None
        assert (session.ahead_count, session.behind_count) == (0, 0)
        assert session.is_refreshing is False
        assert session.last_error is None

    @pytest.mark.asyncio
    async def test_invalid_path_rejected_without_tool_calls(self, fake_runner, tmp_path):
        """Test a directory without metadata is rejected locally."""
        session = _session(fake_runner)

        assert await session.set_path(str(tmp_path)) is False

        assert session.is_valid_repo is False
        assert isinstance(session.last_error, ValidationError)
        assert fake_runner.calls == []

    @pytest.mark.asyncio
    async def test_switch_hard_resets_fields(self, fake_runner, git_repo, tmp_path_factory):
        """Test switching to an invalid path clears everything from the previous repository."""
        fake_runner.respond(STATUS, stdout="M  a.txt\n")
        session = _session(fake_runner)
        await session.set_path(str(git_repo))

        other = tmp_path_factory.mktemp("not_a_repo")
        assert await session.set_path(str(other)) is False

        assert session.branch == ""
        assert session.status.is_clean is True
        assert session.is_valid_repo is False
        assert session.path == str(other.resolve())


class TestRefresh:
    """Test single-flight refresh."""

    @pytest.mark.asyncio
    async def test_concurrent_refresh_runs_one_cycle(self, fake_runner, git_repo):
        """Test overlapping refresh calls collapse into one cycle."""
        session = _session(fake_runner)
        await session.set_path(str(git_repo))
        before = fake_runner.count(BRANCH)

        results = await asyncio.gather(session.refresh(), session.refresh(), session.refresh())

        assert results == [True, False, False]
        assert fake_runner.count(BRANCH) == before + 1
        assert session.is_refreshing is False

    @pytest.mark.asyncio
    async def test_refresh_emits_completion(self, fake_runner, git_repo):
        """Test a completed refresh emits RefreshCompleted with the new snapshot."""
        session = _session(fake_runner)
        await session.set_path(str(git_repo))
        completed = []
        session.subscribe(RefreshCompleted, completed.append)

        fake_runner.respond(STATUS, stdout="?? new.txt\n")
        assert await session.refresh() is True

        assert len(completed) == 1
        assert completed[0].status.untracked == [FileChange("new.txt", "?")]

    @pytest.mark.asyncio
    async def test_failure_keeps_previous_snapshot(self, fake_runner, git_repo):
        """Test a failed refresh reports the error and keeps the last good state."""
        fake_runner.respond(STATUS, stdout="M  a.txt\n")
        session = _session(fake_runner)
        await session.set_path(str(git_repo))
        errors = []
        session.subscribe(ErrorRaised, errors.append)

        fake_runner.respond(STATUS, stderr="fatal: index file corrupt\n", exit_code=128)
        assert await session.refresh() is False

        assert session.status.staged == [FileChange("a.txt", "M")]
        assert isinstance(session.last_error, InvocationError)
        assert len(errors) == 1

        fake_runner.respond(STATUS, stdout="")
        assert await session.refresh() is True
        assert session.last_error is None

    @pytest.mark.asyncio
    async def test_upstream_counts(self, fake_runner, git_repo):
        """Test ahead/behind counts follow the upstream."""
        fake_runner.respond(UPSTREAM, stdout="origin/main\n")
        fake_runner.respond(AHEAD_BEHIND, stdout="2\t5\n")
        session = _session(fake_runner)

        await session.set_path(str(git_repo))

        assert session.upstream == "origin/main"
        assert (session.ahead_count, session.behind_count) == (2, 5)

    @pytest.mark.asyncio
    async def test_update_is_atomic_for_subscribers(self, fake_runner, git_repo):
        """Test subscribers see every field of a refresh already applied."""
        session = _session(fake_runner)
        await session.set_path(str(git_repo))
        seen = []

        def _on_change(event: PropertyChanged):
            seen.append((event.name, session.branch, session.ahead_count))

        session.subscribe(PropertyChanged, _on_change)
        fake_runner.respond(BRANCH, stdout="feature\n")
        fake_runner.respond(UPSTREAM, stdout="origin/feature\n")
        fake_runner.respond(AHEAD_BEHIND, stdout="1\t0\n")
        events = []
        session.subscribe(PropertyChanged, events.append)

        await session.refresh()

        snapshots = [entry for entry in seen if entry[0] in ("branch", "ahead_count")]
        assert snapshots == [("branch", "feature", 1), ("ahead_count", "feature", 1)]
        assert {"branch", "upstream", "ahead_count"} <= {event.name for event in events if event.source is session}


class TestMutations:
    """Test staging, commit and push."""

    @pytest.mark.asyncio
    async def test_stage_then_refresh(self, fake_runner, git_repo):
        """Test staging runs the tool and refreshes afterwards."""
        fake_runner.respond(STATUS, stdout=" M b.txt\n")
        session = _session(fake_runner)
        await session.set_path(str(git_repo))
        refreshes = fake_runner.count(BRANCH)

        fake_runner.respond(STATUS, stdout="M  b.txt\n")
        assert await session.stage("b.txt") is True

        assert ("add", "--", "b.txt") in fake_runner.calls
        assert fake_runner.count(BRANCH) == refreshes + 1
        assert session.status.staged == [FileChange("b.txt", "M")]

    @pytest.mark.asyncio
    async def test_stage_failure_reported(self, fake_runner, git_repo):
        """Test a failing stage reports an InvocationError and does not refresh."""
        session = _session(fake_runner)
        await session.set_path(str(git_repo))
        fake_runner.respond(["add", "--", "missing.txt"], stderr="fatal: pathspec did not match\n", exit_code=128)
        refreshes = fake_runner.count(BRANCH)

        assert await session.stage("missing.txt") is False

        assert isinstance(session.last_error, InvocationError)
        assert fake_runner.count(BRANCH) == refreshes

    @pytest.mark.asyncio
    async def test_commit_empty_message_rejected_locally(self, fake_runner, git_repo):
        """Test an empty message is rejected before any tool call."""
        fake_runner.respond(STATUS, stdout="M  a.txt\n")
        session = _session(fake_runner)
        await session.set_path(str(git_repo))
        calls = len(fake_runner.calls)

        assert await session.commit("") == ""
        assert await session.commit("   ") == ""

        assert isinstance(session.last_error, ValidationError)
        assert len(fake_runner.calls) == calls

    @pytest.mark.asyncio
    async def test_commit_nothing_staged_rejected(self, fake_runner, git_repo):
        """Test committing with an empty index is rejected locally."""
        fake_runner.respond(STATUS, stdout=" M a.txt\n")
        session = _session(fake_runner)
        await session.set_path(str(git_repo))
        calls = len(fake_runner.calls)

        assert await session.commit("message") == ""

        assert isinstance(session.last_error, ValidationError)
        assert len(fake_runner.calls) == calls

    @pytest.mark.asyncio
    async def test_commit_success(self, fake_runner, git_repo):
        """Test a successful commit returns the sha and refreshes."""
        fake_runner.respond(STATUS, stdout="M  a.txt\n")
        fake_runner.respond(["rev-parse", "HEAD"], stdout="abc1234def\n")
        session = _session(fake_runner)
        await session.set_path(str(git_repo))

        fake_runner.respond(STATUS, stdout="")
        sha = await session.commit("Add a")

        assert sha == "abc1234def"
        assert ("commit", "-m", "Add a") in fake_runner.calls
        assert session.status.is_clean is True

    @pytest.mark.asyncio
    async def test_push_without_upstream_rejected(self, fake_runner, git_repo):
        """Test push requires an upstream."""
        session = _session(fake_runner)
        await session.set_path(str(git_repo))

        assert await session.push() is False

        assert isinstance(session.last_error, ValidationError)
        assert fake_runner.count(["push"]) == 0

    @pytest.mark.asyncio
    async def test_push_nothing_ahead_rejected(self, fake_runner, git_repo):
        """Test push requires commits ahead of the upstream."""
        fake_runner.respond(UPSTREAM, stdout="origin/main\n")
        fake_runner.respond(AHEAD_BEHIND, stdout="0\t0\n")
        session = _session(fake_runner)
        await session.set_path(str(git_repo))

        assert await session.push() is False
        assert fake_runner.count(["push"]) == 0

    @pytest.mark.asyncio
    async def test_push_success(self, fake_runner, git_repo):
        """Test push runs when ahead and refreshes the counts."""
        fake_runner.respond(UPSTREAM, stdout="origin/main\n")
        fake_runner.respond(AHEAD_BEHIND, stdout="2\t0\n")
        session = _session(fake_runner)
        await session.set_path(str(git_repo))

        fake_runner.respond(AHEAD_BEHIND, stdout="0\t0\n")
        assert await session.push() is True

        assert fake_runner.count(["push"]) == 1
        assert session.ahead_count == 0

    @pytest.mark.asyncio
    async def test_unstage_all_requires_staged(self, fake_runner, git_repo):
        """Test unstage_all with nothing staged is rejected locally."""
        session = _session(fake_runner)
        await session.set_path(str(git_repo))

        assert await session.unstage_all() is False
        assert fake_runner.count(["restore", "--staged", "--", "."]) == 0

    @pytest.mark.asyncio
    async def test_mutation_without_repository(self, fake_runner):
        """Test mutations before a repository is selected are rejected."""
        session = _session(fake_runner)

        assert await session.stage_all() is False
        assert isinstance(session.last_error, ValidationError)
        assert fake_runner.calls == []


class TestGetDiff:
    """Test diff retrieval and the diff cache."""

    @pytest.mark.asyncio
    async def test_show_full_reuses_cached_text(self, fake_runner, git_repo):
        """Test expanding a truncated diff does not invoke the tool again."""
        fake_runner.respond(STATUS, stdout=" M a.txt\n")
        text = "@@ -1,3 +1,3 @@\n-a\n+b\n c\n d\n"
        fake_runner.respond(["diff", "--no-color", "--", "a.txt"], stdout=text)
        session = _session(fake_runner, diff_max_lines=2)
        await session.set_path(str(git_repo))

        truncated = await session.get_diff("a.txt")
        full = await session.get_diff("a.txt", show_full=True)

        assert truncated.is_truncated is True
        assert truncated.displayed_line_count == 2
        assert full.is_truncated is False
        assert full.displayed_line_count == 4
        assert fake_runner.count(["diff", "--no-color", "--", "a.txt"]) == 1

    @pytest.mark.asyncio
    async def test_untracked_file_diff(self, fake_runner, git_repo):
        """Test untracked files are diffed against the null device."""
        fake_runner.respond(STATUS, stdout="?? c.txt\n")
        args = ["diff", "--no-color", "--no-index", "--", "/dev/null", "c.txt"]
        fake_runner.respond(args, stdout="@@ -0,0 +1,2 @@\n+one\n+two\n", exit_code=1)
        session = _session(fake_runner)
        await session.set_path(str(git_repo))

        diff = await session.get_diff("c.txt")

        assert [line.content for line in diff.lines] == ["one", "two"]
        assert session.last_error is None

    @pytest.mark.asyncio
    async def test_conflict_markers_flag(self, fake_runner, git_repo):
        """Test a diff with conflict markers raises the session flag."""
        fake_runner.respond(STATUS, stdout="UU both.txt\n")
        text = "@@ -1,1 +1,3 @@\n+<<<<<<< HEAD\n+=======\n+>>>>>>> other\n"
        fake_runner.respond(["diff", "--no-color", "--", "both.txt"], stdout=text)
        session = _session(fake_runner)
        await session.set_path(str(git_repo))

        await session.get_diff("both.txt")

        assert session.has_conflict_markers is True

    @pytest.mark.asyncio
    async def test_diff_failure_reported(self, fake_runner, git_repo):
        """Test a failing diff returns None and records the error."""
        session = _session(fake_runner)
        await session.set_path(str(git_repo))
        fake_runner.respond(["diff", "--no-color", "--", "x.txt"], stderr="fatal: bad revision\n", exit_code=128)

        assert await session.get_diff("x.txt") is None
        assert isinstance(session.last_error, InvocationError)
