"""Tests for reconciling tracked branches with GitHub pull requests."""

from unittest.mock import patch

import pytest
from github import GithubException

from pyst.errors import CannotSubmitTrunkError, NeedsRestackError, NotSubmittedError, SyncError
from pyst.github import GitHubClient, marker_line
from pyst.store import GraphStore
from pyst.sync import STACK_MARKER_ID, RemoteSyncCoordinator, format_stack_comment
from pyst.tests.fakes import FakeGit, FakeGithub, make_stack


@pytest.fixture
def coordinator(store: GraphStore, github: GitHubClient, git: FakeGit) -> RemoteSyncCoordinator:
    return RemoteSyncCoordinator(store, github, git)


def repo_of(fake_github: FakeGithub):
    return fake_github.get_repo("octo/widgets")


class TestSubmit:
    def test_submit_creates_pr_and_comment(self, git: FakeGit, store: GraphStore, fake_github: FakeGithub,
                                           coordinator: RemoteSyncCoordinator) -> None:
        make_stack(git, store, ["a"])
        result = coordinator.submit("a")

        assert result.writes == ["create", "comment"]
        assert git.pushed == ["a"]
        assert fake_github.writes == ["create_pr", "create_comment"]
        pr = repo_of(fake_github).pr_for("a")
        assert pr.title == "a work"
        assert pr.base.ref == "main"

        link = store.forest.get("a").remote
        assert link is not None
        assert link.pr_number == pr.number
        assert link.base == "main"
        assert link.comment_id == pr.comments[0].id
        assert link.comment_body == pr.comments[0].body
        assert pr.comments[0].body.startswith(marker_line(STACK_MARKER_ID))

    def test_sync_is_idempotent(self, git: FakeGit, store: GraphStore, fake_github: FakeGithub,
                                coordinator: RemoteSyncCoordinator) -> None:
        make_stack(git, store, ["a", "b"])
        coordinator.submit_stack("b")
        writes = len(fake_github.writes)

        first = coordinator.sync("b")
        second = coordinator.sync("b")

        assert not first.changed and not second.changed
        assert len(fake_github.writes) == writes


class TestPreconditions:
    def test_sync_requires_pr(self, git: FakeGit, store: GraphStore, coordinator: RemoteSyncCoordinator) -> None:
        make_stack(git, store, ["a"])
        with pytest.raises(NotSubmittedError):
            coordinator.sync("a")
        with pytest.raises(CannotSubmitTrunkError):
            coordinator.submit("main")

    def test_stale_branch_cannot_be_submitted(self, git: FakeGit, store: GraphStore, fake_github: FakeGithub,
                                              coordinator: RemoteSyncCoordinator) -> None:
        make_stack(git, store, ["a"])
        git.commit("main", "upstream change")
        with pytest.raises(NeedsRestackError):
            coordinator.submit("a")
        assert git.pushed == []
        assert fake_github.writes == []


class TestStackComment:
    def test_stack_comment_lists_stack_top_first(self, git: FakeGit, store: GraphStore, fake_github: FakeGithub,
                                                coordinator: RemoteSyncCoordinator) -> None:
        make_stack(git, store, ["a", "b"])
        coordinator.submit_stack("a")
        repo = repo_of(fake_github)
        pr_a, pr_b = repo.pr_for("a"), repo.pr_for("b")

        assert pr_b.base.ref == "a"
        body = pr_a.comments[0].body
        assert f"- #{pr_b.number}\n- #{pr_a.number} ⬅" in body
        assert "**Stack**:" in body
        assert "Do not merge manually" in body

    def test_unsubmitted_branch_rendered_by_name(self, git: FakeGit, store: GraphStore) -> None:
        make_stack(git, store, ["a", "b"])
        body = format_stack_comment(store.forest, "a")
        assert "- `b`\n- `a` ⬅" in body


class TestReconcile:
    def test_reparent_updates_base_and_comment(self, git: FakeGit, store: GraphStore, fake_github: FakeGithub,
                                              coordinator: RemoteSyncCoordinator) -> None:
        make_stack(git, store, ["a", "b"])
        coordinator.submit_stack("a")
        pr_a = repo_of(fake_github).pr_for("a")
        with store.transaction() as forest:
            forest.remove_and_reparent_children("a")

        fake_github.writes.clear()
        result = coordinator.sync("b")

        assert result.writes == ["base", "comment"]
        assert fake_github.writes == ["edit_pr", "edit_comment"]
        pr_b = repo_of(fake_github).pr_for("b")
        assert pr_b.base.ref == "main"
        assert f"#{pr_a.number}" not in pr_b.comments[0].body
        assert store.forest.get("b").remote.base == "main"

    def test_remote_failure_is_non_fatal(self, git: FakeGit, store: GraphStore, fake_github: FakeGithub,
                                         coordinator: RemoteSyncCoordinator) -> None:
        make_stack(git, store, ["a", "b"])
        coordinator.submit_stack("a")
        with store.transaction() as forest:
            forest.remove_and_reparent_children("a")
        forest_before = store.forest.model_dump()

        fake_github.failure = GithubException(502, {"message": "Bad Gateway"}, None)
        with pytest.raises(SyncError) as exc_info:
            coordinator.sync("b")
        assert exc_info.value.branch == "b"
        assert store.forest.model_dump() == forest_before

        fake_github.failure = None
        assert coordinator.sync("b").writes == ["base", "comment"]

    def test_partial_sync_keeps_successful_writes(self, git: FakeGit, store: GraphStore, github: GitHubClient,
                                                  coordinator: RemoteSyncCoordinator) -> None:
        make_stack(git, store, ["a", "b"])
        coordinator.submit_stack("a")
        with store.transaction() as forest:
            forest.remove_and_reparent_children("a")

        failure = GithubException(500, {"message": "boom"}, None)
        with patch.object(github, "upsert_comment", side_effect=failure):
            with pytest.raises(SyncError):
                coordinator.sync("b")

        link = store.forest.get("b").remote
        assert link is not None and link.base == "main"
        assert coordinator.sync("b").writes == ["comment"]

    def test_sync_stack_collects_errors(self, git: FakeGit, store: GraphStore, fake_github: FakeGithub,
                                        coordinator: RemoteSyncCoordinator) -> None:
        make_stack(git, store, ["a", "b"])
        coordinator.submit_stack("a")
        make_stack(git, store, ["c"], parent="b")

        fake_github.failure = GithubException(500, {"message": "boom"}, None)
        results = coordinator.sync_stack("a")
        assert [result.branch for result in results] == ["a", "b"]
        assert all(result.error is not None for result in results)

    def test_parallel_sync_matches_sequential(self, git: FakeGit, store: GraphStore, github: GitHubClient,
                                              fake_github: FakeGithub) -> None:
        make_stack(git, store, ["a", "b", "c"])
        coordinator = RemoteSyncCoordinator(store, github, git, concurrency=4)
        results = coordinator.submit_stack("a")

        assert [result.branch for result in results] == ["a", "b", "c"]
        assert all(result.writes == ["create", "comment"] for result in results)
        assert fake_github.writes.count("create_comment") == 3
        assert all(store.forest.get(name).remote.comment_id is not None for name in ("a", "b", "c"))
        assert not any(result.changed for result in coordinator.sync_stack("a"))


class TestAdoption:
    def test_submit_adopts_existing_pr(self, git: FakeGit, store: GraphStore, fake_github: FakeGithub,
                                       coordinator: RemoteSyncCoordinator) -> None:
        make_stack(git, store, ["a"])
        existing = repo_of(fake_github).create_pull("a", "", "main", "a")
        fake_github.writes.clear()

        coordinator.submit("a")

        assert "create_pr" not in fake_github.writes
        assert store.forest.get("a").remote.pr_number == existing.number

    def test_comment_found_by_marker(self, git: FakeGit, store: GraphStore, fake_github: FakeGithub,
                                     coordinator: RemoteSyncCoordinator) -> None:
        make_stack(git, store, ["a"])
        coordinator.submit("a")
        pr = repo_of(fake_github).pr_for("a")
        with store.transaction() as forest:
            link = forest.get("a").remote.model_copy()
            link.comment_id = None
            link.comment_body = None
            forest.set_remote("a", link)

        coordinator.sync("a")

        assert len(pr.comments) == 1
        assert store.forest.get("a").remote.comment_id == pr.comments[0].id


class TestMergedPullRequests:
    def test_refresh_merged_archives_links(self, git: FakeGit, store: GraphStore, fake_github: FakeGithub,
                                           coordinator: RemoteSyncCoordinator) -> None:
        make_stack(git, store, ["a", "b"])
        coordinator.submit_stack("a")
        repo_of(fake_github).pr_for("a").merged = True

        assert coordinator.refresh_merged(["main", "a", "b"]) == ["a"]
        assert store.forest.get("a").remote.archived
        assert not store.forest.get("b").remote.archived
        assert coordinator.refresh_merged(["a", "b"]) == []

    def test_resubmit_after_close_keeps_old_link(self, git: FakeGit, store: GraphStore,
                                                 fake_github: FakeGithub,
                                                 coordinator: RemoteSyncCoordinator) -> None:
        make_stack(git, store, ["a"])
        coordinator.submit("a")
        closed = repo_of(fake_github).pr_for("a")
        closed.state = "closed"
        assert coordinator.refresh_merged(["a"]) == ["a"]

        result = coordinator.submit("a")

        assert result.writes == ["create", "comment"]
        link = store.forest.get("a").remote
        assert link is not None and not link.archived
        assert link.pr_number != closed.number
        archived = store.forest.archived_links
        assert [(entry.branch, entry.link.pr_number) for entry in archived] == [("a", closed.number)]
        assert archived[0].link.archived

    def test_archived_link_not_synced(self, git: FakeGit, store: GraphStore, fake_github: FakeGithub,
                                      coordinator: RemoteSyncCoordinator) -> None:
        make_stack(git, store, ["a"])
        coordinator.submit("a")
        repo_of(fake_github).pr_for("a").merged = True
        coordinator.refresh_merged(["a"])
        fake_github.writes.clear()

        assert coordinator.sync_branches(["main", "a"]) == []
        assert fake_github.writes == []
