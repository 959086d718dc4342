"""In-memory fakes for the git and GitHub collaborators."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Set, Tuple

from github import GithubException, UnknownObjectException

from pyst.errors import ConflictMarker, GitError
from pyst.store import GraphStore
from pyst.typing import CommitHash

logger = logging.getLogger(__name__)

@dataclass
class FakeCommit:
    sha: str
    parent: Optional[str]
    message: str

@dataclass
class PendingRebase:
    branch: str
    onto: str
    messages: List[str]

class FakeGit:
    """A commit graph with branches, rebases and scripted conflicts.

    Commits carry only a message. Rebasing replays the messages of the
    commits in upstream..branch on top of `onto` as brand new commits.
    """

    def __init__(self, trunk: str = "main") -> None:
        self.commits: Dict[str, FakeCommit] = {}
        self.branches: Dict[str, str] = {}
        self.head: Optional[str] = None
        self.dirty = False
        self.pushed: List[str] = []
        self.rebase_calls: List[Tuple[str, str, Optional[str]]] = []
        # Branches whose next rebase stops on a conflict, with the conflicted paths
        self.conflicts: Dict[str, List[str]] = {}
        self.unresolved: Set[str] = set()
        self.pending: Optional[PendingRebase] = None
        self.fail_on: Set[str] = set()
        self._counter = 0
        root = self._new_commit(None, "initial")
        self.branches[trunk] = root
        self.head = trunk

    def _new_commit(self, parent: Optional[str], message: str) -> str:
        self._counter += 1
        sha = f"{self._counter:040x}"
        self.commits[sha] = FakeCommit(sha, parent, message)
        return sha

    def _history(self, sha: Optional[str]) -> List[str]:
        """Commits reachable from `sha`, newest first."""
        result = []
        while sha is not None:
            result.append(sha)
            sha = self.commits[sha].parent
        return result

    def _check(self, op: str) -> None:
        if op in self.fail_on:
            raise GitError(f"git {op} failed")

    # Test helpers

    def commit(self, branch: str, message: str) -> str:
        sha = self._new_commit(self.branches[branch], message)
        self.branches[branch] = sha
        return sha

    def messages(self, branch: str) -> List[str]:
        """Commit messages on `branch`, oldest first."""
        return [self.commits[sha].message for sha in reversed(self._history(self.branches[branch]))]

    def resolve(self, branch: str) -> None:
        self.unresolved.discard(branch)

    # GitInterface

    def current_tip(self, ref: str) -> CommitHash:
        if ref in self.branches:
            return CommitHash(self.branches[ref])
        if ref in self.commits:
            return CommitHash(ref)
        raise GitError(f"unknown revision {ref}")

    def merge_base(self, a: str, b: str) -> CommitHash:
        ours = set(self._history(self.current_tip(a)))
        for sha in self._history(self.current_tip(b)):
            if sha in ours:
                return CommitHash(sha)
        raise GitError(f"no merge base for {a} and {b}")

    def rebase(self, branch: str, onto: str, upstream: Optional[str] = None) -> None:
        self._check("rebase")
        self.rebase_calls.append((branch, onto, upstream))
        stop = set(self._history(upstream if upstream else self.merge_base(onto, branch)))
        replay = [sha for sha in self._history(self.branches[branch]) if sha not in stop]
        messages = [self.commits[sha].message for sha in reversed(replay)]
        self.head = branch
        if branch in self.conflicts:
            paths = self.conflicts.pop(branch)
            self.pending = PendingRebase(branch, onto, messages)
            self.unresolved.add(branch)
            raise ConflictMarker(branch, onto, paths)
        if replay and self.commits[replay[-1]].parent == self.current_tip(onto):
            # Already on top of onto
            return
        self._replay(branch, onto, messages)

    def _replay(self, branch: str, onto: str, messages: List[str]) -> None:
        sha = self.current_tip(onto)
        for message in messages:
            sha = self._new_commit(sha, message)
        self.branches[branch] = sha

    def continue_rebase(self, branch: str) -> None:
        if self.pending is None:
            return
        if branch in self.conflicts:
            paths = self.conflicts.pop(branch)
            self.unresolved.add(branch)
            raise ConflictMarker(branch, self.pending.onto, paths)
        pending = self.pending
        self.pending = None
        self._replay(pending.branch, pending.onto, pending.messages)

    def abort_rebase(self, branch: str) -> None:
        self.pending = None
        self.unresolved.discard(branch)

    def is_conflict_resolved(self, branch: str) -> bool:
        return branch not in self.unresolved

    def create_branch(self, name: str, start: str) -> None:
        if name in self.branches:
            raise GitError(f"branch {name} already exists")
        self.branches[name] = self.current_tip(start)

    def delete_branch(self, name: str) -> None:
        del self.branches[name]

    def reset_branch(self, name: str, commit: str) -> None:
        self._check("reset")
        self.branches[name] = self.current_tip(commit)

    def branch_exists(self, name: str) -> bool:
        return name in self.branches

    def current_branch(self) -> Optional[str]:
        return self.head

    def checkout(self, name: str) -> None:
        if name not in self.branches:
            raise GitError(f"pathspec {name} did not match")
        self.head = name

    def is_working_tree_clean(self) -> bool:
        return not self.dirty

    def commit_subject(self, ref: str) -> str:
        return self.commits[self.current_tip(ref)].message

    def push(self, branch: str) -> None:
        self._check("push")
        self.pushed.append(branch)


class FakeRef:
    def __init__(self, ref: str) -> None:
        self.ref = ref


class FakeIssueComment:
    def __init__(self, pr: FakePullRequest, id: int, body: str) -> None:
        self._pr = pr
        self.id = id
        self.body = body

    def edit(self, body: str) -> None:
        self._pr.repo_ref.github_ref.record_write("edit_comment")
        self.body = body


class FakePullRequest:
    def __init__(self, repo: FakeRepository, number: int, title: str, body: str,
                 base: str, head: str, draft: bool = False) -> None:
        self.repo_ref = repo
        self.number = number
        self.title = title
        self.body = body
        self.state = "open"
        self.merged = False
        self.draft = draft
        self.base = FakeRef(base)
        self.head = FakeRef(head)
        self.comments: List[FakeIssueComment] = []

    def edit(self, body: Optional[str] = None, base: Optional[str] = None) -> None:
        self.repo_ref.github_ref.record_write("edit_pr")
        if body is not None:
            self.body = body
        if base is not None:
            self.base = FakeRef(base)

    def create_issue_comment(self, body: str) -> FakeIssueComment:
        github = self.repo_ref.github_ref
        github.record_write("create_comment")
        comment = FakeIssueComment(self, github.next_id(), body)
        self.comments.append(comment)
        return comment

    def get_issue_comments(self) -> List[FakeIssueComment]:
        return list(self.comments)

    def get_issue_comment(self, id: int) -> FakeIssueComment:
        for comment in self.comments:
            if comment.id == id:
                return comment
        raise UnknownObjectException(404, {"message": "Not Found"}, None)


class FakeRepository:
    def __init__(self, github: FakeGithub, full_name: str) -> None:
        self.github_ref = github
        self.full_name = full_name
        self.pulls: Dict[int, FakePullRequest] = {}

    def get_pull(self, number: int) -> FakePullRequest:
        self.github_ref.check()
        if number not in self.pulls:
            raise UnknownObjectException(404, {"message": "Not Found"}, None)
        return self.pulls[number]

    def get_pulls(self, state: str = "open", head: str = "") -> List[FakePullRequest]:
        self.github_ref.check()
        branch = head.split(":", 1)[-1] if head else ""
        return [pr for pr in self.pulls.values()
                if (state == "all" or pr.state == state) and (not branch or pr.head.ref == branch)]

    def create_pull(self, title: str, body: str, base: str, head: str,
                    draft: bool = False) -> FakePullRequest:
        self.github_ref.record_write("create_pr")
        pr = FakePullRequest(self, self.github_ref.next_id(), title, body, base, head, draft)
        self.pulls[pr.number] = pr
        return pr

    def pr_for(self, head: str) -> FakePullRequest:
        for pr in self.pulls.values():
            if pr.head.ref == head:
                return pr
        raise KeyError(head)


@dataclass
class FakeGithub:
    """Fake of the PyGithub entry object, counting every remote write."""
    repos: Dict[str, FakeRepository] = field(default_factory=dict)
    writes: List[str] = field(default_factory=list)
    # When set, every call raises this until cleared
    failure: Optional[GithubException] = None
    _ids: int = 0

    def next_id(self) -> int:
        self._ids += 1
        return self._ids

    def check(self) -> None:
        if self.failure is not None:
            raise self.failure

    def record_write(self, kind: str) -> None:
        self.check()
        self.writes.append(kind)

    def get_repo(self, full_name_or_id: str) -> FakeRepository:
        self.check()
        if full_name_or_id not in self.repos:
            self.repos[full_name_or_id] = FakeRepository(self, full_name_or_id)
        return self.repos[full_name_or_id]


def make_stack(git: FakeGit, store: GraphStore, names: List[str], parent: str = "main") -> None:
    """Create a chain of branches on top of `parent`, one commit each, and track them."""
    for name in names:
        git.create_branch(name, parent)
        git.commit(name, f"{name} work")
        with store.transaction() as forest:
            forest.track(name, parent, tip=git.current_tip(name), base_snapshot=git.current_tip(parent))
        parent = name
