"""Reconcile local stack topology with pull requests on GitHub.

Local topology is the source of truth. Every remote write is preceded by a
comparison with what the branch's RemoteLink says was last synced, so syncing
an unchanged stack makes no remote writes at all. A failed remote call becomes
a SyncError; the writes that did succeed are still recorded locally.
"""

import concurrent.futures
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from github import GithubException

from ..errors import (
    CannotSubmitTrunkError, GitError, NeedsRestackError, NotSubmittedError, SyncError,
)
from ..github import RemoteNotConfiguredError, marker_line
from ..graph import ChildOrder, Forest, RemoteLink
from ..store import GraphStore
from ..typing import GitInterface, RemoteInterface

logger = logging.getLogger(__name__)

STACK_MARKER_ID = "pyst:stack"

REMOTE_ERRORS = (GithubException, OSError, RemoteNotConfiguredError)

WARNING_FOOTER = ("\n\n⚠️ *Part of a stack managed by pyst. "
                  "Do not merge manually using the UI - doing so may have unexpected results.*")

def format_stack_markdown(forest: Forest, branch: str, order: ChildOrder = "insertion") -> str:
    """Format the stack of `branch` as markdown, top of the stack first."""
    lines: List[str] = []
    for name in reversed(forest.stack_of(branch, order)):
        node = forest.get(name)
        if node.is_trunk:
            continue
        if node.remote is not None and not node.remote.archived:
            label = f"#{node.remote.pr_number}"
        else:
            label = f"`{name}`"
        suffix = " ⬅" if name == branch else ""
        lines.append(f"- {label}{suffix}")
    return "\n".join(lines)

def format_stack_comment(forest: Forest, branch: str, order: ChildOrder = "insertion") -> str:
    """Body of the navigation comment posted on the PR of `branch`."""
    stack_markdown = format_stack_markdown(forest, branch, order)
    return f"{marker_line(STACK_MARKER_ID)}\n**Stack**:\n{stack_markdown}{WARNING_FOOTER}"

def linked_branches(forest: Forest, branches: List[str]) -> List[str]:
    """The non-trunk branches among `branches` with a live PR link."""
    names = []
    for name in branches:
        node = forest.get(name)
        if node.is_trunk or node.remote is None or node.remote.archived:
            continue
        names.append(name)
    return names

@dataclass
class SyncResult:
    """Remote writes made for one branch."""
    branch: str
    writes: List[str] = field(default_factory=list)
    error: Optional[SyncError] = None

    @property
    def changed(self) -> bool:
        return bool(self.writes)

class RemoteSyncCoordinator:
    """Creates PRs for tracked branches and keeps their base and stack comment current."""

    def __init__(self, store: GraphStore, github: RemoteInterface, git_cmd: GitInterface,
                 concurrency: int = 0, order: ChildOrder = "insertion"):
        self.store = store
        self.github = github
        self.git_cmd = git_cmd
        self.concurrency = concurrency
        self.order = order

    def _record(self, links: Dict[str, RemoteLink]) -> None:
        if not links:
            return
        with self.store.transaction() as forest:
            for name, link in links.items():
                if name in forest:
                    forest.set_remote(name, link)

    def _reconcile(self, forest: Forest, branch: str) -> Tuple[RemoteLink, SyncResult]:
        """Bring the PR of `branch` in line with `forest`. Makes only the writes needed."""
        node = forest.get(branch)
        assert node.remote is not None
        link = node.remote.model_copy()
        result = SyncResult(branch)
        try:
            if link.base != node.parent:
                logger.info(f"  Updating base of #{link.pr_number} from {link.base} to {node.parent}")
                self.github.update_pr(link.pr_number, base=node.parent)
                link.base = node.parent
                result.writes.append("base")

            body = format_stack_comment(forest, branch, self.order)
            if body != link.comment_body:
                link.comment_id = self.github.upsert_comment(
                    link.pr_number, STACK_MARKER_ID, body, link.comment_id)
                link.comment_body = body
                result.writes.append("comment")
        except REMOTE_ERRORS as e:
            logger.error(f"Failed to sync #{link.pr_number} ({branch}): {e}")
            result.error = SyncError(branch, str(e))
        return link, result

    def _reconcile_many(self, forest: Forest, branches: List[str]) -> List[SyncResult]:
        pairs: List[Tuple[RemoteLink, SyncResult]]
        if self.concurrency > 0 and len(branches) > 1:
            with concurrent.futures.ThreadPoolExecutor(max_workers=self.concurrency) as executor:
                futures = [executor.submit(self._reconcile, forest, name) for name in branches]
                pairs = [future.result() for future in futures]
        else:
            pairs = [self._reconcile(forest, name) for name in branches]
        self._record({result.branch: link for link, result in pairs})
        return [result for _, result in pairs]

    def sync(self, branch: str) -> SyncResult:
        """Update the base and stack comment of the PR for `branch` if they changed."""
        forest = self.store.forest
        node = forest.get(branch)
        if node.is_trunk:
            raise CannotSubmitTrunkError(branch)
        if node.remote is None:
            raise NotSubmittedError(branch)
        result = self._reconcile_many(forest, [branch])[0]
        if result.error is not None:
            raise result.error
        return result

    def sync_stack(self, branch: str) -> List[SyncResult]:
        """Sync every submitted branch in the stack of `branch`.

        Errors are collected per branch in the results rather than raised.
        """
        return self.sync_branches(self.store.forest.stack_of(branch, self.order))

    def sync_branches(self, branches: List[str]) -> List[SyncResult]:
        """Sync the submitted branches among `branches`; trunks and the rest are skipped."""
        forest = self.store.forest
        return self._reconcile_many(forest, linked_branches(forest, branches))

    @staticmethod
    def _has_open_link(forest: Forest, branch: str) -> bool:
        remote = forest.get(branch).remote
        return remote is not None and not remote.archived

    def _check_submittable(self, forest: Forest, branch: str) -> None:
        node = forest.get(branch)
        if node.is_trunk:
            raise CannotSubmitTrunkError(branch)
        assert node.parent is not None
        if node.needs_restack(self.git_cmd.current_tip(node.parent)):
            raise NeedsRestackError(branch)

    def _ensure_pr(self, forest: Forest, branch: str, title: Optional[str], body: str,
                   draft: bool) -> RemoteLink:
        """Push `branch` and make sure it has an open PR, creating one when needed."""
        node = forest.get(branch)
        assert node.parent is not None
        try:
            self.git_cmd.push(branch)
        except GitError as e:
            raise SyncError(branch, str(e)) from e

        if self._has_open_link(forest, branch):
            assert node.remote is not None
            return node.remote

        try:
            existing = self.github.get_pr_for_branch(branch)
            if existing is not None:
                logger.info(f"Found existing PR #{existing} for {branch}")
                link = RemoteLink(pr_number=existing)
            else:
                pr_title = title or self.git_cmd.commit_subject(branch)
                number = self.github.create_pr(branch, node.parent, pr_title, body, draft)
                link = RemoteLink(pr_number=number, base=node.parent)
        except REMOTE_ERRORS as e:
            raise SyncError(branch, str(e)) from e
        self._record({branch: link})
        return link

    def submit(self, branch: str, title: Optional[str] = None, body: str = "",
               draft: bool = False) -> SyncResult:
        """Create the PR for `branch` if it has none, then sync it."""
        forest = self.store.forest
        self._check_submittable(forest, branch)
        created = not self._has_open_link(forest, branch)
        self._ensure_pr(forest, branch, title, body, draft)
        result = self.sync(branch)
        if created:
            result.writes.insert(0, "create")
        return result

    def submit_stack(self, branch: str, draft: bool = False) -> List[SyncResult]:
        """Submit every branch of the stack, bottom first, then sync them all.

        Branches are submitted bottom first so each PR's base branch already
        exists on the remote.
        """
        forest = self.store.forest
        names = [name for name in forest.stack_of(branch, self.order) if not forest.get(name).is_trunk]
        for name in names:
            self._check_submittable(forest, name)

        created = set()
        for name in names:
            if not self._has_open_link(forest, name):
                created.add(name)
            self._ensure_pr(forest, name, None, "", draft)
            forest = self.store.forest

        results = self._reconcile_many(self.store.forest, names)
        for result in results:
            if result.branch in created:
                result.writes.insert(0, "create")
        return results

    def refresh_merged(self, branches: List[str]) -> List[str]:
        """Archive the links of branches whose PR was merged or closed.

        Returns the names of those branches so the caller can offer cleanup.
        """
        forest = self.store.forest
        finished: List[str] = []
        links: Dict[str, RemoteLink] = {}
        for name in branches:
            node = forest.get(name)
            if node.remote is None or node.remote.archived:
                continue
            try:
                state = self.github.get_pr_state(node.remote.pr_number)
            except REMOTE_ERRORS as e:
                raise SyncError(name, str(e)) from e
            logger.debug(f"PR #{node.remote.pr_number} ({name}) is {state}")
            if state in ("merged", "closed"):
                link = node.remote.model_copy()
                link.archived = True
                links[name] = link
                finished.append(name)
        self._record(links)
        return finished
