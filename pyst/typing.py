"""Common types used across the codebase."""

from typing import NewType, Optional, Protocol

# Create NewTypes for identifiers
CommitHash = NewType('CommitHash', str)
PrNumber = NewType('PrNumber', int)

class GitInterface(Protocol):
    """What the stack engine needs from version control."""

    def current_tip(self, ref: str) -> CommitHash:
        """Resolve a ref to a full commit hash."""
        ...

    def rebase(self, branch: str, onto: str, upstream: Optional[str] = None) -> None:
        """Rebase `branch` onto `onto`. Raises ConflictMarker on conflict."""
        ...

    def continue_rebase(self, branch: str) -> None:
        """Finish a rebase the user resolved. Raises ConflictMarker on a new conflict."""
        ...

    def abort_rebase(self, branch: str) -> None:
        ...

    def is_conflict_resolved(self, branch: str) -> bool:
        ...

    def create_branch(self, name: str, start: str) -> None:
        ...

    def delete_branch(self, name: str) -> None:
        ...

    def reset_branch(self, name: str, commit: str) -> None:
        """Point `name` at `commit` without touching other branches."""
        ...

    def branch_exists(self, name: str) -> bool:
        ...

    def current_branch(self) -> Optional[str]:
        """Name of the checked out branch, None when detached."""
        ...

    def checkout(self, name: str) -> None:
        ...

    def merge_base(self, a: str, b: str) -> CommitHash:
        """Best common ancestor of two refs."""
        ...

    def is_working_tree_clean(self) -> bool:
        ...

    def commit_subject(self, ref: str) -> str:
        ...

    def push(self, branch: str) -> None:
        ...

class RemoteInterface(Protocol):
    """What the sync coordinator needs from the code-hosting service."""

    def create_pr(self, branch: str, base: str, title: str, body: str, draft: bool = False) -> PrNumber:
        ...

    def update_pr(self, number: int, base: Optional[str] = None, body: Optional[str] = None) -> None:
        ...

    def get_pr_for_branch(self, branch: str) -> Optional[PrNumber]:
        ...

    def get_pr_state(self, number: int) -> str:
        """One of 'open', 'closed' or 'merged'."""
        ...

    def upsert_comment(self, number: int, marker_id: str, body: str,
                       comment_id: Optional[int] = None) -> int:
        """Create or replace the comment identified by `marker_id`. Returns its id."""
        ...

    def pr_url(self, number: int) -> str:
        ...

