"""Exceptions raised by pyst.

Structural errors are raised before anything is mutated. A ConflictMarker is
expected and recoverable. Concurrency errors reject a request outright. A
SyncError never undoes local state.
"""

from typing import List, Optional


class PystError(Exception):
    """Base class for all pyst errors."""


# Structural

class CycleError(PystError):
    """Setting a parent would make the branch forest cyclic."""

    def __init__(self, branch: str, parent: str):
        super().__init__(f"Cannot make `{parent}` the parent of `{branch}`: it would create a cycle")
        self.branch = branch
        self.parent = parent


class DuplicateError(PystError):
    """The branch is already tracked."""

    def __init__(self, branch: str):
        super().__init__(f"Branch `{branch}` is already tracked")
        self.branch = branch


class DanglingParentError(PystError):
    """A parent (or child) reference points at an untracked branch."""

    def __init__(self, branch: str, parent: str):
        super().__init__(f"Parent `{parent}` of `{branch}` is not tracked. Track it first with `pyst track`.")
        self.branch = branch
        self.parent = parent


class HasChildrenError(PystError):
    """The branch still has children and cannot be untracked."""

    def __init__(self, branch: str, children: List[str]):
        super().__init__(
            f"Branch `{branch}` has children ({', '.join(children)}); reparent or remove them first")
        self.branch = branch
        self.children = children


class BranchNotTrackedError(PystError):
    def __init__(self, branch: str):
        super().__init__(f"Branch `{branch}` is not tracked with pyst")
        self.branch = branch


class CannotSubmitTrunkError(PystError):
    def __init__(self, branch: str):
        super().__init__(f"Branch `{branch}` is a trunk branch and cannot be submitted")
        self.branch = branch


class NeedsRestackError(PystError):
    def __init__(self, branch: str):
        super().__init__(f"Branch `{branch}` needs to be restacked first. Run `pyst restack`.")
        self.branch = branch


class DirtyWorkingTreeError(PystError):
    def __init__(self) -> None:
        super().__init__("Working tree has uncommitted changes; commit or stash them first")


# Execution

class ConflictMarker(PystError):
    """A rebase stopped on a conflict.

    The higher level controller catches this and suspends the plan until the
    user resolves it.
    """

    def __init__(self, branch: str, onto: str, paths: Optional[List[str]] = None):
        self.branch = branch
        self.onto = onto
        self.paths = paths or []
        msg = f"Conflict while rebasing `{branch}` onto {onto[:8]}"
        if self.paths:
            msg += f" ({', '.join(self.paths)})"
        super().__init__(msg)


class UnresolvedConflictError(PystError):
    def __init__(self, branch: str):
        super().__init__(f"Conflicts in `{branch}` are not resolved yet; resolve and `git add` them first")
        self.branch = branch


# Concurrency

class PlanInProgressError(PystError):
    def __init__(self, root: str):
        super().__init__(
            f"A restack of `{root}` is already in progress. Run `pyst continue` or `pyst abort`.")
        self.root = root


class RepositoryBusyError(PystError):
    def __init__(self, lock_path: str, owner: Optional[int] = None):
        who = f" (held by pid {owner})" if owner else ""
        super().__init__(f"Another pyst process is working on this repository{who}: {lock_path}")
        self.lock_path = lock_path
        self.owner = owner


class NothingToContinueError(PystError):
    def __init__(self) -> None:
        super().__init__("No restack is waiting for conflict resolution")


class NothingToAbortError(PystError):
    def __init__(self) -> None:
        super().__init__("No restack is in progress")


# Remote

class SyncError(PystError):
    """A remote call failed. Local state stays authoritative."""

    def __init__(self, branch: str, message: str):
        super().__init__(f"Failed to sync `{branch}`: {message}")
        self.branch = branch


class NotSubmittedError(PystError):
    def __init__(self, branch: str):
        super().__init__(f"Branch `{branch}` has no pull request yet. Run `pyst submit`.")
        self.branch = branch


# Collaborators

class GitError(PystError):
    """A git command failed unexpectedly."""
