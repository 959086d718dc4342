"""The branch forest: tracked branches, their parents and their pull requests.

Nodes are addressed by branch name only. A node records the name of its
parent and the ordered names of its children, never references to other node
objects, so every structural check is a walk over the `branches` mapping.

A Forest is treated as a value. Callers that want to change the tracked
state take a copy (see `pyst.store.GraphStore.transaction`), mutate it, and
hand it back whole.
"""

import logging
from typing import Dict, Iterator, List, Literal, Optional

from pydantic import BaseModel, Field

from ..errors import (
    BranchNotTrackedError, CycleError, DanglingParentError, DuplicateError, HasChildrenError,
)

logger = logging.getLogger(__name__)

ChildOrder = Literal["insertion", "name"]

class RemoteLink(BaseModel):
    """Association between a branch and its pull request."""
    pr_number: int
    # Base branch name the PR was last synced with
    base: Optional[str] = None
    # Stack comment posted on the PR, as last synced
    comment_id: Optional[int] = None
    comment_body: Optional[str] = None
    archived: bool = False

class ArchivedLink(BaseModel):
    """A link kept after its branch was cleaned up."""
    branch: str
    link: RemoteLink
    reason: str = "merged"

class BranchNode(BaseModel):
    """A locally tracked branch participating in a stack."""
    name: str
    parent: Optional[str] = None
    children: List[str] = Field(default_factory=list)
    # Last known good commit of the branch tip
    tip: Optional[str] = None
    # Tip of the parent when this branch was last restacked
    base_snapshot: Optional[str] = None
    stale: bool = False
    remote: Optional[RemoteLink] = None

    @property
    def is_trunk(self) -> bool:
        return self.parent is None

    def needs_restack(self, parent_tip: Optional[str]) -> bool:
        """Whether this branch has to be rebased onto a parent at `parent_tip`."""
        if self.is_trunk:
            return False
        return self.stale or self.base_snapshot != parent_tip

class Forest(BaseModel):
    """A forest of linear (or forking) stacks keyed by branch name."""
    version: int = 1
    branches: Dict[str, BranchNode] = Field(default_factory=dict)
    archived_links: List[ArchivedLink] = Field(default_factory=list)

    def copy_forest(self) -> "Forest":
        return self.model_copy(deep=True)

    # Queries

    def __contains__(self, name: object) -> bool:
        return name in self.branches

    def get(self, name: str) -> BranchNode:
        try:
            return self.branches[name]
        except KeyError:
            raise BranchNotTrackedError(name)

    def parent_of(self, name: str) -> Optional[str]:
        return self.get(name).parent

    def children_of(self, name: str, order: ChildOrder = "insertion") -> List[str]:
        children = list(self.get(name).children)
        if order == "name":
            children.sort()
        return children

    def ancestors_of(self, name: str) -> List[str]:
        """Ancestors of `name` in root-to-node order, excluding the node itself."""
        ancestors: List[str] = []
        current = self.get(name).parent
        while current is not None:
            if current in ancestors or current == name:
                raise CycleError(name, current)
            ancestors.append(current)
            current = self.get(current).parent
        ancestors.reverse()
        return ancestors

    def descendants_of(self, name: str, order: ChildOrder = "insertion") -> List[str]:
        """Descendants of `name` in pre-order, excluding the node itself."""
        return list(self.walk(name, order))[1:]

    def walk(self, root: str, order: ChildOrder = "insertion") -> Iterator[str]:
        """Pre-order walk of the subtree at `root`, parents before children."""
        pending = [root]
        seen = set()
        while pending:
            name = pending.pop()
            if name in seen:
                raise CycleError(name, name)
            seen.add(name)
            yield name
            pending.extend(reversed(self.children_of(name, order)))

    def trunks(self) -> List[str]:
        return [name for name, node in self.branches.items() if node.parent is None]

    def walk_all(self, order: ChildOrder = "insertion") -> Iterator[str]:
        for trunk in self.trunks():
            yield from self.walk(trunk, order)

    def trunk_of(self, name: str) -> str:
        ancestors = self.ancestors_of(name)
        return ancestors[0] if ancestors else name

    def stack_of(self, name: str, order: ChildOrder = "insertion") -> List[str]:
        """The stack `name` belongs to: its ancestors, itself and its descendants."""
        return self.ancestors_of(name) + [name] + self.descendants_of(name, order)

    # Mutations

    def track(self, name: str, parent: Optional[str] = None, tip: Optional[str] = None,
              base_snapshot: Optional[str] = None) -> BranchNode:
        """Register `name` under `parent`, or as a trunk when parent is None."""
        if name in self.branches:
            raise DuplicateError(name)
        if parent is not None:
            if parent == name:
                raise CycleError(name, parent)
            if parent not in self.branches:
                raise DanglingParentError(name, parent)
            if name in self.ancestors_of(parent):
                raise CycleError(name, parent)

        node = BranchNode(name=name, parent=parent, tip=tip,
                          base_snapshot=base_snapshot if parent is not None else None)
        self.branches[name] = node
        if parent is not None:
            self.branches[parent].children.append(name)
        logger.debug(f"Tracked {name} (parent={parent})")
        return node

    def untrack(self, name: str) -> BranchNode:
        node = self.get(name)
        if node.children:
            raise HasChildrenError(name, list(node.children))
        if node.parent is not None:
            self.branches[node.parent].children.remove(name)
        del self.branches[name]
        logger.debug(f"Untracked {name}")
        return node

    def reparent(self, name: str, new_parent: str) -> None:
        """Move `name` (and its subtree) under `new_parent`."""
        node = self.get(name)
        if new_parent not in self.branches:
            raise DanglingParentError(name, new_parent)
        if new_parent == name or new_parent in self.descendants_of(name):
            raise CycleError(name, new_parent)
        if node.parent == new_parent:
            return
        if node.parent is not None:
            self.branches[node.parent].children.remove(name)
        node.parent = new_parent
        self.branches[new_parent].children.append(name)
        node.stale = True

    def remove_and_reparent_children(self, name: str, reason: str = "merged") -> BranchNode:
        """Remove `name`, handing its children to its parent in its place.

        Used after a branch's PR was merged. The children are marked stale and
        the branch's remote link is archived.
        """
        node = self.get(name)
        if node.parent is None and node.children:
            raise HasChildrenError(name, list(node.children))
        parent = node.parent
        if parent is not None:
            siblings = self.branches[parent].children
            index = siblings.index(name)
            siblings[index:index + 1] = node.children
            for child in node.children:
                child_node = self.branches[child]
                child_node.parent = parent
                child_node.stale = True
        if node.remote is not None:
            link = node.remote.model_copy()
            link.archived = True
            self.archived_links.append(ArchivedLink(branch=name, link=link, reason=reason))
        del self.branches[name]
        logger.debug(f"Removed {name}, children moved to {parent}")
        return node

    def mark_clean(self, name: str, base_commit: str) -> None:
        node = self.get(name)
        node.base_snapshot = base_commit
        node.stale = False

    def mark_stale(self, name: str) -> None:
        self.get(name).stale = True

    def set_tip(self, name: str, tip: str) -> None:
        self.get(name).tip = tip

    def set_remote(self, name: str, link: Optional[RemoteLink], reason: str = "superseded") -> None:
        """Attach `link` to `name`.

        A previous link for a different PR is moved to `archived_links`.
        """
        node = self.get(name)
        old = node.remote
        if old is not None and (link is None or link.pr_number != old.pr_number):
            kept = old.model_copy()
            kept.archived = True
            self.archived_links.append(ArchivedLink(branch=name, link=kept, reason=reason))
            logger.debug(f"Archived link #{old.pr_number} of {name} ({reason})")
        node.remote = link

    # Invariants

    def validate(self) -> None:
        """Check that every reference resolves and the forest has no cycle."""
        for name, node in self.branches.items():
            if node.name != name:
                raise DanglingParentError(name, node.name)
            if node.parent is not None:
                parent = self.branches.get(node.parent)
                if parent is None:
                    raise DanglingParentError(name, node.parent)
                if name not in parent.children:
                    raise DanglingParentError(name, node.parent)
            for child in node.children:
                child_node = self.branches.get(child)
                if child_node is None or child_node.parent != name:
                    raise DanglingParentError(child, name)
        for name in self.branches:
            self.ancestors_of(name)
