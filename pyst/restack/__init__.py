"""Restack planning and execution.

A plan is a pre-order list of (branch, new base) steps over one subtree,
containing only the branches that are stale relative to their parent. Steps
run in order because a child can only be rebased once its parent's new tip
is known.
"""

import logging
from typing import Callable, List, Optional, Tuple

from pydantic import BaseModel, Field

from ..graph import ChildOrder, Forest
from ..store import GraphStore
from ..typing import GitInterface

logger = logging.getLogger(__name__)

class RestackStep(BaseModel):
    branch: str
    # Parent tip to rebase onto; refreshed when the step runs
    onto: str

class RestackPlan(BaseModel):
    root: str
    steps: List[RestackStep] = Field(default_factory=list)
    cursor: int = 0

    @property
    def done(self) -> bool:
        return self.cursor >= len(self.steps)

    @property
    def current(self) -> Optional[RestackStep]:
        return None if self.done else self.steps[self.cursor]

    def pairs(self) -> List[Tuple[str, str]]:
        return [(step.branch, step.onto) for step in self.steps]

Checkpoint = Callable[[RestackPlan], None]

def _no_checkpoint(plan: RestackPlan) -> None:
    pass

def compute_plan(forest: Forest, git_cmd: GitInterface, root: str,
                 order: ChildOrder = "insertion") -> RestackPlan:
    """Plan the rebases needed to make the subtree at `root` consistent.

    Clean branches are skipped, but their children are still visited: their
    comparison is against the clean branch's tip, which does not move.
    """
    forest.get(root)
    plan = RestackPlan(root=root)
    for name in forest.walk(root, order):
        node = forest.get(name)
        if node.is_trunk:
            continue
        parent_tip = git_cmd.current_tip(node.parent)
        if node.needs_restack(parent_tip):
            logger.debug(f"{name} is stale (base {str(node.base_snapshot)[:8]}, "
                         f"parent tip {parent_tip[:8]})")
            plan.steps.append(RestackStep(branch=name, onto=parent_tip))
        else:
            logger.debug(f"{name} is clean")
    return plan

class RestackEngine:
    """Executes restack plans against a git collaborator and a graph store."""

    def __init__(self, store: GraphStore, git_cmd: GitInterface, order: ChildOrder = "insertion"):
        self.store = store
        self.git_cmd = git_cmd
        self.order = order

    def compute_plan(self, root: str) -> RestackPlan:
        return compute_plan(self.store.forest, self.git_cmd, root, self.order)

    def execute_plan(self, plan: RestackPlan, checkpoint: Checkpoint = _no_checkpoint,
                     on_start: Optional[Callable[[RestackStep], None]] = None) -> None:
        """Run the plan from its cursor to the end.

        `on_start` is called before each rebase, `checkpoint` after each step
        was recorded. A ConflictMarker leaves the cursor on the failed step
        and propagates.
        """
        while not plan.done:
            step = plan.steps[plan.cursor]
            forest = self.store.forest
            node = forest.get(step.branch)
            parent = node.parent
            assert parent is not None, "trunk branches are never restacked"
            step.onto = self.git_cmd.current_tip(parent)
            if on_start is not None:
                on_start(step)
            logger.info(f"Restacking {step.branch} onto {parent} ({step.onto[:8]})")
            self.git_cmd.rebase(step.branch, step.onto, upstream=node.base_snapshot)
            self.complete_step(plan, checkpoint)

    def complete_step(self, plan: RestackPlan, checkpoint: Checkpoint = _no_checkpoint) -> None:
        """Record the step at the cursor as done and advance the cursor.

        The branch becomes clean against the step's base and every direct
        child is marked stale, whether or not its commits would still apply.
        """
        step = plan.steps[plan.cursor]
        new_tip = self.git_cmd.current_tip(step.branch)
        with self.store.transaction() as forest:
            forest.mark_clean(step.branch, step.onto)
            forest.set_tip(step.branch, new_tip)
            for child in forest.children_of(step.branch):
                forest.mark_stale(child)
        plan.cursor += 1
        logger.info(f"Restacked {step.branch} ({new_tip[:8]})")
        checkpoint(plan)
