"""Durable state machine around restack execution.

    Idle -> Planning -> Executing -> Idle
                          |   ^
                  conflict|   |continue
                          v   |
                    AwaitingResolution -> Aborting -> Idle

The session is written to disk before every rebase and after every step, so
a restack suspended on a conflict can be continued or aborted by a later
process. Only one session exists per repository.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from ..errors import (
    ConflictMarker, DirtyWorkingTreeError, NothingToAbortError, NothingToContinueError,
    PlanInProgressError, UnresolvedConflictError,
)
from ..graph import ChildOrder, Forest
from ..restack import RestackEngine, RestackPlan, RestackStep
from ..store import GraphStore
from ..typing import GitInterface
from ..util import atomic_write

logger = logging.getLogger(__name__)

SESSION_FILE_NAME = "restack.json"

class ControllerState(str, Enum):
    IDLE = "idle"
    PLANNING = "planning"
    EXECUTING = "executing"
    AWAITING_RESOLUTION = "awaiting_resolution"
    ABORTING = "aborting"

class ConflictInfo(BaseModel):
    branch: str
    onto: str
    paths: List[str] = Field(default_factory=list)

class RestackSession(BaseModel):
    """Everything needed to resume or undo a restack request."""
    state: ControllerState
    root: str
    plan: Optional[RestackPlan] = None
    # Forest as it was before the request changed anything
    snapshot: Forest
    # Tips of rebased branches before their first rebase in this request
    original_tips: Dict[str, str] = Field(default_factory=dict)
    checked_out: Optional[str] = None
    executed: List[str] = Field(default_factory=list)
    conflict: Optional[ConflictInfo] = None

@dataclass
class RestackOutcome:
    state: ControllerState
    root: str
    executed: List[str] = field(default_factory=list)
    conflict: Optional[ConflictMarker] = None

    @property
    def suspended(self) -> bool:
        return self.state == ControllerState.AWAITING_RESOLUTION

class RestackController:
    """Runs restack requests to completion, suspension or rollback."""

    def __init__(self, store: GraphStore, git_cmd: GitInterface, session_path: Optional[Path] = None,
                 order: ChildOrder = "insertion"):
        self.store = store
        self.git_cmd = git_cmd
        self.session_path = session_path
        self.engine = RestackEngine(store, git_cmd, order)
        self._memory_session: Optional[RestackSession] = None

    @classmethod
    def for_state_dir(cls, store: GraphStore, git_cmd: GitInterface, directory: Path,
                      order: ChildOrder = "insertion") -> "RestackController":
        return cls(store, git_cmd, directory / SESSION_FILE_NAME, order)

    # Session persistence

    def _load(self) -> Optional[RestackSession]:
        if self.session_path is None:
            return self._memory_session
        if not self.session_path.exists():
            return None
        return RestackSession.model_validate_json(self.session_path.read_text(encoding="utf-8"))

    def _save(self, session: RestackSession) -> None:
        if self.session_path is None:
            self._memory_session = session.model_copy(deep=True)
            return
        atomic_write(self.session_path, session.model_dump_json(indent=2))

    def _clear(self) -> None:
        if self.session_path is None:
            self._memory_session = None
        elif self.session_path.exists():
            self.session_path.unlink()

    def status(self) -> Optional[RestackSession]:
        return self._load()

    @property
    def state(self) -> ControllerState:
        session = self._load()
        return session.state if session is not None else ControllerState.IDLE

    def ensure_idle(self) -> None:
        """Raise PlanInProgressError while a restack session exists.

        Abort restores the forest captured when the restack started, so no
        other change to the forest may happen until the session is gone.
        """
        existing = self._load()
        if existing is not None:
            raise PlanInProgressError(existing.root)

    # Requests

    def restack(self, root: str) -> RestackOutcome:
        """Restack `root` and cascade through its descendants until clean."""
        self.ensure_idle()
        snapshot = self.store.forest
        snapshot.get(root)
        if not self.git_cmd.is_working_tree_clean():
            raise DirtyWorkingTreeError()

        session = RestackSession(
            state=ControllerState.PLANNING,
            root=root,
            snapshot=snapshot,
            checked_out=self.git_cmd.current_branch(),
        )
        return self._run(session)

    def continue_(self) -> RestackOutcome:
        """Resume a suspended restack after the user resolved the conflict."""
        session = self._load()
        if session is None or session.state != ControllerState.AWAITING_RESOLUTION or session.plan is None:
            raise NothingToContinueError()
        step = session.plan.current
        assert step is not None, "a suspended plan always has a current step"
        if not self.git_cmd.is_conflict_resolved(step.branch):
            raise UnresolvedConflictError(step.branch)

        logger.info(f"Continuing restack of {step.branch}")
        session.state = ControllerState.EXECUTING
        session.conflict = None
        self._save(session)
        return self._run(session, resume=True)

    def abort(self) -> None:
        """Undo everything the current request did and return to Idle."""
        session = self._load()
        if session is None:
            raise NothingToAbortError()
        session.state = ControllerState.ABORTING
        self._save(session)
        self._rollback(session)
        logger.info(f"Aborted restack of {session.root}")

    # Internals

    def _checkpoint(self, session: RestackSession, plan: RestackPlan) -> None:
        session.executed.append(plan.steps[plan.cursor - 1].branch)
        self._save(session)

    def _remember_tip(self, session: RestackSession, step: RestackStep) -> None:
        if step.branch not in session.original_tips:
            session.original_tips[step.branch] = self.git_cmd.current_tip(step.branch)
        self._save(session)

    def _run(self, session: RestackSession, resume: bool = False) -> RestackOutcome:
        try:
            if resume:
                assert session.plan is not None
                step = session.plan.steps[session.plan.cursor]
                self.git_cmd.continue_rebase(step.branch)
                self.engine.complete_step(session.plan, lambda p: self._checkpoint(session, p))

            while True:
                if session.plan is None or session.plan.done:
                    session.state = ControllerState.PLANNING
                    plan = self.engine.compute_plan(session.root)
                    if not plan.steps:
                        break
                    logger.debug(f"Restack plan for {session.root}: {plan.pairs()}")
                    session.plan = plan
                session.state = ControllerState.EXECUTING
                self._save(session)
                self.engine.execute_plan(
                    session.plan,
                    checkpoint=lambda p: self._checkpoint(session, p),
                    on_start=lambda s: self._remember_tip(session, s),
                )
        except ConflictMarker as conflict:
            session.state = ControllerState.AWAITING_RESOLUTION
            session.conflict = ConflictInfo(branch=conflict.branch, onto=conflict.onto, paths=conflict.paths)
            self._save(session)
            logger.warning(f"{conflict}")
            return RestackOutcome(session.state, session.root, list(session.executed), conflict)
        except Exception:
            logger.error(f"Restack of {session.root} failed, restoring previous state")
            self._rollback(session)
            raise

        self._finish(session)
        return RestackOutcome(ControllerState.IDLE, session.root, list(session.executed))

    def _finish(self, session: RestackSession) -> None:
        if session.checked_out and self.git_cmd.current_branch() != session.checked_out:
            self.git_cmd.checkout(session.checked_out)
        self._clear()

    def _rollback(self, session: RestackSession) -> None:
        """Restore branches, graph and checkout to what they were before the request.

        The graph is restored even when git fails; the session is kept in that
        case so the abort can be retried.
        """
        try:
            step = session.plan.current if session.plan is not None else None
            self.git_cmd.abort_rebase(step.branch if step is not None else session.root)
            for branch, tip in session.original_tips.items():
                logger.info(f"Resetting {branch} to {tip[:8]}")
                self.git_cmd.reset_branch(branch, tip)
            if session.checked_out and self.git_cmd.current_branch() != session.checked_out:
                self.git_cmd.checkout(session.checked_out)
        finally:
            self.store.replace(session.snapshot)
        self._clear()
