"""Git interfaces and implementation."""

import os
import shlex
import logging
from pathlib import Path
from typing import Dict, List, Optional

import git
from git.exc import GitCommandError, InvalidGitRepositoryError, NoSuchPathError

from ..config.models import PystConfig
from ..errors import ConflictMarker, GitError
from ..typing import CommitHash, GitInterface

__all__ = ["GitInterface", "RealGit"]

# Get module logger
logger = logging.getLogger(__name__)

# Editor used when git wants to confirm a commit message mid-rebase
NON_INTERACTIVE_ENV = {"GIT_EDITOR": "true"}

class RealGit:
    """Real Git implementation backed by GitPython."""
    def __init__(self, config: PystConfig, repo_dir: Optional[str] = None):
        """Initialize with config and the directory to operate in."""
        self.config: PystConfig = config
        self.repo_dir = repo_dir or os.getcwd()
        self._repo: Optional[git.Repo] = None

    @property
    def repo(self) -> git.Repo:
        if self._repo is None:
            try:
                self._repo = git.Repo(self.repo_dir, search_parent_directories=True)
            except (InvalidGitRepositoryError, NoSuchPathError):
                raise GitError(f"Not in a git repository: {self.repo_dir}")
        return self._repo

    def run_cmd(self, command: str, env: Optional[Dict[str, str]] = None) -> str:
        """Run git command."""
        cmd_str = command.strip()
        if self.config.user.log_git_commands:
            logger.info(f"> git {cmd_str}")
        else:
            logger.debug(f"> git {cmd_str}")

        cmd_parts = shlex.split(cmd_str)
        git_command = cmd_parts[0]
        git_args = cmd_parts[1:]
        method = getattr(self.repo.git, git_command.replace('-', '_'))
        try:
            if env:
                result = method(*git_args, env={**os.environ, **env})
            else:
                result = method(*git_args)
        except GitCommandError as e:
            raise GitError(f"Git command failed: {e}") from e
        return result if isinstance(result, str) else str(result)

    def must_git(self, command: str, env: Optional[Dict[str, str]] = None) -> str:
        """Run git command, failing on error."""
        return self.run_cmd(command, env)

    def git_dir(self) -> Path:
        """Directory for repository-scoped state that git never tracks."""
        return Path(self.repo.common_dir)

    def working_dir(self) -> Path:
        return Path(self.repo.working_tree_dir or self.repo_dir)

    def current_tip(self, ref: str) -> CommitHash:
        return CommitHash(self.must_git(f"rev-parse --verify {ref}^{{commit}}").strip())

    def branch_exists(self, name: str) -> bool:
        try:
            self.must_git(f"rev-parse --verify --quiet refs/heads/{name}")
        except GitError:
            return False
        return True

    def current_branch(self) -> Optional[str]:
        if self.repo.head.is_detached:
            return None
        return self.repo.active_branch.name

    def checkout(self, name: str) -> None:
        self.must_git(f"checkout {name}")

    def create_branch(self, name: str, start: str) -> None:
        self.must_git(f"branch {name} {start}")

    def delete_branch(self, name: str) -> None:
        self.must_git(f"branch -D {name}")

    def reset_branch(self, name: str, commit: str) -> None:
        if self.current_branch() == name:
            self.must_git(f"reset --hard {commit}")
        else:
            self.must_git(f"branch -f {name} {commit}")

    def merge_base(self, a: str, b: str) -> CommitHash:
        return CommitHash(self.must_git(f"merge-base {a} {b}").strip())

    def is_working_tree_clean(self) -> bool:
        return not self.repo.is_dirty(untracked_files=False)

    def commit_subject(self, ref: str) -> str:
        return self.must_git(f"log -1 --format=%s {ref}").strip()

    def push(self, branch: str) -> None:
        remote = self.config.repo.github_remote
        self.must_git(f"push --force-with-lease -u {remote} {branch}")

    # Rebase handling

    def rebase_in_progress(self) -> bool:
        git_dir = Path(self.repo.git_dir)
        return (git_dir / "rebase-merge").exists() or (git_dir / "rebase-apply").exists()

    def unmerged_paths(self) -> List[str]:
        output = self.must_git("diff --name-only --diff-filter=U")
        return [line.strip() for line in output.splitlines() if line.strip()]

    def _rebase_onto(self) -> str:
        git_dir = Path(self.repo.git_dir)
        for state_dir in ("rebase-merge", "rebase-apply"):
            onto_file = git_dir / state_dir / "onto"
            if onto_file.exists():
                return onto_file.read_text().strip()
        return ""

    def rebase(self, branch: str, onto: str, upstream: Optional[str] = None) -> None:
        """Rebase `branch` onto `onto`.

        When `upstream` is given only the commits in upstream..branch are
        replayed, which keeps commits of an amended parent out of the child.
        """
        if upstream and upstream != onto:
            cmd = f"rebase --onto {onto} {upstream} {branch}"
        else:
            cmd = f"rebase {onto} {branch}"
        try:
            self.must_git(cmd, env=NON_INTERACTIVE_ENV)
        except GitError:
            if self.rebase_in_progress():
                raise ConflictMarker(branch, onto, self.unmerged_paths())
            raise

    def continue_rebase(self, branch: str) -> None:
        if not self.rebase_in_progress():
            logger.debug(f"No rebase in progress for {branch}, nothing to continue")
            return
        try:
            self.must_git("rebase --continue", env=NON_INTERACTIVE_ENV)
        except GitError:
            if self.rebase_in_progress():
                raise ConflictMarker(branch, self._rebase_onto(), self.unmerged_paths())
            raise

    def abort_rebase(self, branch: str) -> None:
        if self.rebase_in_progress():
            self.must_git("rebase --abort")
        else:
            logger.debug(f"No rebase in progress for {branch}, nothing to abort")

    def is_conflict_resolved(self, branch: str) -> bool:
        return not self.unmerged_paths()
