"""Shared utilities for pyst tests."""

from pathlib import Path

import git


def init_repo(path: Path) -> git.Repo:
    """Create a repository on `main` with one commit."""
    repo = git.Repo.init(path, initial_branch="main")
    with repo.config_writer() as writer:
        writer.set_value("user", "name", "Test User")
        writer.set_value("user", "email", "test@example.com")
    write_and_commit(repo, "README.md", "hello\n", "Initial commit")
    return repo


def write_and_commit(repo: git.Repo, name: str, content: str, message: str) -> str:
    """Write `name` in the working tree and commit it on the current branch."""
    path = Path(repo.working_tree_dir) / name
    path.write_text(content)
    repo.index.add([name])
    return repo.index.commit(message).hexsha
