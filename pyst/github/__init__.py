"""GitHub interfaces and implementation."""

import os
import logging
from pathlib import Path
from typing import Dict, List, Optional, Protocol, runtime_checkable

import yaml
from github import GithubException, UnknownObjectException

from ..config.models import PystConfig
from ..errors import PystError
from ..typing import PrNumber

# Get module logger
logger = logging.getLogger(__name__)

# Define protocols for GitHub objects
@runtime_checkable
class GitHubRefProtocol(Protocol):
    """Protocol for GitHub ref objects (base/head references)."""
    @property
    def ref(self) -> str:
        """Get the ref name (e.g., 'main', 'feature-branch')."""
        ...

@runtime_checkable
class GitHubCommentProtocol(Protocol):
    """Protocol for issue comments on a pull request."""
    @property
    def id(self) -> int:
        ...

    @property
    def body(self) -> str:
        ...

    def edit(self, body: str) -> None:
        ...

@runtime_checkable
class GitHubPullRequestProtocol(Protocol):
    """Protocol for GitHub pull request objects (real or fake)."""
    @property
    def number(self) -> int:
        """Get the PR number."""
        ...

    @property
    def title(self) -> str:
        """Get the PR title."""
        ...

    @property
    def body(self) -> str:
        """Get the PR body."""
        ...

    @property
    def state(self) -> str:
        """Get the PR state (open, closed)."""
        ...

    @property
    def merged(self) -> bool:
        """Get whether the PR is merged."""
        ...

    @property
    def base(self) -> GitHubRefProtocol:
        """Get the base reference."""
        ...

    @property
    def head(self) -> GitHubRefProtocol:
        """Get the head reference."""
        ...

    def edit(self, body: Optional[str] = None, base: Optional[str] = None) -> None:
        """Edit the pull request."""
        ...

    def create_issue_comment(self, body: str) -> GitHubCommentProtocol:
        """Add a comment to the pull request."""
        ...

    def get_issue_comments(self) -> List[GitHubCommentProtocol]:
        ...

    def get_issue_comment(self, id: int) -> GitHubCommentProtocol:
        ...

@runtime_checkable
class GitHubRepoProtocol(Protocol):
    """Protocol for GitHub repository objects (real or fake)."""
    def get_pull(self, number: int) -> GitHubPullRequestProtocol:
        """Get a pull request by number."""
        ...

    def get_pulls(self, state: str = "open", head: str = "") -> List[GitHubPullRequestProtocol]:
        """Get pull requests with optional filtering."""
        ...

    def create_pull(self, title: str, body: str, base: str, head: str,
                    draft: bool = False) -> GitHubPullRequestProtocol:
        """Create a new pull request."""
        ...

@runtime_checkable
class PyGithubProtocol(Protocol):
    """Protocol for PyGithub implementations (real or fake).

    This protocol defines the interface that both the real PyGithub library
    and our fake implementation must satisfy.
    """
    def get_repo(self, full_name_or_id: str) -> GitHubRepoProtocol:
        """Get a repository by full name."""
        ...

class RemoteNotConfiguredError(PystError):
    def __init__(self) -> None:
        super().__init__("GitHub repository owner/name unknown; set repo.github_repo_owner and "
                         "repo.github_repo_name in .pyst.yaml")

def find_github_token(host: str = "github.com") -> Optional[str]:
    """Find GitHub token from env var or gh CLI config."""
    # First try environment variable
    token = os.environ.get("GITHUB_TOKEN")
    if token:
        return token

    # Then try gh CLI config at ~/.config/gh/hosts.yml
    gh_config_path = Path.home() / ".config" / "gh" / "hosts.yml"
    try:
        if gh_config_path.exists():
            with open(gh_config_path, "r") as f:
                gh_config = yaml.safe_load(f)
            if gh_config and host in gh_config:
                host_config: Dict[str, object] = gh_config[host]
                token = host_config.get("oauth_token")
                if isinstance(token, str):
                    return token
    except (OSError, yaml.YAMLError) as e:
        logger.error(f"Error reading gh CLI config: {e}")
    return None

def marker_line(marker_id: str) -> str:
    return f"<!-- {marker_id} -->"

def pr_url(config: PystConfig, number: int) -> str:
    """Web URL of pull request `number` in the configured repository."""
    repo = config.repo
    return f"https://{repo.github_host}/{repo.github_repo_owner}/{repo.github_repo_name}/pull/{number}"

class GitHubClient:
    """GitHub client implementation."""
    def __init__(self, config: PystConfig, github_client: PyGithubProtocol):
        """Initialize with config and GitHub client implementation.

        Args:
            config: The configuration
            github_client: GitHub client implementation (real or fake)
        """
        self.config = config
        self.client = github_client
        self._repo: Optional[GitHubRepoProtocol] = None

    @property
    def repo(self) -> GitHubRepoProtocol:
        """Get GitHub repository."""
        if self._repo is None:
            owner = self.config.repo.github_repo_owner
            name = self.config.repo.github_repo_name
            if not owner or not name:
                raise RemoteNotConfiguredError()
            self._repo = self.client.get_repo(f"{owner}/{name}")
        return self._repo

    @repo.setter
    def repo(self, value: GitHubRepoProtocol) -> None:
        """Set the GitHub repository."""
        self._repo = value

    def pr_url(self, number: int) -> str:
        return pr_url(self.config, number)

    def create_pr(self, branch: str, base: str, title: str, body: str, draft: bool = False) -> PrNumber:
        logger.info(f"> github create {branch} -> {base} : {title}")
        pr = self.repo.create_pull(title=title, body=body, base=base, head=branch, draft=draft)
        logger.info(f"Created PR #{pr.number} for {branch}")
        return PrNumber(pr.number)

    def update_pr(self, number: int, base: Optional[str] = None, body: Optional[str] = None) -> None:
        if base is None and body is None:
            return
        changes = []
        if base is not None:
            changes.append(f"base={base}")
        if body is not None:
            changes.append("body")
        logger.info(f"> github update #{number} : {', '.join(changes)}")
        self.repo.get_pull(number).edit(body=body, base=base)

    def get_pr_for_branch(self, branch: str) -> Optional[PrNumber]:
        """Find the open PR whose head is `branch`."""
        owner = self.config.repo.github_repo_owner
        head_filter = f"{owner}:{branch}"
        logger.debug(f"Searching for PR with head filter {head_filter}")
        for pr in self.repo.get_pulls(state='open', head=head_filter):
            logger.debug(f"Checking PR #{pr.number}: head.ref={pr.head.ref}, base.ref={pr.base.ref}")
            if pr.head.ref == branch:
                return PrNumber(pr.number)
        logger.debug(f"No open PR found for branch {branch}")
        return None

    def get_pr_state(self, number: int) -> str:
        pr = self.repo.get_pull(number)
        if pr.merged:
            return "merged"
        return pr.state

    def upsert_comment(self, number: int, marker_id: str, body: str,
                       comment_id: Optional[int] = None) -> int:
        """Create or replace the PR comment identified by `marker_id`.

        The known `comment_id` is tried first; otherwise the comments are
        searched for the hidden marker line, and only then is a new comment
        posted.
        """
        marker = marker_line(marker_id)
        if marker not in body:
            body = f"{marker}\n{body}"
        pr = self.repo.get_pull(number)

        if comment_id is not None:
            try:
                comment = pr.get_issue_comment(comment_id)
            except UnknownObjectException:
                logger.warning(f"Stack comment {comment_id} on #{number} is gone, posting a new one")
            else:
                logger.info(f"> github edit comment #{number} ({comment_id})")
                comment.edit(body)
                return comment_id

        for comment in pr.get_issue_comments():
            if marker in (comment.body or ""):
                logger.info(f"> github edit comment #{number} ({comment.id})")
                comment.edit(body)
                return comment.id

        logger.info(f"> github add comment #{number}")
        return pr.create_issue_comment(body).id

__all__ = [
    "GitHubClient", "GithubException", "PyGithubProtocol", "GitHubRepoProtocol",
    "GitHubPullRequestProtocol", "GitHubCommentProtocol", "GitHubRefProtocol",
    "RemoteNotConfiguredError", "find_github_token", "marker_line", "pr_url",
]
