"""Adapter classes to wrap PyGithub objects with our protocol interfaces."""

from typing import List, Optional
import logging

from github import Auth, Github
from github.GithubObject import NotSet
from github.IssueComment import IssueComment
from github.PullRequest import PullRequest as PyGithubPullRequest
from github.Repository import Repository

from ..config.models import PystConfig
from . import (
    GitHubClient,
    GitHubCommentProtocol,
    GitHubPullRequestProtocol,
    GitHubRefProtocol,
    GitHubRepoProtocol,
    PyGithubProtocol,
    find_github_token,
)

logger = logging.getLogger(__name__)


class PyGithubPullRequestAdapter(GitHubPullRequestProtocol):
    """Adapter for PyGithub PullRequest objects."""

    def __init__(self, pr: PyGithubPullRequest) -> None:
        self._pr = pr

    @property
    def number(self) -> int:
        return self._pr.number

    @property
    def title(self) -> str:
        return self._pr.title

    @property
    def body(self) -> str:
        return self._pr.body or ""

    @property
    def state(self) -> str:
        return self._pr.state

    @property
    def merged(self) -> bool:
        return self._pr.merged

    @property
    def base(self) -> GitHubRefProtocol:
        return self._pr.base

    @property
    def head(self) -> GitHubRefProtocol:
        return self._pr.head

    def edit(self, body: Optional[str] = None, base: Optional[str] = None) -> None:
        """Edit the pull request."""
        # Convert None to NotSet for PyGithub
        self._pr.edit(
            body=body if body is not None else NotSet,
            base=base if base is not None else NotSet,
        )

    def create_issue_comment(self, body: str) -> IssueComment:
        """Add a comment to the pull request."""
        return self._pr.create_issue_comment(body)

    def get_issue_comments(self) -> List[GitHubCommentProtocol]:
        # Convert PaginatedList to List
        return list(self._pr.get_issue_comments())

    def get_issue_comment(self, id: int) -> IssueComment:
        return self._pr.get_issue_comment(id)


class PyGithubRepoAdapter(GitHubRepoProtocol):
    """Adapter for PyGithub Repository objects."""

    def __init__(self, repo: Repository) -> None:
        self._repo = repo

    def get_pull(self, number: int) -> GitHubPullRequestProtocol:
        """Get a pull request by number."""
        return PyGithubPullRequestAdapter(self._repo.get_pull(number))

    def get_pulls(self, state: str = "open", head: str = "") -> List[GitHubPullRequestProtocol]:
        """Get pull requests with optional filtering."""
        # Convert empty strings to NotSet for PyGithub
        pulls = self._repo.get_pulls(state=state, head=head if head else NotSet)
        return [PyGithubPullRequestAdapter(pr) for pr in pulls]

    def create_pull(self, title: str, body: str, base: str, head: str,
                    draft: bool = False) -> GitHubPullRequestProtocol:
        """Create a new pull request."""
        pr = self._repo.create_pull(title=title, body=body, base=base, head=head, draft=draft)
        return PyGithubPullRequestAdapter(pr)


class PyGithubAdapter(PyGithubProtocol):
    """Adapter for the main PyGithub object."""

    def __init__(self, github: Github) -> None:
        self._github = github

    def get_repo(self, full_name_or_id: str) -> GitHubRepoProtocol:
        """Get a repository by full name."""
        return PyGithubRepoAdapter(self._github.get_repo(full_name_or_id))


def create_github_client(config: PystConfig) -> GitHubClient:
    """Create a GitHubClient talking to the real GitHub API."""
    host = config.repo.github_host
    token = find_github_token(host)
    if not token:
        error_msg = ("No GitHub token found. Try one of:\n1. Set GITHUB_TOKEN env var\n"
                     "2. Log in with 'gh auth login'")
        logger.error(error_msg)
        raise ValueError(error_msg)

    if host == "github.com":
        real_github = Github(auth=Auth.Token(token))
    else:
        real_github = Github(base_url=f"https://{host}/api/v3", auth=Auth.Token(token))
    return GitHubClient(config, PyGithubAdapter(real_github))
