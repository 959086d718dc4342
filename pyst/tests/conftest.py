"""Configuration for pytest."""

import pytest

from pyst.config import default_config
from pyst.config.models import PystConfig
from pyst.github import GitHubClient
from pyst.store import GraphStore
from pyst.tests.fakes import FakeGit, FakeGithub


@pytest.fixture
def git() -> FakeGit:
    return FakeGit()


@pytest.fixture
def store(git: FakeGit) -> GraphStore:
    """In-memory store with `main` tracked as the trunk."""
    store = GraphStore()
    with store.transaction() as forest:
        forest.track("main", tip=git.current_tip("main"))
    return store


@pytest.fixture
def config() -> PystConfig:
    config = default_config()
    config.repo.github_repo_owner = "octo"
    config.repo.github_repo_name = "widgets"
    return config


@pytest.fixture
def fake_github() -> FakeGithub:
    return FakeGithub()


@pytest.fixture
def github(config: PystConfig, fake_github: FakeGithub) -> GitHubClient:
    return GitHubClient(config, fake_github)
