"""Config parser logic."""

from pathlib import Path
from typing import Dict, Optional, Tuple, Any
import logging
import yaml

from ...errors import GitError
from ...git import RealGit

# Get module logger
logger = logging.getLogger(__name__)

CONFIG_FILE_NAME = '.pyst.yaml'

RepoConfig = Dict[str, Any]  # Use Any since yaml can return various types
Config = Dict[str, RepoConfig]

def parse_remote_url(url: str) -> Optional[Tuple[str, str]]:
    """Extract (owner, repo) from an SSH or HTTPS remote URL."""
    url = url.strip()
    if url.startswith("git@") or (url.count(":") == 1 and "://" not in url):
        # SSH format: git@github.com:owner/repo.git
        repo_part = url.split(":", 1)[-1]
    elif "://" in url:
        # HTTPS format: https://github.com/owner/repo.git
        repo_part = url.split("://", 1)[-1].split("/", 1)[-1]
    else:
        return None

    if repo_part.endswith(".git"):
        repo_part = repo_part[:-len(".git")]
    parts = [p for p in repo_part.split("/") if p]
    if len(parts) < 2:
        return None
    return parts[-2], parts[-1]

def parse_config(git_cmd: RealGit, repo_root: Optional[Path] = None) -> Config:
    """Parse config from the repository's .pyst.yaml and its git remote."""
    config: Config = {
        'repo': {
            'github_remote': 'origin',
            'github_branch': 'main',
            'github_host': 'github.com',
        },
        'user': {},
        'tool': {
            'pyst': {
                'concurrency': 0,
            }
        }
    }

    config_path = (repo_root or Path.cwd()) / CONFIG_FILE_NAME
    try:
        with open(config_path, 'r') as f:
            logger.debug(f"Found {CONFIG_FILE_NAME}, loading...")
            repo_config = yaml.safe_load(f)
            logger.debug(f"Config from {CONFIG_FILE_NAME}: {repo_config}")
            if repo_config:
                if 'repo' in repo_config and isinstance(repo_config['repo'], dict):
                    config['repo'].update(repo_config['repo'])
                if 'user' in repo_config and isinstance(repo_config['user'], dict):
                    config['user'].update(repo_config['user'])
                if 'tool' in repo_config and isinstance(repo_config['tool'], dict):
                    config['tool']['pyst'].update(repo_config['tool'])
    except FileNotFoundError:
        logger.debug(f"No {CONFIG_FILE_NAME} found, using defaults")

    # Try to extract repo owner/name from git remote if not in config
    if not config['repo'].get('github_repo_owner') or not config['repo'].get('github_repo_name'):
        remote = config['repo']['github_remote']
        try:
            remote_url = git_cmd.run_cmd(f"remote get-url {remote}")
        except GitError as e:
            logger.warning(f"Failed to read remote {remote}: {e}")
        else:
            parsed = parse_remote_url(remote_url)
            if parsed:
                owner, name = parsed
                if not config['repo'].get('github_repo_owner'):
                    config['repo']['github_repo_owner'] = owner
                if not config['repo'].get('github_repo_name'):
                    config['repo']['github_repo_name'] = name
            else:
                logger.warning(f"Unsupported remote URL format: {remote_url}")

    return config
