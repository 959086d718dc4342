"""Config module."""

from typing import Any, Dict
from .models import RepoConfig, UserConfig, PystConfig, ToolConfig

class Config(PystConfig):
    """Config object holding repository, user and tool config.

    Built from the nested dict produced by `parse_config`.
    """
    def __init__(self, config: Dict[str, Dict[str, Any]]):
        """Initialize with parsed config dict."""
        repo_config = config.get('repo', {})
        user_config = config.get('user', {})
        tool_section = config.get('tool', {})
        tool_config = tool_section.get('pyst', {})

        super().__init__(
            repo=RepoConfig.model_validate(repo_config),
            user=UserConfig.model_validate(user_config),
            tool=ToolConfig.model_validate(tool_config),
        )

def default_config() -> Config:
    """Get default config without parsing git."""
    return Config({
        'repo': {
            'github_remote': 'origin',
            'github_branch': 'main',
        },
        'user': {},
        'tool': {
            'pyst': {
                'concurrency': 0
            }
        }
    })
