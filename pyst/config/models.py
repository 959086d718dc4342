"""Pydantic models for config types."""

from typing import Literal, Optional
from pydantic import BaseModel, ConfigDict, Field

class RepoConfig(BaseModel):
    """Repository configuration."""
    model_config = ConfigDict(extra="allow")  # Allow extra fields for forward compatibility

    github_remote: str = "origin"
    github_branch: str = "main"
    github_host: str = "github.com"
    github_repo_owner: Optional[str] = None
    github_repo_name: Optional[str] = None

class UserConfig(BaseModel):
    """User configuration."""
    model_config = ConfigDict(extra="allow")

    draft_prs: bool = False
    log_git_commands: bool = True

class ToolConfig(BaseModel):
    """Tool configuration."""
    model_config = ConfigDict(extra="allow")

    concurrency: int = 0
    state_dir: str = "pyst"
    # Tie-break for visiting the children of a branch during a restack
    child_order: Literal["insertion", "name"] = "insertion"

class PystConfig(BaseModel):
    """Full pyst configuration."""
    model_config = ConfigDict(extra="allow")

    repo: RepoConfig = Field(default_factory=RepoConfig)
    user: UserConfig = Field(default_factory=UserConfig)
    tool: ToolConfig = Field(default_factory=ToolConfig)
