"""CLI entry point."""

import contextlib
import os
import sys
import click
import logging
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Tuple
from click import Context

from ...config import Config, default_config
from ...config.config_parser import parse_config
from ...controller import RestackController, RestackOutcome
from ...errors import GitError, PystError
from ...git import RealGit
from ...github import pr_url
from ...github.adapters import create_github_client
from ...pretty import format_tree
from ...store import GraphStore, RepositoryLock, state_dir
from ...sync import RemoteSyncCoordinator, SyncResult, linked_branches

# Get module logger
logger = logging.getLogger(__name__)

def check(err: Exception) -> None:
    """Check for error and exit if needed."""
    if err:
        logger.error(f"{err}")
        sys.exit(1)

@contextlib.contextmanager
def reported_errors() -> Iterator[None]:
    """Turn pyst errors into a logged message and exit status 1."""
    try:
        yield
    except (PystError, ValueError) as e:
        check(e)

class AliasedGroup(click.Group):
    """Command group with support for aliases."""

    def __init__(self, name: Optional[str] = None, commands: Optional[Dict[str, click.Command]] = None, **attrs: Any) -> None:
        """Initialize with aliases map."""
        super().__init__(name, commands, **attrs)
        self.aliases: Dict[str, str] = {}

    def add_alias(self, alias: str, command: str) -> None:
        """Add an alias for a command."""
        self.aliases[alias] = command

    def get_command(self, ctx: Context, cmd_name: str) -> Optional[click.Command]:
        """Get a command by name, supporting aliases."""
        # Check if cmd_name is a registered alias
        if cmd_name in self.aliases:
            cmd_name = self.aliases[cmd_name]
        return super().get_command(ctx, cmd_name)

class Workspace:
    """Config, git and the pyst state of one repository."""

    def __init__(self, config: Config, git_cmd: RealGit):
        self.config = config
        self.git_cmd = git_cmd
        self.order = config.tool.child_order
        self.state_dir: Path = state_dir(git_cmd.git_dir(), config.tool.state_dir)
        self.store = GraphStore.for_state_dir(self.state_dir)
        self.controller = RestackController.for_state_dir(self.store, git_cmd, self.state_dir, self.order)

    def lock(self) -> RepositoryLock:
        return RepositoryLock(self.state_dir)

    @contextlib.contextmanager
    def mutation(self) -> Iterator[None]:
        """Hold the lock and refuse to run while a restack is suspended."""
        with self.lock():
            self.controller.ensure_idle()
            yield

    def coordinator(self) -> RemoteSyncCoordinator:
        github = create_github_client(self.config)
        return RemoteSyncCoordinator(self.store, github, self.git_cmd,
                                     concurrency=self.config.tool.concurrency, order=self.order)

    def current_branch(self) -> str:
        branch = self.git_cmd.current_branch()
        if branch is None:
            raise GitError("HEAD is detached; check out a branch first")
        return branch

    def stale_branches(self) -> List[str]:
        forest = self.store.forest
        stale = []
        for name in forest.walk_all(self.order):
            node = forest.get(name)
            if node.parent is not None and node.needs_restack(self.git_cmd.current_tip(node.parent)):
                stale.append(name)
        return stale

def setup_git(directory: Optional[str] = None) -> Tuple[Config, RealGit]:
    """Setup Git command and config."""
    if directory:
        os.chdir(directory)

    # Check git dir
    git_cmd = RealGit(default_config())
    try:
        git_cmd.run_cmd("rev-parse --git-dir")
    except GitError as e:
        check(e)
        sys.exit(2)

    cfg = parse_config(git_cmd, git_cmd.working_dir())
    config = Config(cfg)
    git_cmd = RealGit(config)
    return config, git_cmd

def workspace(ctx: Context) -> Workspace:
    if 'workspace' not in ctx.obj:
        with reported_errors():
            config, git_cmd = setup_git(ctx.obj.get('directory'))
            ctx.obj['workspace'] = Workspace(config, git_cmd)
    return ctx.obj['workspace']

@click.group(cls=AliasedGroup)
@click.option('-C', '--directory', type=click.Path(exists=True, file_okay=False, dir_okay=True),
              help='Run as if pyst was started in DIRECTORY instead of the current working directory')
@click.option('-v', '--verbose', count=True, help="Increase verbosity (can be used multiple times for more verbosity)")
@click.pass_context
def cli(ctx: Context, directory: Optional[str], verbose: int) -> None:
    """pyst - Stacked branches and pull requests on GitHub."""
    from ... import setup_logging
    setup_logging(verbose)
    ctx.ensure_object(dict)
    ctx.obj['directory'] = directory

def report_outcome(outcome: RestackOutcome) -> None:
    if outcome.executed:
        click.echo(f"Restacked {', '.join(outcome.executed)}")
    if outcome.suspended:
        assert outcome.conflict is not None
        click.echo(f"Conflict while restacking {outcome.conflict.branch}.", err=True)
        for path in outcome.conflict.paths:
            click.echo(f"  both modified: {path}", err=True)
        click.echo("Resolve the conflicts, `git add` the files, then run `pyst continue` "
                   "(or `pyst abort` to undo the restack).", err=True)
        sys.exit(1)
    if not outcome.executed:
        click.echo("Everything is up to date.")

def report_sync(results: List[SyncResult]) -> None:
    failed = False
    for result in results:
        if result.error is not None:
            failed = True
            logger.error(f"{result.error}")
        elif result.changed:
            click.echo(f"{result.branch}: {', '.join(result.writes)}")
        else:
            click.echo(f"{result.branch}: up to date")
    if failed:
        sys.exit(1)

@cli.command(name="init", help="Start tracking a trunk branch")
@click.argument('trunk', required=False)
@click.pass_context
def init(ctx: Context, trunk: Optional[str]) -> None:
    ws = workspace(ctx)
    trunk = trunk or ws.config.repo.github_branch
    with reported_errors(), ws.mutation():
        if not ws.git_cmd.branch_exists(trunk):
            raise GitError(f"Branch {trunk} does not exist")
        if trunk in ws.store.forest:
            click.echo(f"{trunk} is already tracked.")
            return
        with ws.store.transaction() as forest:
            forest.track(trunk, tip=ws.git_cmd.current_tip(trunk))
        click.echo(f"Tracking trunk {trunk}.")

@cli.command(name="track", help="Track an existing branch on top of a parent branch")
@click.argument('branch', required=False)
@click.option('--parent', '-p', help="Parent branch (defaults to the configured trunk)")
@click.pass_context
def track(ctx: Context, branch: Optional[str], parent: Optional[str]) -> None:
    ws = workspace(ctx)
    with reported_errors(), ws.mutation():
        branch = branch or ws.current_branch()
        parent = parent or ws.config.repo.github_branch
        if not ws.git_cmd.branch_exists(branch):
            raise GitError(f"Branch {branch} does not exist")
        ws.store.forest.get(parent)
        with ws.store.transaction() as forest:
            forest.track(branch, parent,
                         tip=ws.git_cmd.current_tip(branch),
                         base_snapshot=ws.git_cmd.merge_base(parent, branch))
        click.echo(f"Tracking {branch} on top of {parent}.")

@cli.command(name="untrack", help="Stop tracking a branch without deleting it")
@click.argument('branch', required=False)
@click.pass_context
def untrack(ctx: Context, branch: Optional[str]) -> None:
    ws = workspace(ctx)
    with reported_errors(), ws.mutation():
        branch = branch or ws.current_branch()
        with ws.store.transaction() as forest:
            forest.untrack(branch)
        click.echo(f"Untracked {branch}.")

@cli.command(name="create", help="Create a new branch on top of the current one and track it")
@click.argument('name')
@click.option('--parent', '-p', help="Parent branch (defaults to the current branch)")
@click.pass_context
def create(ctx: Context, name: str, parent: Optional[str]) -> None:
    ws = workspace(ctx)
    with reported_errors(), ws.mutation():
        parent = parent or ws.current_branch()
        # Fail on the graph before touching git
        ws.store.forest.track(name, parent)
        ws.git_cmd.create_branch(name, parent)
        ws.git_cmd.checkout(name)
        tip = ws.git_cmd.current_tip(name)
        with ws.store.transaction() as forest:
            forest.track(name, parent, tip=tip, base_snapshot=ws.git_cmd.current_tip(parent))
        click.echo(f"Created {name} on top of {parent}.")

@cli.command(name="delete", help="Delete a branch, moving its children onto its parent")
@click.argument('branch', required=False)
@click.option('--yes', '-y', is_flag=True, help="Do not ask for confirmation")
@click.pass_context
def delete(ctx: Context, branch: Optional[str], yes: bool) -> None:
    ws = workspace(ctx)
    with reported_errors(), ws.mutation():
        branch = branch or ws.current_branch()
        node = ws.store.forest.get(branch)
        if node.parent is None:
            raise click.UsageError(f"{branch} is a trunk branch; use `pyst untrack` instead")
        if not yes and not click.confirm(f"Delete branch {branch}?"):
            return
        delete_branch(ws, branch, reason="deleted")
        click.echo(f"Deleted {branch}.")

def delete_branch(ws: Workspace, branch: str, reason: str) -> None:
    """Splice `branch` out of the forest and delete it locally."""
    parent = ws.store.forest.parent_of(branch)
    assert parent is not None
    if ws.git_cmd.current_branch() == branch:
        ws.git_cmd.checkout(parent)
    with ws.store.transaction() as forest:
        forest.remove_and_reparent_children(branch, reason=reason)
    if ws.git_cmd.branch_exists(branch):
        ws.git_cmd.delete_branch(branch)

@cli.command(name="log", help="Show the tracked branches as a tree")
@click.pass_context
def log(ctx: Context) -> None:
    ws = workspace(ctx)
    with reported_errors():
        forest = ws.store.forest
        if not forest.branches:
            click.echo("No branches tracked. Run `pyst init` first.")
            return
        tree = format_tree(
            forest,
            checked_out=ws.git_cmd.current_branch(),
            needs_restack=set(ws.stale_branches()),
            pr_url=lambda number: pr_url(ws.config, number),
            order=ws.order,
            color=sys.stdout.isatty(),
        )
        click.echo(tree)

def stack_root(ws: Workspace, branch: str) -> str:
    """Bottom branch of the stack `branch` is in, right above its trunk."""
    forest = ws.store.forest
    lineage = forest.ancestors_of(branch) + [branch]
    return lineage[1] if len(lineage) > 1 else lineage[0]

@cli.command(name="restack", help="Rebase the current stack so every branch sits on its parent's tip")
@click.argument('branch', required=False)
@click.option('--all', 'all_stacks', is_flag=True, help="Restack every tracked branch")
@click.pass_context
def restack(ctx: Context, branch: Optional[str], all_stacks: bool) -> None:
    ws = workspace(ctx)
    with reported_errors(), ws.lock():
        if all_stacks:
            roots = ws.store.forest.trunks()
        else:
            roots = [stack_root(ws, branch or ws.current_branch())]
        for root in roots:
            outcome = ws.controller.restack(root)
            report_outcome(outcome)
            sync_restacked(ws, outcome)

@cli.command(name="continue", help="Continue a restack after resolving conflicts")
@click.pass_context
def continue_restack(ctx: Context) -> None:
    ws = workspace(ctx)
    with reported_errors(), ws.lock():
        outcome = ws.controller.continue_()
        report_outcome(outcome)
        sync_restacked(ws, outcome)

def sync_restacked(ws: Workspace, outcome: RestackOutcome) -> None:
    """Update the PRs of a stack whose branches were just rebased."""
    if not outcome.executed:
        return
    forest = ws.store.forest
    branches = linked_branches(forest, forest.stack_of(outcome.root, ws.order))
    if branches:
        report_sync(ws.coordinator().sync_branches(branches))

@cli.command(name="move", help="Move a branch and its descendants onto another parent")
@click.argument('onto')
@click.option('--branch', '-b', help="Branch to move (defaults to the current branch)")
@click.pass_context
def move(ctx: Context, onto: str, branch: Optional[str]) -> None:
    ws = workspace(ctx)
    with reported_errors(), ws.mutation():
        branch = branch or ws.current_branch()
        if ws.store.forest.get(branch).is_trunk:
            raise click.UsageError(f"{branch} is a trunk branch and cannot be moved")
        with ws.store.transaction() as forest:
            forest.reparent(branch, onto)
        click.echo(f"Moved {branch} onto {onto}. Run `pyst restack` to rebase it.")

@cli.command(name="checkout", help="Check out a tracked branch, picking it from a list if none is given")
@click.argument('branch', required=False)
@click.pass_context
def checkout(ctx: Context, branch: Optional[str]) -> None:
    ws = workspace(ctx)
    with reported_errors(), ws.mutation():
        forest = ws.store.forest
        if branch is None:
            names = list(forest.walk_all(ws.order))
            if not names:
                click.echo("No branches tracked. Run `pyst init` first.")
                return
            click.echo(format_tree(forest, checked_out=ws.git_cmd.current_branch(), order=ws.order))
            branch = click.prompt("Branch", type=click.Choice(names), show_choices=False)
        forest.get(branch)
        ws.git_cmd.checkout(branch)
        click.echo(f"Checked out {branch}.")

@cli.command(name="abort", help="Abort a restack and restore every branch")
@click.pass_context
def abort(ctx: Context) -> None:
    ws = workspace(ctx)
    with reported_errors(), ws.lock():
        ws.controller.abort()
        click.echo("Restack aborted.")

@cli.command(name="submit", help="Push the branch and create or update its pull request")
@click.argument('branch', required=False)
@click.option('--stack', '-s', 'whole_stack', is_flag=True, help="Submit every branch in the stack")
@click.option('--title', '-t', help="Title of a new pull request")
@click.option('--body', '-b', help="Description of a new pull request")
@click.option('--edit', '-e', 'edit_body', is_flag=True, help="Write the description of a new pull request in an editor")
@click.option('--draft', is_flag=True, help="Open new pull requests as drafts")
@click.pass_context
def submit(ctx: Context, branch: Optional[str], whole_stack: bool, title: Optional[str],
           body: Optional[str], edit_body: bool, draft: bool) -> None:
    ws = workspace(ctx)
    with reported_errors(), ws.mutation():
        branch = branch or ws.current_branch()
        draft = draft or ws.config.user.draft_prs
        coordinator = ws.coordinator()
        if whole_stack:
            report_sync(coordinator.submit_stack(branch, draft=draft))
            return
        forest = ws.store.forest
        if not forest.get(branch).is_trunk and not linked_branches(forest, [branch]):
            if title is None:
                title = click.prompt("Pull request title", default=ws.git_cmd.commit_subject(branch))
            if edit_body:
                # None when the editor was closed without saving
                body = click.edit(body or "") or body
        report_sync([coordinator.submit(branch, title=title, body=(body or "").strip(), draft=draft)])

@cli.command(name="sync", help="Update pull request bases and stack comments, and clean up merged branches")
@click.option('--yes', '-y', is_flag=True, help="Delete branches of merged pull requests without asking")
@click.pass_context
def sync(ctx: Context, yes: bool) -> None:
    ws = workspace(ctx)
    with reported_errors(), ws.mutation():
        coordinator = ws.coordinator()
        tracked = list(ws.store.forest.walk_all(ws.order))
        for branch in coordinator.refresh_merged(tracked):
            if yes or click.confirm(f"Pull request for {branch} is merged or closed. Delete {branch}?"):
                delete_branch(ws, branch, reason="merged")
                click.echo(f"Deleted {branch}.")
        results = coordinator.sync_branches(list(ws.store.forest.walk_all(ws.order)))
        stale = ws.stale_branches()
        if stale:
            click.echo(f"Needs restack: {', '.join(stale)}. Run `pyst restack`.")
        report_sync(results)

def main() -> None:
    """Main entry point."""
    # Add command aliases
    cli.aliases['rs'] = 'restack'
    cli.aliases['ss'] = 'submit'
    cli(obj={})

if __name__ == "__main__":
    main()
