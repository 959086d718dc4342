"""Pretty formatting utilities for CLI output."""

from typing import Callable, Collection, List, Optional

import click

from ..graph import ChildOrder, Forest

FILLED_CIRCLE = "●"
EMPTY_CIRCLE = "○"
BOTTOM_LEFT_BOX = "└"
LEFT_FORK_BOX = "├"
VERTICAL_BOX = "│"
HORIZONTAL_BOX = "─"

# Cycled by depth so sibling subtrees are easy to tell apart
DEPTH_COLORS = ["blue", "cyan", "green", "yellow", "red", "magenta"]

def _paint(text: str, depth: int, color: bool) -> str:
    if not color:
        return text
    return click.style(text, fg=DEPTH_COLORS[depth % len(DEPTH_COLORS)])

def format_tree(forest: Forest, checked_out: Optional[str] = None,
                needs_restack: Collection[str] = (),
                pr_url: Optional[Callable[[int], str]] = None,
                order: ChildOrder = "insertion", color: bool = False) -> str:
    """Render every tracked tree, one line per branch.

    The checked out branch gets a filled circle; stale branches are suffixed
    with "(needs restack)" and submitted ones with their PR URL.
    """
    lines: List[str] = []

    def write(name: str, depth: int, prefix: str, connection: str, is_last: bool) -> None:
        node = forest.get(name)
        icon = FILLED_CIRCLE if name == checked_out else EMPTY_CIRCLE
        line = prefix + _paint(f"{connection}{icon} {name}", depth, color)
        if name in needs_restack:
            line += " (needs restack)"
        if pr_url is not None and node.remote is not None and not node.remote.archived:
            url = pr_url(node.remote.pr_number)
            line += f" ({click.style(url, fg='cyan', italic=True) if color else url})"
        lines.append(line)

        children = forest.children_of(name, order)
        if depth > 0:
            prefix = prefix + ("  " if is_last else _paint(VERTICAL_BOX, depth, color) + " ")
        for i, child in enumerate(children):
            child_is_last = i == len(children) - 1
            child_connection = (BOTTOM_LEFT_BOX if child_is_last else LEFT_FORK_BOX) + HORIZONTAL_BOX
            write(child, depth + 1, prefix, child_connection, child_is_last)

    for trunk in forest.trunks():
        write(trunk, 0, "", "", True)
    return "\n".join(lines)
