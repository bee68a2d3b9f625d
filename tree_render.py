from dataclasses import dataclass
from typing import List, Optional

from chat_tree import ChatTree
from node_models import ASSISTANT_ROLE, USER_ROLE, ChatNode

EMPTY_TREE_PLACEHOLDER = "No messages yet. Start typing to begin!"
PREVIEW_LIMIT = 50
SELECTED_MARKER = "▶ "
UNSELECTED_MARKER = "  "
ROOT_GLYPH = "● "
INDENT_UNIT = "  "
BRANCH_CONNECTOR = "├─"
TERMINAL_CONNECTOR = "└─"


@dataclass(frozen=True)
class DisplayLine:
    text: str
    node_id: Optional[int] = None
    depth: int = 0
    selected: bool = False


def role_label(role: str) -> str:
    if role == USER_ROLE:
        return "User"
    if role == ASSISTANT_ROLE:
        return "Asst"
    return "Sys"


def content_preview(content: str) -> str:
    flattened = " ".join(content.splitlines())
    if len(flattened) > PREVIEW_LIMIT:
        return flattened[:PREVIEW_LIMIT] + "..."
    return flattened


def tree_prefix(depth: int, is_last: bool) -> str:
    if depth == 0:
        return ROOT_GLYPH
    connector = TERMINAL_CONNECTOR if is_last else BRANCH_CONNECTOR
    return f"{INDENT_UNIT * (depth - 1)}{connector} "


def format_line(node: ChatNode, depth: int, is_last: bool) -> str:
    marker = SELECTED_MARKER if node.is_selected else UNSELECTED_MARKER
    time_label = node.timestamp.strftime("%H:%M:%S")
    return (
        f"{marker}{tree_prefix(depth, is_last)}{node.id:04d} | {role_label(node.role)} | "
        f"{time_label} | {content_preview(node.content)}"
    )


def render(tree: ChatTree) -> List[DisplayLine]:
    """Project the tree into lazygit-style display lines.

    Pure with respect to ``tree``:
    - Roots in root order, each followed by its subtree in pre-order.
    - Nodes with empty content emit no line; their children take the depth
      the skipped node would have had.
    - Selection only toggles the marker, never ordering or inclusion.
    """
    if not tree.root_ids:
        return [DisplayLine(EMPTY_TREE_PLACEHOLDER)]

    lines: List[DisplayLine] = []

    def emit(node_ids: List[int], depth: int) -> None:
        for index, node_id in enumerate(node_ids):
            node = tree.get_node(node_id)
            if node is None:
                continue
            if not node.content:
                emit(node.children, depth)
                continue
            is_last = index == len(node_ids) - 1
            lines.append(
                DisplayLine(
                    text=format_line(node, depth, is_last),
                    node_id=node.id,
                    depth=depth,
                    selected=node.is_selected,
                )
            )
            emit(node.children, depth + 1)

    emit(tree.root_ids, 0)
    return lines
