from datetime import datetime
from itertools import count
from typing import Dict, List, Literal, Optional

from errors import InvalidInput, OrphanReference
from node_models import ChatNode

Direction = Literal["initial", "up", "down", "left", "right"]
DIRECTIONS = ("initial", "up", "down", "left", "right")


class ChatTree:
    """Append-only arena of chat messages addressed by integer id.

    Parent and child links are stored as ids, never as object references.
    Nodes are never removed, so an id handed out once stays valid for the
    lifetime of the tree.
    """

    def __init__(self, *, orphans_as_roots: bool = False) -> None:
        self.nodes: Dict[int, ChatNode] = {}
        self.root_ids: List[int] = []
        self.selected_id: Optional[int] = None
        self.orphans_as_roots = orphans_as_roots
        self._ids = count(1)

    def __len__(self) -> int:
        return len(self.nodes)

    def __contains__(self, node_id: object) -> bool:
        return node_id in self.nodes

    def create_node(self, role: str, content: str, parent_id: Optional[int] = None) -> int:
        if not role or not content:
            raise InvalidInput(f"invalid node data: role={role!r} content={content!r}")
        if parent_id is not None and parent_id not in self.nodes:
            if not self.orphans_as_roots:
                raise OrphanReference(parent_id)
            parent_id = None

        node_id = next(self._ids)
        node = ChatNode(node_id, role, content, datetime.now(), parent_id)
        self.nodes[node_id] = node
        if parent_id is None:
            self.root_ids.append(node_id)
        else:
            self.nodes[parent_id].children.append(node_id)
        return node_id

    def get_node(self, node_id: Optional[int]) -> Optional[ChatNode]:
        if node_id is None:
            return None
        return self.nodes.get(node_id)

    def all_nodes(self) -> List[ChatNode]:
        return list(self.nodes.values())

    def siblings_of(self, node_id: int) -> List[int]:
        """Ids sharing a parent with ``node_id`` (the root sequence for roots)."""
        node = self._require(node_id)
        if node.parent_id is None:
            return self.root_ids
        return self.nodes[node.parent_id].children

    def path_to(self, node_id: int) -> List[int]:
        """Ids from the node's root down to the node itself."""
        path: List[int] = []
        node: Optional[ChatNode] = self._require(node_id)
        while node is not None:
            path.append(node.id)
            node = self.get_node(node.parent_id)
        path.reverse()
        return path

    def select(self, node_id: Optional[int]) -> None:
        if node_id is not None and node_id not in self.nodes:
            raise InvalidInput(f"cannot select unknown node {node_id}")
        previous = self.get_node(self.selected_id)
        if previous is not None:
            previous.is_selected = False
        self.selected_id = node_id
        if node_id is not None:
            self.nodes[node_id].is_selected = True

    def get_selected(self) -> Optional[ChatNode]:
        return self.get_node(self.selected_id)

    def next_node(
        self, current_id: Optional[int], direction: Optional[Direction] = "initial"
    ) -> Optional[int]:
        """Resolve a cursor move without changing any state.

        ``up``/``down`` only walk siblings and ``left``/``right`` only change
        depth. At a boundary the current id is returned unchanged, which
        callers treat as "no movement".
        """
        if direction is None:
            direction = "initial"
        if direction not in DIRECTIONS:
            raise ValueError(f"unknown direction: {direction!r}")
        if current_id is None:
            return self.root_ids[0] if self.root_ids else None
        current = self.nodes.get(current_id)
        if current is None:
            return None

        if direction in ("up", "down"):
            siblings = self.siblings_of(current_id)
            index = siblings.index(current_id) + (1 if direction == "down" else -1)
            if 0 <= index < len(siblings):
                return siblings[index]
        elif direction == "right":
            if current.children:
                return current.children[0]
        elif direction == "left":
            if current.parent_id is not None:
                return current.parent_id
        return current_id

    def edit_node(self, node_id: int, new_content: str) -> Optional[int]:
        """Fork ``node_id`` into a new sibling carrying ``new_content``.

        Returns ``None`` when the content is unchanged. The original node and
        its subtree are left as they were, and the new sibling is selected.
        """
        original = self._require(node_id)
        if new_content == original.content:
            return None
        new_id = self.create_node(original.role, new_content, original.parent_id)
        self.select(new_id)
        return new_id

    def _require(self, node_id: int) -> ChatNode:
        node = self.nodes.get(node_id)
        if node is None:
            raise InvalidInput(f"unknown node {node_id}")
        return node
