from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

SYSTEM_ROLE = "system"
USER_ROLE = "user"
ASSISTANT_ROLE = "assistant"


@dataclass
class ChatNode:
    id: int
    role: str
    content: str
    timestamp: datetime = field(default_factory=datetime.now)
    # None marks a root; set once at creation.
    parent_id: Optional[int] = None
    # Child ids in creation order, which is also sibling navigation order.
    children: List[int] = field(default_factory=list)
    is_selected: bool = False

    @property
    def is_root(self) -> bool:
        return self.parent_id is None
