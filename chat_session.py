import asyncio
from enum import Enum
from typing import Callable, Optional

import ai
from chat_tree import ChatTree
from errors import Busy, InvalidInput
from node_models import ASSISTANT_ROLE, SYSTEM_ROLE, USER_ROLE

WELCOME_MESSAGE = "Welcome to the Tree-Based Chat Interface!"


class RequestState(Enum):
    IDLE = "idle"
    REQUESTING = "requesting"


class ChatSession:
    """Conversation tree plus the single-flight model request state.

    The shell owns one session and routes every handler through it. A
    request is reserved synchronously by ``send_message``/``submit_edit`` so
    a second action can never slip in before the reply worker starts.
    """

    def __init__(
        self,
        tree: Optional[ChatTree] = None,
        complete: Optional[Callable[[str], str]] = None,
        timeout: Optional[float] = None,
    ) -> None:
        self.tree = tree if tree is not None else ChatTree()
        self._complete = complete or ai.request_completion
        self.timeout = timeout if timeout is not None else ai.get_request_timeout()
        self.state = RequestState.IDLE

    @property
    def busy(self) -> bool:
        return self.state is RequestState.REQUESTING

    def seed_welcome(self) -> int:
        node_id = self.tree.create_node(SYSTEM_ROLE, WELCOME_MESSAGE)
        self.tree.select(node_id)
        return node_id

    def ensure_idle(self) -> None:
        if self.busy:
            raise Busy()

    def send_message(self, content: str) -> int:
        self.ensure_idle()
        node_id = self.tree.create_node(USER_ROLE, content)
        self.tree.select(node_id)
        self.state = RequestState.REQUESTING
        return node_id

    def submit_edit(self, node_id: int, content: str) -> Optional[int]:
        self.ensure_idle()
        node = self.tree.get_node(node_id)
        if node is None:
            raise InvalidInput(f"unknown node {node_id}")
        if node.role == SYSTEM_ROLE:
            raise InvalidInput("system messages cannot be edited")
        new_id = self.tree.edit_node(node_id, content)
        if new_id is not None:
            self.state = RequestState.REQUESTING
        return new_id

    async def fetch_reply(self, parent_id: int, prompt: str) -> int:
        """Ask the model about ``prompt`` and attach the answer under ``parent_id``.

        Model errors and timeouts propagate with the tree unchanged. A timed
        out call keeps the session busy until its worker thread returns, since
        the thread cannot be interrupted; its late answer is discarded.
        """
        if not self.busy:
            raise RuntimeError("no model request has been reserved")
        call = asyncio.ensure_future(asyncio.to_thread(self._complete, prompt))
        try:
            text = await asyncio.wait_for(asyncio.shield(call), timeout=self.timeout)
        except (asyncio.TimeoutError, asyncio.CancelledError):
            if call.done():
                self._release_request(call)
            else:
                call.add_done_callback(self._release_request)
            raise
        except Exception:
            self.state = RequestState.IDLE
            raise
        self.state = RequestState.IDLE
        reply_id = self.tree.create_node(ASSISTANT_ROLE, text, parent_id)
        self.tree.select(reply_id)
        return reply_id

    def _release_request(self, call: "asyncio.Future[str]") -> None:
        if not call.cancelled():
            # Marks an abandoned failure as retrieved.
            call.exception()
        self.state = RequestState.IDLE
