from typing import Optional


class ChatTreeError(Exception):
    """Base class for every error raised by the chat tree application."""


class InvalidInput(ChatTreeError):
    """Empty role/content, an unknown node id, or a non-editable node."""


class OrphanReference(ChatTreeError):
    def __init__(self, parent_id: int) -> None:
        super().__init__(f"parent node {parent_id} does not exist")
        self.parent_id = parent_id


class Busy(ChatTreeError):
    def __init__(self, message: str = "Already processing a message...") -> None:
        super().__init__(message)


class ModelRequestError(ChatTreeError):
    """A model request failed; the tree is left as it was."""


class HttpError(ModelRequestError):
    def __init__(self, status: int, detail: Optional[str] = None) -> None:
        message = f"HTTP error! status: {status}"
        if detail:
            message = f"{message} ({detail})"
        super().__init__(message)
        self.status = status


class MalformedResponse(ModelRequestError):
    """A 2xx response without ``choices[0].message.content``."""
