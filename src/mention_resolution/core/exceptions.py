"""
Exception hierarchy for mention resolution
"""
from typing import Optional


class ResolutionError(Exception):
    """Base class for all mention resolution errors"""


class NotFoundError(ResolutionError):
    """A graph node, edge, identity or staged record does not exist"""

    def __init__(self, kind: str, identifier: str, message: Optional[str] = None):
        self.kind = kind
        self.identifier = identifier
        super().__init__(message or f"{kind} {identifier} not found")


class ReviewItemNotFoundError(NotFoundError):
    """No review queue item exists for the mention"""

    def __init__(self, mention_id: str):
        super().__init__("Review item", mention_id, f"Mention {mention_id} not in review queue")


class InvalidTransitionError(ResolutionError):
    """A curation action targeted an item that is no longer PENDING"""

    def __init__(self, item_id: str, status: str, action: str):
        self.item_id = item_id
        self.status = status
        self.action = action
        super().__init__(
            f"Cannot {action} review item {item_id}: already in terminal state {status}"
        )


class TransientError(ResolutionError):
    """Infrastructure failure that is safe to retry (timeouts, dropped connections)"""
