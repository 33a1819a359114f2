# /chatflow/workflows/exceptions.py

from typing import Optional


class FlowMisconfiguredError(Exception):
    """
    Raised when a stored flow cannot be executed as configured: a condition node
    without a usable default branch, an unknown rule/edge/node type, or a delay
    whose due time cannot be computed.

    The engine never guesses a transition in these cases; the host decides what
    the user sees.
    """

    def __init__(self, reason: str, node_id: Optional[str] = None):
        self.reason = reason
        self.node_id = node_id
        message = f"Node '{node_id}': {reason}" if node_id else reason
        super().__init__(message)
