"""
Application-level exceptions.

Two families: node-side (connection, JSON-RPC errors, signature recovery) and
store-side (transport vs. rejected request). Callers decide what is fatal by
type: connection-level errors end the pipeline, request-level errors are
handled where they occur.
"""

from __future__ import annotations

from typing import Any


class MempoolWatchError(Exception):
    """Base class for all mempool_watch errors."""


class NodeConnectionError(MempoolWatchError):
    """The node socket could not be opened or the connection was lost."""


class SubscriptionClosedError(NodeConnectionError):
    """A node subscription stopped delivering events."""

    def __init__(self, topic: str, reason: str = "") -> None:
        self.topic = topic
        self.reason = reason
        msg = f"subscription {topic!r} closed"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)


class NodeRequestError(MempoolWatchError):
    """The node answered a JSON-RPC request with an error object."""

    def __init__(self, method: str, error: Any) -> None:
        self.method = method
        self.error = error
        if isinstance(error, dict):
            self.code = error.get("code")
            detail = error.get("message") or str(error)
        else:
            self.code = None
            detail = str(error)
        super().__init__(f"{method} failed: {detail}")


class SenderRecoveryError(MempoolWatchError):
    """The sender address could not be recovered from a transaction signature."""


class StoreUnavailableError(MempoolWatchError):
    """Elasticsearch could not be reached (transport-level failure)."""


class StoreRequestError(MempoolWatchError):
    """Elasticsearch rejected a request or returned an unparsable body."""

    def __init__(self, operation: str, status_code: int | None, detail: str = "") -> None:
        self.operation = operation
        self.status_code = status_code
        self.detail = detail
        super().__init__(f"[{status_code}] {operation}: {detail}" if detail else f"[{status_code}] {operation}")
