"""
Ethereum node access: JSON-RPC client (IPC / WebSocket), payload models,
and signature-based sender recovery.
"""

from mempool_watch.node.client import (
    TOPIC_NEW_HEADS,
    TOPIC_PENDING_TRANSACTIONS,
    NodeClient,
    Subscription,
)
from mempool_watch.node.models import Block, BlockHeader, PendingTransaction
from mempool_watch.node.signer import recover_sender

__all__ = [
    "TOPIC_NEW_HEADS",
    "TOPIC_PENDING_TRANSACTIONS",
    "Block",
    "BlockHeader",
    "NodeClient",
    "PendingTransaction",
    "Subscription",
    "recover_sender",
]
