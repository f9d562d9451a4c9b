"""
Mempool Watch: pending-transaction observer for Ethereum nodes.

Streams the node's pending-transaction pool over IPC or WebSocket, enriches
each contract-interaction transaction, indexes it into Elasticsearch, and
reconciles the index when blocks are mined, reporting per-block coverage.
"""

__version__ = "0.1.0"
