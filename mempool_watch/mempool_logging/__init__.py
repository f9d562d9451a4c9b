"""
Structured logging for Mempool Watch.

JSON logs with timestamp, event_type, tx_hash / block_hash where relevant.
Use get_logger() in all modules for aggregation-friendly output.
"""

from mempool_watch.mempool_logging.logger import bind_block, get_logger

__all__ = ["bind_block", "get_logger"]
