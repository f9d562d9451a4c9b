"""
Block reconciliation: remove mined transactions from the index and measure
how many of them were seen while pending.

Documents are located by their txHash field, not by _id, so records written
under any id are found. A failed lookup or delete for one transaction is
logged and counted; the rest of the block is still processed. An unreachable
store aborts the block when errors are fatal.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from mempool_watch.core.exceptions import (
    NodeRequestError,
    StoreRequestError,
    StoreUnavailableError,
)
from mempool_watch.mempool_logging import bind_block, get_logger
from mempool_watch.node.client import receipt_failed
from mempool_watch.node.models import Block
from mempool_watch.storage.es_store import TransactionStore

logger = get_logger(__name__)


@dataclass
class ReconciliationResult:
    """Per-block tally; errors counts transactions whose lookup/delete failed."""

    block_hash: str
    block_number: int
    total: int = 0
    found: int = 0
    errors: int = 0
    failed: int = 0

    @property
    def coverage_ratio(self) -> float:
        return coverage_ratio(self.found, self.total)

    def to_dict(self) -> dict[str, Any]:
        return {
            "block_hash": self.block_hash,
            "block_number": self.block_number,
            "total": self.total,
            "found": self.found,
            "errors": self.errors,
            "failed": self.failed,
            "coverage_ratio": self.coverage_ratio,
        }


def coverage_ratio(found: int, total: int) -> float:
    """Percentage of a block's transactions seen while pending; 0.0 for an empty block."""
    if total <= 0:
        return 0.0
    return 100.0 * found / total


async def _remove_transaction(store: TransactionStore, tx_hash: str) -> bool:
    """Delete every document matching tx_hash; True if at least one matched."""
    doc_ids = await store.find_ids_by_hash(tx_hash)
    if not doc_ids:
        return False
    if len(doc_ids) > 1:
        logger.warning("reconcile_duplicate_documents", tx_hash=tx_hash, count=len(doc_ids))
    for doc_id in doc_ids:
        await store.delete_document(doc_id, refresh=True)
    return True


async def reconcile_block(
    block: Block,
    store: TransactionStore,
    *,
    node: Any = None,
    track_receipts: bool = False,
    errors_fatal: bool = True,
) -> ReconciliationResult:
    """
    Delete the block's transactions from the index and tally coverage.

    With track_receipts, node.get_receipt() is queried for every matched
    transaction and reverted ones are counted in result.failed.

    Raises:
        StoreUnavailableError: the store cannot be reached and errors_fatal is True.
    """
    result = ReconciliationResult(block_hash=block.hash, block_number=block.number)
    log = bind_block(__name__, block.hash, block.number)
    log.info("block_mined", tx_count=len(block.transactions))
    for tx_hash in block.transactions:
        result.total += 1
        try:
            matched = await _remove_transaction(store, tx_hash)
        except StoreRequestError as e:
            result.errors += 1
            log.warning(
                "reconcile_tx_failed",
                tx_hash=tx_hash,
                status=e.status_code,
                error=e.detail,
            )
            continue
        except StoreUnavailableError as e:
            if errors_fatal:
                raise
            result.errors += 1
            log.error("reconcile_store_unavailable", tx_hash=tx_hash, error=str(e))
            continue
        if not matched:
            continue
        result.found += 1
        if track_receipts and node is not None:
            try:
                if receipt_failed(await node.get_receipt(tx_hash)):
                    result.failed += 1
            except NodeRequestError as e:
                log.warning("reconcile_receipt_failed", tx_hash=tx_hash, error=str(e))
    log.info(
        "block_reconciled",
        found=result.found,
        total=result.total,
        errors=result.errors,
        failed=result.failed,
        coverage_ratio=round(result.coverage_ratio, 2),
    )
    return result


async def fetch_and_reconcile(
    block_hash: str,
    node: Any,
    store: TransactionStore,
    *,
    track_receipts: bool = False,
    errors_fatal: bool = True,
) -> ReconciliationResult | None:
    """
    Resolve block_hash through the node, then reconcile it.

    Returns None when the node no longer knows the block (reorged away).
    """
    block = await node.get_block(block_hash)
    if block is None:
        logger.warning("block_not_found", block_hash=block_hash)
        return None
    return await reconcile_block(
        block,
        store,
        node=node,
        track_receipts=track_receipts,
        errors_fatal=errors_fatal,
    )
