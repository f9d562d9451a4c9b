"""
Store writer: one refresh=true index request per enriched transaction.

Rejected writes are logged and dropped. An unreachable store raises when
errors_fatal is set, otherwise the write is logged and dropped too.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from mempool_watch.core.exceptions import StoreRequestError, StoreUnavailableError
from mempool_watch.mempool_logging import get_logger
from mempool_watch.storage.es_store import TransactionStore

if TYPE_CHECKING:
    from mempool_watch.ingestion.enrichment import TransactionRecord

logger = get_logger(__name__)


async def write_transaction(
    store: TransactionStore,
    record: TransactionRecord,
    *,
    errors_fatal: bool = True,
) -> bool:
    """
    Index record under its transaction hash. Returns True when acknowledged.

    Raises:
        StoreUnavailableError: the store cannot be reached and errors_fatal is True.
    """
    try:
        ack = await store.index_document(record.tx_hash, record.to_document(), refresh=True)
    except StoreRequestError as e:
        logger.warning(
            "store_index_rejected",
            tx_hash=record.tx_hash,
            status=e.status_code,
            error=e.detail,
        )
        return False
    except StoreUnavailableError as e:
        if errors_fatal:
            raise
        logger.error("store_index_unavailable", tx_hash=record.tx_hash, error=str(e))
        return False
    logger.info(
        "store_indexed",
        tx_hash=record.tx_hash,
        result=ack.get("result"),
        version=ack.get("_version"),
    )
    return True
