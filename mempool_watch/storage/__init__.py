# Elasticsearch persistence: index client and the transaction writer.

from mempool_watch.storage.es_store import TRANSACTIONS_MAPPING, TransactionStore
from mempool_watch.storage.writer import write_transaction

__all__ = [
    "TRANSACTIONS_MAPPING",
    "TransactionStore",
    "write_transaction",
]
