# Mempool ingestion: enrichment, node subscriptions, block reconciliation.

from mempool_watch.ingestion.enrichment import TransactionRecord, enrich_transaction, is_eligible
from mempool_watch.ingestion.pipeline import MempoolPipeline, PipelineStats
from mempool_watch.ingestion.reconciler import (
    ReconciliationResult,
    coverage_ratio,
    fetch_and_reconcile,
    reconcile_block,
)

__all__ = [
    "MempoolPipeline",
    "PipelineStats",
    "ReconciliationResult",
    "TransactionRecord",
    "coverage_ratio",
    "enrich_transaction",
    "fetch_and_reconcile",
    "is_eligible",
    "reconcile_block",
]
