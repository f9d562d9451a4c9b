"""
Real-time mempool ingestion: node subscriptions → enrich → index, blocks → reconcile.

Two subscriptions share one node connection:
- newPendingTransactions: each hash is fetched, enriched and indexed, one at a
  time inside the pending task.
- newHeads: each header's hash goes onto a bounded queue drained by a fixed
  pool of reconciliation workers. A block hash that is queued or being
  reconciled is not queued again.

The two paths are not synchronized: a block can be reconciled before the
write of one of its transactions lands, and that transaction then counts as
unseen. reconcile_delay_sec delays reconciliation to narrow that window.

A closed subscription, a lost node connection, or (with store_errors_fatal)
an unreachable store stops the pipeline: run() cancels the remaining tasks
and re-raises. stop() ends run() normally unless a task fails while the
running ones drain; that failure is logged and re-raised.

Usage:
    pipeline = MempoolPipeline(node, store, settings)
    stats = await pipeline.run()
"""

from __future__ import annotations

import asyncio
from dataclasses import asdict, dataclass
from typing import Any

from mempool_watch.config.settings import Settings
from mempool_watch.core.exceptions import NodeRequestError, SenderRecoveryError
from mempool_watch.ingestion.enrichment import enrich_transaction
from mempool_watch.ingestion.reconciler import fetch_and_reconcile
from mempool_watch.mempool_logging import get_logger
from mempool_watch.node.client import TOPIC_NEW_HEADS, TOPIC_PENDING_TRANSACTIONS, Subscription
from mempool_watch.node.models import BlockHeader
from mempool_watch.storage.es_store import TransactionStore
from mempool_watch.storage.writer import write_transaction

logger = get_logger(__name__)

# How often idle loops re-check the stop event
_POLL_INTERVAL_SEC = 1.0
DEFAULT_SHUTDOWN_GRACE_SEC = 5.0


@dataclass
class PipelineStats:
    """Counters for heartbeat logs and the final summary."""

    pending_seen: int = 0
    pending_skipped: int = 0
    filtered: int = 0
    enrich_failed: int = 0
    stored: int = 0
    store_rejected: int = 0
    blocks_queued: int = 0
    blocks_duplicate: int = 0
    blocks_reconciled: int = 0
    blocks_failed: int = 0
    last_block_number: int | None = None
    last_coverage_ratio: float | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class MempoolPipeline:
    """
    Runs the pending-transaction and new-block subscriptions until stop() or a
    fatal error.

    node must provide subscribe(), get_transaction(), get_block(),
    get_receipt() and chain_id() as NodeClient does.
    """

    def __init__(
        self,
        node: Any,
        store: TransactionStore,
        settings: Settings | None = None,
        *,
        shutdown_grace_sec: float = DEFAULT_SHUTDOWN_GRACE_SEC,
    ) -> None:
        self._node = node
        self._store = store
        self._settings = settings or Settings()
        self._shutdown_grace_sec = shutdown_grace_sec
        self._stop = asyncio.Event()
        self._blocks: asyncio.Queue[BlockHeader] = asyncio.Queue(maxsize=self._settings.reconcile_queue_size)
        self._in_flight: set[str] = set()
        self.stats = PipelineStats()

    def stop(self) -> None:
        """Signal every task to finish its current item and exit."""
        if not self._stop.is_set():
            logger.info("pipeline_stop_requested")
        self._stop.set()

    @property
    def stopping(self) -> bool:
        return self._stop.is_set()

    async def run(self) -> PipelineStats:
        """
        Subscribe to both topics and process events until stopped.

        Raises:
            SubscriptionClosedError / NodeConnectionError: the node stream ended.
            StoreUnavailableError: Elasticsearch unreachable and store_errors_fatal set.
        """
        pending_sub = await self._node.subscribe(TOPIC_PENDING_TRANSACTIONS)
        logger.info("pipeline_subscribed", topic=TOPIC_PENDING_TRANSACTIONS)
        heads_sub = await self._node.subscribe(TOPIC_NEW_HEADS)
        logger.info("pipeline_subscribed", topic=TOPIC_NEW_HEADS)

        tasks = [
            asyncio.create_task(self._pending_loop(pending_sub), name="pending-transactions"),
            asyncio.create_task(self._heads_loop(heads_sub), name="new-heads"),
            asyncio.create_task(self._heartbeat_loop(), name="heartbeat"),
        ]
        tasks.extend(
            asyncio.create_task(self._reconcile_worker(i), name=f"reconcile-{i}")
            for i in range(self._settings.reconcile_workers)
        )
        logger.info(
            "pipeline_started",
            reconcile_workers=self._settings.reconcile_workers,
            reconcile_queue_size=self._settings.reconcile_queue_size,
            reconcile_delay_sec=self._settings.reconcile_delay_sec,
            store_errors_fatal=self._settings.store_errors_fatal,
        )
        stop_waiter = asyncio.create_task(self._stop.wait(), name="stop-waiter")
        error: BaseException | None = None
        try:
            done, _ = await asyncio.wait([stop_waiter, *tasks], return_when=asyncio.FIRST_COMPLETED)
            failed = next((t for t in tasks if t in done and not t.cancelled() and t.exception()), None)
            if failed is not None:
                error = failed.exception()
                logger.error("pipeline_fatal", task=failed.get_name(), error=str(error))
                self._stop.set()
                raise error
            await self._drain(tasks)
        finally:
            stop_waiter.cancel()
            for task in tasks:
                task.cancel()
            outcomes = await asyncio.gather(*tasks, return_exceptions=True)
            drain_errors = [
                (task, outcome)
                for task, outcome in zip(tasks, outcomes)
                if isinstance(outcome, Exception) and outcome is not error
            ]
            for task, outcome in drain_errors:
                logger.error(
                    "pipeline_task_failed",
                    task=task.get_name(),
                    error=str(outcome),
                    error_type=type(outcome).__name__,
                )
        if drain_errors:
            # A fatal error while draining after stop() still fails the run
            raise drain_errors[0][1]
        logger.info("pipeline_stopped", **self.stats.to_dict())
        return self.stats

    async def _drain(self, tasks: list[asyncio.Task[Any]]) -> None:
        """Give running tasks a grace period to finish after stop()."""
        _, still_running = await asyncio.wait(tasks, timeout=self._shutdown_grace_sec)
        if still_running:
            logger.warning("pipeline_shutdown_forced", tasks=sorted(t.get_name() for t in still_running))
        if not self._blocks.empty():
            logger.warning("pipeline_blocks_dropped", count=self._blocks.qsize())

    async def _pending_loop(self, sub: Subscription) -> None:
        while not self._stop.is_set():
            try:
                tx_hash = await sub.get(timeout=_POLL_INTERVAL_SEC)
            except asyncio.TimeoutError:
                continue
            await self.handle_pending_hash(tx_hash)

    async def handle_pending_hash(self, tx_hash: str) -> bool:
        """
        Fetch, enrich and index one pending transaction. Returns True when stored.

        Enrichment failures are logged with traceback and skipped; a lost
        connection or (fatal) unreachable store propagates.
        """
        self.stats.pending_seen += 1
        try:
            tx = await self._node.get_transaction(tx_hash)
            if tx is None or not tx.is_pending:
                self.stats.pending_skipped += 1
                logger.debug("pending_tx_skipped", tx_hash=tx_hash, known=tx is not None)
                return False
            record = await enrich_transaction(tx, self._node)
        except (NodeRequestError, SenderRecoveryError) as e:
            self.stats.enrich_failed += 1
            logger.exception("pending_tx_enrich_failed", tx_hash=tx_hash, error=str(e))
            return False
        if record is None:
            self.stats.filtered += 1
            return False
        stored = await write_transaction(
            self._store, record, errors_fatal=self._settings.store_errors_fatal
        )
        if stored:
            self.stats.stored += 1
        else:
            self.stats.store_rejected += 1
        return stored

    async def _heads_loop(self, sub: Subscription) -> None:
        while not self._stop.is_set():
            try:
                payload = await sub.get(timeout=_POLL_INTERVAL_SEC)
            except asyncio.TimeoutError:
                continue
            await self.enqueue_block(BlockHeader.from_rpc(payload))

    async def enqueue_block(self, header: BlockHeader) -> bool:
        """Queue a block for reconciliation unless it is already queued or running."""
        if header.hash in self._in_flight:
            self.stats.blocks_duplicate += 1
            logger.info("block_already_in_flight", block_hash=header.hash, block_number=header.number)
            return False
        self._in_flight.add(header.hash)
        # Waits when the queue is full, holding back the header stream
        await self._blocks.put(header)
        self.stats.blocks_queued += 1
        logger.debug("block_queued", block_hash=header.hash, block_number=header.number, queued=self._blocks.qsize())
        return True

    async def _reconcile_worker(self, worker_id: int) -> None:
        while not self._stop.is_set():
            try:
                header = await asyncio.wait_for(self._blocks.get(), timeout=_POLL_INTERVAL_SEC)
            except asyncio.TimeoutError:
                continue
            try:
                await self._reconcile(header, worker_id)
            finally:
                self._in_flight.discard(header.hash)
                self._blocks.task_done()

    async def _reconcile(self, header: BlockHeader, worker_id: int) -> None:
        if self._settings.reconcile_delay_sec > 0:
            await asyncio.sleep(self._settings.reconcile_delay_sec)
        try:
            result = await fetch_and_reconcile(
                header.hash,
                self._node,
                self._store,
                track_receipts=self._settings.track_receipts,
                errors_fatal=self._settings.store_errors_fatal,
            )
        except NodeRequestError as e:
            self.stats.blocks_failed += 1
            logger.warning(
                "block_fetch_failed",
                worker=worker_id,
                block_hash=header.hash,
                block_number=header.number,
                error=str(e),
            )
            return
        if result is None:
            self.stats.blocks_failed += 1
            return
        self.stats.blocks_reconciled += 1
        self.stats.last_block_number = result.block_number
        self.stats.last_coverage_ratio = round(result.coverage_ratio, 2)

    async def _heartbeat_loop(self) -> None:
        interval = max(1.0, self._settings.heartbeat_interval_sec)
        while not self._stop.is_set():
            try:
                await asyncio.wait_for(self._stop.wait(), timeout=interval)
            except asyncio.TimeoutError:
                logger.info(
                    "pipeline_heartbeat",
                    blocks_waiting=self._blocks.qsize(),
                    blocks_in_flight=len(self._in_flight),
                    **self.stats.to_dict(),
                )
