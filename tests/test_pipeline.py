"""
MempoolPipeline: pending path, block path, shutdown and fatal errors.
"""

from __future__ import annotations

import asyncio
import dataclasses
from unittest.mock import MagicMock

import pytest

from mempool_watch.config.settings import Settings
from mempool_watch.core.exceptions import StoreUnavailableError, SubscriptionClosedError
from mempool_watch.ingestion import pipeline as pipeline_module
from mempool_watch.ingestion.pipeline import MempoolPipeline, PipelineStats
from mempool_watch.node.client import TOPIC_NEW_HEADS, TOPIC_PENDING_TRANSACTIONS
from mempool_watch.node.models import BlockHeader
from tests.conftest import BLOCK_HASH, ONE_ETHER, FakeNode, pending_tx


def make_settings(**overrides) -> Settings:
    base = dict(node_url="/tmp/mw-test.ipc", reconcile_workers=2, heartbeat_interval_sec=60)
    base.update(overrides)
    return Settings(**base)


async def wait_for(predicate, timeout: float = 5.0) -> None:
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not met before timeout")
        await asyncio.sleep(0.01)


def header_payload(block_hash: str, number: int) -> dict:
    return {"hash": block_hash, "number": hex(number), "parentHash": "0x" + "00" * 32}


@pytest.mark.asyncio
async def test_handle_pending_hash_stores_contract_call(node, store, fake_es):
    tx = node.add_transaction(pending_tx(value=ONE_ETHER))
    pipeline = MempoolPipeline(node, store, make_settings())

    assert await pipeline.handle_pending_hash(tx.hash) is True

    assert pipeline.stats.stored == 1
    doc = fake_es.documents()[tx.hash]
    assert doc["txHash"] == tx.hash
    assert doc["txValue"] == 1.0


@pytest.mark.asyncio
async def test_handle_pending_hash_skips_unknown_and_mined(node, store, fake_es):
    mined = dataclasses.replace(pending_tx(nonce=3), block_hash=BLOCK_HASH, block_number=10)
    node.add_transaction(mined)
    pipeline = MempoolPipeline(node, store, make_settings())

    assert await pipeline.handle_pending_hash("0x" + "ab" * 32) is False
    assert await pipeline.handle_pending_hash(mined.hash) is False

    assert pipeline.stats.pending_skipped == 2
    assert fake_es.documents() == {}


@pytest.mark.asyncio
async def test_handle_pending_hash_filters_plain_transfer(node, store, fake_es):
    tx = node.add_transaction(pending_tx(data=b"", value=ONE_ETHER))
    pipeline = MempoolPipeline(node, store, make_settings())

    assert await pipeline.handle_pending_hash(tx.hash) is False
    assert pipeline.stats.filtered == 1
    assert fake_es.documents() == {}


@pytest.mark.asyncio
async def test_handle_pending_hash_counts_recovery_failure(store, fake_es):
    node = FakeNode(chain_id=5)
    tx = node.add_transaction(pending_tx(chain_id=1))
    pipeline = MempoolPipeline(node, store, make_settings())

    assert await pipeline.handle_pending_hash(tx.hash) is False
    assert pipeline.stats.enrich_failed == 1
    assert fake_es.documents() == {}


@pytest.mark.asyncio
async def test_unreachable_store_is_fatal_by_default(node, store, fake_es):
    tx = node.add_transaction(pending_tx())
    fake_es.unreachable = True
    pipeline = MempoolPipeline(node, store, make_settings())

    with pytest.raises(StoreUnavailableError):
        await pipeline.handle_pending_hash(tx.hash)


@pytest.mark.asyncio
async def test_unreachable_store_dropped_when_not_fatal(node, store, fake_es):
    tx = node.add_transaction(pending_tx())
    fake_es.unreachable = True
    pipeline = MempoolPipeline(node, store, make_settings(store_errors_fatal=False))

    assert await pipeline.handle_pending_hash(tx.hash) is False
    assert pipeline.stats.store_rejected == 1


@pytest.mark.asyncio
async def test_enqueue_block_rejects_in_flight_duplicate(node, store):
    pipeline = MempoolPipeline(node, store, make_settings())
    header = BlockHeader(hash=BLOCK_HASH, number=100)

    assert await pipeline.enqueue_block(header) is True
    assert await pipeline.enqueue_block(header) is False

    assert pipeline.stats.blocks_queued == 1
    assert pipeline.stats.blocks_duplicate == 1


@pytest.mark.asyncio
async def test_run_stores_pending_and_reconciles_block(node, store, fake_es):
    seen = node.add_transaction(pending_tx(nonce=1))
    also_seen = node.add_transaction(pending_tx(nonce=2))
    pipeline = MempoolPipeline(node, store, make_settings(), shutdown_grace_sec=3.0)
    run_task = asyncio.create_task(pipeline.run())
    await wait_for(lambda: len(node.subscriptions) == 2)

    node.push(TOPIC_PENDING_TRANSACTIONS, seen.hash)
    node.push(TOPIC_PENDING_TRANSACTIONS, also_seen.hash)
    await wait_for(lambda: pipeline.stats.stored == 2)
    assert set(fake_es.documents()) == {seen.hash, also_seen.hash}

    # One of three block transactions was never seen pending
    never_seen = "0x" + "cd" * 32
    node.add_block(BLOCK_HASH, 200, [seen.hash, also_seen.hash, never_seen])
    node.push(TOPIC_NEW_HEADS, header_payload(BLOCK_HASH, 200))
    await wait_for(lambda: pipeline.stats.blocks_reconciled == 1)

    pipeline.stop()
    stats = await asyncio.wait_for(run_task, timeout=10)

    assert isinstance(stats, PipelineStats)
    assert stats.pending_seen == 2
    assert stats.last_block_number == 200
    assert stats.last_coverage_ratio == pytest.approx(66.67)
    assert fake_es.documents() == {}


@pytest.mark.asyncio
async def test_run_counts_unknown_block_as_failed(node, store):
    pipeline = MempoolPipeline(node, store, make_settings(), shutdown_grace_sec=3.0)
    run_task = asyncio.create_task(pipeline.run())
    await wait_for(lambda: len(node.subscriptions) == 2)

    node.push(TOPIC_NEW_HEADS, header_payload("0x" + "ee" * 32, 201))
    await wait_for(lambda: pipeline.stats.blocks_failed == 1)

    pipeline.stop()
    stats = await asyncio.wait_for(run_task, timeout=10)
    assert stats.blocks_reconciled == 0


@pytest.mark.asyncio
async def test_run_raises_when_subscription_closes(node, store):
    pipeline = MempoolPipeline(node, store, make_settings(), shutdown_grace_sec=3.0)
    run_task = asyncio.create_task(pipeline.run())
    await wait_for(lambda: len(node.subscriptions) == 2)

    node.drop(TOPIC_PENDING_TRANSACTIONS, "connection reset")

    with pytest.raises(SubscriptionClosedError) as exc_info:
        await asyncio.wait_for(run_task, timeout=10)
    assert exc_info.value.topic == TOPIC_PENDING_TRANSACTIONS
    assert pipeline.stopping


@pytest.mark.asyncio
async def test_run_raises_when_store_unreachable(node, store, fake_es):
    tx = node.add_transaction(pending_tx())
    fake_es.unreachable = True
    pipeline = MempoolPipeline(node, store, make_settings(), shutdown_grace_sec=3.0)
    run_task = asyncio.create_task(pipeline.run())
    await wait_for(lambda: len(node.subscriptions) == 2)

    node.push(TOPIC_PENDING_TRANSACTIONS, tx.hash)

    with pytest.raises(StoreUnavailableError):
        await asyncio.wait_for(run_task, timeout=10)


@pytest.mark.asyncio
async def test_reconcile_delay_is_applied(node, store, fake_es):
    fake_es.add_document("a", "0x" + "01" * 32)
    node.add_block(BLOCK_HASH, 300, ["0x" + "01" * 32])
    pipeline = MempoolPipeline(node, store, make_settings(reconcile_delay_sec=0.2), shutdown_grace_sec=3.0)
    run_task = asyncio.create_task(pipeline.run())
    await wait_for(lambda: len(node.subscriptions) == 2)

    node.push(TOPIC_NEW_HEADS, header_payload(BLOCK_HASH, 300))
    await asyncio.sleep(0.05)
    assert pipeline.stats.blocks_reconciled == 0
    await wait_for(lambda: pipeline.stats.blocks_reconciled == 1)

    pipeline.stop()
    stats = await asyncio.wait_for(run_task, timeout=10)
    assert stats.last_coverage_ratio == 100.0


@pytest.mark.asyncio
async def test_failure_while_draining_after_stop_is_logged_and_raised(node, store, fake_es, monkeypatch):
    mock_logger = MagicMock()
    monkeypatch.setattr(pipeline_module, "logger", mock_logger)
    node.add_block(BLOCK_HASH, 400, ["0x" + "01" * 32])
    pipeline = MempoolPipeline(node, store, make_settings(reconcile_delay_sec=0.3), shutdown_grace_sec=3.0)
    run_task = asyncio.create_task(pipeline.run())
    await wait_for(lambda: len(node.subscriptions) == 2)

    node.push(TOPIC_NEW_HEADS, header_payload(BLOCK_HASH, 400))
    await wait_for(lambda: pipeline.stats.blocks_queued == 1 and BLOCK_HASH in pipeline._in_flight)
    await wait_for(lambda: pipeline._blocks.empty())
    # The worker holds the block in its delay; the store goes away before it reconciles
    fake_es.unreachable = True
    pipeline.stop()

    with pytest.raises(StoreUnavailableError):
        await asyncio.wait_for(run_task, timeout=10)
    failures = [c for c in mock_logger.error.call_args_list if c.args[0] == "pipeline_task_failed"]
    assert len(failures) == 1
    assert failures[0].kwargs["task"].startswith("reconcile-")
    assert failures[0].kwargs["error_type"] == "StoreUnavailableError"
    assert not any(c.args[0] == "pipeline_stopped" for c in mock_logger.info.call_args_list)
