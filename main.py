"""
Main entrypoint: stream the node's mempool into Elasticsearch, or flush an index.

    python main.py                      # stream pending transactions and reconcile blocks
    python main.py --flush transactions # delete every document in an index

Streaming runs until SIGINT/SIGTERM (clean exit 0) or a fatal node/store
failure (exit 1). Env: MEMPOOL_NODE_URL, ELASTICSEARCH_URL, MEMPOOL_INDEX, etc.
(see mempool_watch.config.env).
"""

from __future__ import annotations

import argparse
import asyncio
import signal
import sys

# Configure structured JSON logging before other imports that may log
from mempool_watch.mempool_logging import get_logger

from mempool_watch.config import Settings, get_settings
from mempool_watch.core.exceptions import MempoolWatchError
from mempool_watch.ingestion.pipeline import MempoolPipeline
from mempool_watch.node.client import NodeClient
from mempool_watch.storage.es_store import TransactionStore

logger = get_logger("main")


def build_store(settings: Settings) -> TransactionStore:
    return TransactionStore(
        settings.es_url,
        settings.index_name,
        timeout=settings.store_timeout,
        auth=settings.es_auth,
    )


async def flush_index(settings: Settings, index_name: str) -> int:
    """Delete every document in index_name. Returns the number deleted."""
    async with build_store(settings) as store:
        deleted = await store.flush_index(index_name)
    logger.info("index_flushed", index=index_name, deleted=deleted)
    return deleted


def _install_signal_handlers(pipeline: MempoolPipeline) -> None:
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, pipeline.stop)
        except (NotImplementedError, RuntimeError):
            # Not supported on this platform / not in main thread
            pass


async def stream_mempool(settings: Settings) -> None:
    """Connect to the node and the store, then run the pipeline until stopped."""
    logger.info(
        "main_streaming",
        node_url=settings.node_url,
        es_url=settings.es_url,
        index=settings.index_name,
    )
    async with build_store(settings) as store:
        await store.ensure_index()
        async with NodeClient(settings.node_url, request_timeout=settings.node_timeout) as node:
            pipeline = MempoolPipeline(node, store, settings)
            _install_signal_handlers(pipeline)
            await pipeline.run()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Stream an Ethereum node's pending transactions into Elasticsearch and reconcile mined blocks.",
    )
    parser.add_argument("--flush", metavar="INDEX", default="", help="Delete every document in INDEX and exit")
    parser.add_argument("--node-url", default=None, help="geth IPC path or ws:// URL (default: MEMPOOL_NODE_URL or ~/.ethereum/geth.ipc)")
    parser.add_argument("--es-url", default=None, help="Elasticsearch URL (default: ELASTICSEARCH_URL or http://localhost:9200)")
    parser.add_argument("--index", dest="index_name", default=None, help="Index for pending transactions (default: MEMPOOL_INDEX or transactions)")
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    try:
        settings = get_settings().with_overrides(
            node_url=args.node_url,
            es_url=args.es_url,
            index_name=args.index_name,
        )
    except ValueError as e:
        logger.error("main_config_error", error=str(e))
        return 1
    try:
        if args.flush:
            asyncio.run(flush_index(settings, args.flush))
        else:
            asyncio.run(stream_mempool(settings))
    except MempoolWatchError as e:
        logger.error("main_fatal", error=str(e), error_type=type(e).__name__)
        return 1
    except KeyboardInterrupt:
        logger.info("main_keyboard_interrupt")
    return 0


if __name__ == "__main__":
    sys.exit(main())
