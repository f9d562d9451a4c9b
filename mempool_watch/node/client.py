"""
Ethereum node JSON-RPC client over IPC or WebSocket (web3 persistent providers).

One AsyncWeb3 connection carries both plain requests (eth_getTransactionByHash,
eth_getBlockByHash, ...) and eth_subscribe notifications. Requests go through
the provider as raw JSON-RPC; a reader task drains web3's subscription stream
and routes each notification to the owning Subscription's queue.

Connection loss is terminal: every subscription raises SubscriptionClosedError
on its next read and later requests fail with NodeConnectionError. There is no
reconnect.

Usage:
    async with NodeClient("/home/me/.ethereum/geth.ipc") as node:
        sub = await node.subscribe("newHeads")
        header = await sub.get()
"""

from __future__ import annotations

import asyncio
from collections.abc import Mapping
from typing import Any

from eth_utils import to_hex
from web3 import AsyncIPCProvider, AsyncWeb3, WebSocketProvider
from web3.exceptions import TimeExhausted, Web3Exception, Web3RPCError
from websockets.exceptions import ConnectionClosed, InvalidHandshake, InvalidURI

from mempool_watch.core.exceptions import (
    NodeConnectionError,
    NodeRequestError,
    SubscriptionClosedError,
)
from mempool_watch.mempool_logging import get_logger
from mempool_watch.node.models import Block, PendingTransaction
from mempool_watch.utils.units import parse_quantity

logger = get_logger(__name__)

TOPIC_PENDING_TRANSACTIONS = "newPendingTransactions"
TOPIC_NEW_HEADS = "newHeads"

# go-ethereum closes a client subscription whose buffer exceeds this many notifications
DEFAULT_MAX_QUEUED_NOTIFICATIONS = 20_000
DEFAULT_WS_PING_INTERVAL = 30.0
DEFAULT_WS_PING_TIMEOUT = 10.0
# Provider-side bound used when the configured request timeout is disabled (0 / None)
_UNBOUNDED_REQUEST_TIMEOUT = 365 * 24 * 3600.0
# web3's own notification buffer between the socket and the reader task
_PROVIDER_QUEUE_SIZE = 10_000

_CLOSED = object()


def is_websocket_url(url: str) -> bool:
    return url.startswith(("ws://", "wss://"))


def build_provider(url: str, request_timeout: float | None) -> AsyncIPCProvider | WebSocketProvider:
    """WebSocketProvider for ws:// / wss:// URLs, AsyncIPCProvider for socket paths."""
    timeout = request_timeout or _UNBOUNDED_REQUEST_TIMEOUT
    common: dict[str, Any] = {
        "request_timeout": timeout,
        "subscription_response_queue_size": _PROVIDER_QUEUE_SIZE,
        "max_connection_retries": 1,
    }
    if is_websocket_url(url):
        return WebSocketProvider(
            url,
            websocket_kwargs={
                "ping_interval": DEFAULT_WS_PING_INTERVAL,
                "ping_timeout": DEFAULT_WS_PING_TIMEOUT,
                "max_size": None,
            },
            **common,
        )
    path = url[len("ipc://"):] if url.startswith("ipc://") else url
    return AsyncIPCProvider(path, **common)


def to_plain(value: Any) -> Any:
    """Undo web3 result formatting: bytes -> 0x hex, AttributeDict -> dict."""
    if isinstance(value, (bytes, bytearray)):
        return to_hex(bytes(value))
    if isinstance(value, Mapping):
        return {k: to_plain(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_plain(v) for v in value]
    return value


class Subscription:
    """
    Notifications for one eth_subscribe topic.

    get() returns the next notification payload in arrival order and raises
    SubscriptionClosedError once the connection is gone or the buffer overflowed.
    """

    def __init__(self, client: "NodeClient", subscription_id: str, topic: str) -> None:
        self.id = subscription_id
        self.topic = topic
        self._client = client
        self._queue: asyncio.Queue[Any] = asyncio.Queue()
        self._close_reason = ""

    @property
    def closed(self) -> bool:
        return bool(self._close_reason)

    def _push(self, payload: Any) -> None:
        if self._close_reason:
            return
        if self._queue.qsize() >= self._client.max_queued_notifications:
            logger.error(
                "node_subscription_overflow",
                topic=self.topic,
                subscription_id=self.id,
                queued=self._queue.qsize(),
            )
            self._close("notification buffer overflow")
            return
        self._queue.put_nowait(payload)

    def _close(self, reason: str) -> None:
        if not self._close_reason:
            self._close_reason = reason or "connection closed"
            self._queue.put_nowait(_CLOSED)

    def qsize(self) -> int:
        return self._queue.qsize()

    async def get(self, timeout: float | None = None) -> Any:
        """
        Wait for the next notification.

        Raises:
            asyncio.TimeoutError: nothing arrived within timeout.
            SubscriptionClosedError: the subscription can no longer deliver.
        """
        if timeout is None:
            item = await self._queue.get()
        else:
            item = await asyncio.wait_for(self._queue.get(), timeout=timeout)
        if item is _CLOSED:
            # Keep the marker so later readers see the closure too
            self._queue.put_nowait(_CLOSED)
            raise SubscriptionClosedError(self.topic, self._close_reason)
        return item


class NodeClient:
    """
    Multiplexed JSON-RPC client for a single node connection.

    The chain id is fetched once and cached for the lifetime of the client.
    request_timeout applies to each request; None waits indefinitely.
    """

    def __init__(
        self,
        url: str,
        *,
        request_timeout: float | None = None,
        max_queued_notifications: int = DEFAULT_MAX_QUEUED_NOTIFICATIONS,
    ) -> None:
        if not url.strip():
            raise ValueError("node url must be non-empty")
        if url.startswith(("http://", "https://")):
            raise ValueError("subscriptions need an IPC path or ws:// URL, not HTTP")
        self.url = url.strip()
        self.request_timeout = request_timeout
        self.max_queued_notifications = max_queued_notifications
        self._w3 = AsyncWeb3(build_provider(self.url, request_timeout))
        self._subscriptions: dict[str, Subscription] = {}
        self._early_notifications: dict[str, list[Any]] = {}
        self._reader_task: asyncio.Task[None] | None = None
        self._connected = False
        self._closed_reason: str | None = None
        self._chain_id: int | None = None
        self._chain_id_lock = asyncio.Lock()

    async def __aenter__(self) -> "NodeClient":
        await self.connect()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    @property
    def connected(self) -> bool:
        return self._connected and self._closed_reason is None

    async def connect(self) -> None:
        """Open the provider connection (socket plus web3's message listener)."""
        try:
            await self._w3.provider.connect()
        except (Web3Exception, OSError, InvalidHandshake, InvalidURI) as e:
            raise NodeConnectionError(f"cannot connect to node at {self.url}: {e}") from e
        self._connected = True
        logger.info("node_connected", url=self.url)

    async def close(self) -> None:
        """Close the connection; subscriptions fail and later requests raise."""
        if self._reader_task is not None:
            self._reader_task.cancel()
            try:
                await self._reader_task
            except asyncio.CancelledError:
                pass
        self._fail_all("client closed")
        if self._connected:
            try:
                await self._w3.provider.disconnect()
            except (Web3Exception, OSError, ConnectionClosed) as e:
                logger.warning("node_disconnect_failed", url=self.url, error=str(e))
            self._connected = False
        logger.info("node_closed", url=self.url)

    def _ensure_reader(self) -> None:
        if self._reader_task is None:
            self._reader_task = asyncio.create_task(self._read_loop(), name="node-reader")

    async def _read_loop(self) -> None:
        try:
            async for message in self._w3.socket.process_subscriptions():
                self._dispatch(message)
            reason = "node closed the connection"
        except ConnectionClosed as e:
            reason = f"websocket closed (code={e.rcvd.code if e.rcvd else None})"
        except (Web3Exception, OSError, ValueError) as e:
            reason = str(e) or type(e).__name__
        logger.error("node_connection_lost", url=self.url, reason=reason)
        self._fail_all(reason)

    def _fail_all(self, reason: str) -> None:
        if self._closed_reason is None:
            self._closed_reason = reason
        for sub in self._subscriptions.values():
            sub._close(reason)

    def _dispatch(self, message: Any) -> None:
        if not isinstance(message, Mapping):
            return
        # Raw eth_subscription envelopes carry the payload under "params"
        params = message.get("params") if "params" in message else message
        if not isinstance(params, Mapping):
            return
        sub_id = params.get("subscription")
        if sub_id is None:
            return
        sub_id = to_plain(sub_id)
        payload = to_plain(params.get("result"))
        sub = self._subscriptions.get(sub_id)
        if sub is not None:
            sub._push(payload)
        else:
            # Notification raced ahead of the subscription's registration
            self._early_notifications.setdefault(sub_id, []).append(payload)

    async def request(self, method: str, params: list[Any] | None = None) -> Any:
        """
        Send one JSON-RPC request and wait for its result.

        Raises:
            NodeRequestError: the node returned an error object or the request timed out.
            NodeConnectionError: the connection is closed or was lost while waiting.
        """
        if self._closed_reason is not None:
            raise NodeConnectionError(f"node connection lost: {self._closed_reason}")
        if not self._connected:
            raise NodeConnectionError("node client is not connected")
        try:
            response = await self._w3.provider.make_request(method, params or [])
        except (TimeExhausted, asyncio.TimeoutError) as e:
            raise NodeRequestError(method, f"timed out after {self.request_timeout}s") from e
        except Web3RPCError as e:
            raise NodeRequestError(method, (e.rpc_response or {}).get("error") or str(e)) from e
        except (Web3Exception, OSError, ConnectionClosed) as e:
            raise NodeConnectionError(f"{method}: node connection lost: {e}") from e
        if response.get("error") is not None:
            raise NodeRequestError(method, response["error"])
        return to_plain(response.get("result"))

    async def subscribe(self, topic: str, *params: Any) -> Subscription:
        """Start an eth_subscribe stream and return its Subscription."""
        if self._closed_reason is not None:
            raise NodeConnectionError(f"node connection lost: {self._closed_reason}")
        try:
            raw_id = await self._w3.eth.subscribe(topic, *params)
        except Web3RPCError as e:
            raise NodeRequestError("eth_subscribe", (e.rpc_response or {}).get("error") or str(e)) from e
        except (Web3Exception, OSError, ConnectionClosed) as e:
            raise NodeConnectionError(f"eth_subscribe: node connection lost: {e}") from e
        sub_id = to_plain(raw_id)
        sub = Subscription(self, sub_id, topic)
        self._subscriptions[sub_id] = sub
        for payload in self._early_notifications.pop(sub_id, []):
            sub._push(payload)
        self._ensure_reader()
        logger.info("node_subscribed", topic=topic, subscription_id=sub_id)
        return sub

    async def unsubscribe(self, sub: Subscription) -> None:
        self._subscriptions.pop(sub.id, None)
        sub._close("unsubscribed")
        if self._closed_reason is None:
            await self.request("eth_unsubscribe", [sub.id])

    async def chain_id(self) -> int:
        """Return the node's chain id (eth_chainId), cached after the first call."""
        if self._chain_id is None:
            async with self._chain_id_lock:
                if self._chain_id is None:
                    self._chain_id = parse_quantity(await self.request("eth_chainId"))
                    logger.info("node_chain_id", chain_id=self._chain_id)
        return self._chain_id

    async def get_transaction(self, tx_hash: str) -> PendingTransaction | None:
        """eth_getTransactionByHash; None when the node does not know the hash."""
        raw = await self.request("eth_getTransactionByHash", [tx_hash])
        if raw is None:
            return None
        return PendingTransaction.from_rpc(raw)

    async def get_block(self, block_hash: str) -> Block | None:
        """eth_getBlockByHash with transaction hashes; None when the block is unknown."""
        raw = await self.request("eth_getBlockByHash", [block_hash, False])
        if raw is None:
            return None
        return Block.from_rpc(raw)

    async def get_receipt(self, tx_hash: str) -> dict[str, Any] | None:
        """eth_getTransactionReceipt; None while the transaction is unmined."""
        return await self.request("eth_getTransactionReceipt", [tx_hash])


def receipt_failed(receipt: dict[str, Any] | None) -> bool:
    """True when a mined receipt reports status 0 (execution reverted)."""
    if not receipt:
        return False
    status = receipt.get("status")
    return status is not None and parse_quantity(status) == 0
