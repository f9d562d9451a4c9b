"""
Pytest fixtures for Mempool Watch tests.

Elasticsearch is an in-memory fake served through httpx.MockTransport; the node
is an in-process fake exposing NodeClient's request surface. Signed
transactions come from eth-account so sender recovery is checked against a
known key.
"""

from __future__ import annotations

import json
from typing import Any

import httpx
import pytest
from eth_account import Account
from eth_utils import to_checksum_address

from mempool_watch.node.client import Subscription
from mempool_watch.node.models import Block, PendingTransaction
from mempool_watch.storage.es_store import TransactionStore

PRIVATE_KEY = "0x4c0883a69102937d6231471b5dbb6204fe5129617082792ae468d01a3f362318"
SENDER = Account.from_key(PRIVATE_KEY).address
ROUTER = "0x7a250d5630B4cF539739dF2C5dAcb4c659F2488D"
TOKEN = "0xA0b86991c6218b36c1d19D4a2e9Eb0cE3606eB48"
# ERC-20 transfer(address,uint256): 4-byte selector + two 32-byte words = 68 bytes
TRANSFER_CALLDATA = bytes.fromhex(
    "a9059cbb"
    + "000000000000000000000000" + "7a250d5630b4cf539739df2c5dacb4c659f2488d"
    + format(10**18, "064x")
)
BLOCK_HASH = "0x" + "b1" * 32
ONE_ETHER = 10**18


def sign_transaction(
    *,
    to: str | None = ROUTER,
    data: bytes = TRANSFER_CALLDATA,
    value: int = 0,
    nonce: int = 7,
    gas: int = 120_000,
    chain_id: int = 1,
    tx_type: int = 0,
    gas_price: int = 30 * 10**9,
    access_list: list[dict[str, Any]] | None = None,
) -> dict[str, Any]:
    """Sign with PRIVATE_KEY and return the eth_getTransactionByHash JSON for a pending tx."""
    fields: dict[str, Any] = {
        "nonce": nonce,
        "gas": gas,
        "to": to_checksum_address(to) if to else None,
        "value": value,
        "data": data,
        "chainId": chain_id,
    }
    if tx_type == 0:
        fields["gasPrice"] = gas_price
    elif tx_type == 1:
        fields["type"] = 1
        fields["gasPrice"] = gas_price
        fields["accessList"] = access_list or []
    else:
        fields["type"] = 2
        fields["maxFeePerGas"] = gas_price
        fields["maxPriorityFeePerGas"] = 2 * 10**9
        fields["accessList"] = access_list or []
    signed = Account.sign_transaction(fields, PRIVATE_KEY)
    rpc: dict[str, Any] = {
        "hash": "0x" + bytes(signed.hash).hex(),
        "type": hex(tx_type),
        "nonce": hex(nonce),
        "to": to.lower() if to else None,
        "value": hex(value),
        "gas": hex(gas),
        "gasPrice": hex(gas_price),
        "input": "0x" + data.hex(),
        "v": hex(signed.v),
        "r": hex(signed.r),
        "s": hex(signed.s),
        "blockHash": None,
        "blockNumber": None,
        "transactionIndex": None,
    }
    if tx_type != 0:
        rpc["chainId"] = hex(chain_id)
        rpc["yParity"] = hex(signed.v)
        rpc["accessList"] = access_list or []
    if tx_type == 2:
        rpc["maxFeePerGas"] = hex(gas_price)
        rpc["maxPriorityFeePerGas"] = hex(2 * 10**9)
    return rpc


def pending_tx(**kwargs: Any) -> PendingTransaction:
    return PendingTransaction.from_rpc(sign_transaction(**kwargs))


class FakeElasticsearch:
    """
    Minimal Elasticsearch REST semantics for one process: create index, index
    by id, term search on txHash, delete by id, delete_by_query.
    """

    def __init__(self) -> None:
        self.indices: dict[str, dict[str, dict[str, Any]]] = {}
        self.versions: dict[tuple[str, str], int] = {}
        self.requests: list[tuple[str, str]] = []
        self.unreachable = False
        self.reject_index_status: int | None = None
        self.failing_search_hashes: set[str] = set()

    def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append((request.method, request.url.path))
        if self.unreachable:
            raise httpx.ConnectError("Connection refused", request=request)
        parts = request.url.path.strip("/").split("/")
        body = json.loads(request.content) if request.content else None
        index = parts[0]
        if len(parts) == 1 and request.method == "PUT":
            if index in self.indices:
                return self._error(400, "resource_already_exists_exception")
            self.indices[index] = {}
            return httpx.Response(200, json={"acknowledged": True, "index": index})
        if len(parts) == 3 and parts[1] == "_doc":
            return self._doc(request.method, index, parts[2], body)
        if parts[1:] == ["_search"]:
            return self._search(index, body)
        if parts[1:] == ["_delete_by_query"]:
            docs = self.indices.get(index)
            if docs is None:
                return self._error(404, "index_not_found_exception")
            deleted = len(docs)
            docs.clear()
            return httpx.Response(200, json={"deleted": deleted, "failures": []})
        return self._error(400, "unsupported_request")

    def _doc(self, method: str, index: str, doc_id: str, body: Any) -> httpx.Response:
        if method == "PUT":
            if self.reject_index_status is not None:
                return self._error(self.reject_index_status, "mapper_parsing_exception")
            docs = self.indices.setdefault(index, {})
            created = doc_id not in docs
            docs[doc_id] = body
            version = self.versions.get((index, doc_id), 0) + 1
            self.versions[(index, doc_id)] = version
            return httpx.Response(
                201 if created else 200,
                json={"_id": doc_id, "result": "created" if created else "updated", "_version": version},
            )
        if method == "DELETE":
            docs = self.indices.get(index, {})
            if docs.pop(doc_id, None) is None:
                return httpx.Response(404, json={"_id": doc_id, "result": "not_found"})
            return httpx.Response(200, json={"_id": doc_id, "result": "deleted"})
        return self._error(405, "method_not_allowed")

    def _search(self, index: str, body: Any) -> httpx.Response:
        docs = self.indices.get(index)
        if docs is None:
            return self._error(404, "index_not_found_exception")
        tx_hash = body["query"]["term"]["txHash"]
        if tx_hash in self.failing_search_hashes:
            return self._error(500, "search_phase_execution_exception")
        hits = [{"_index": index, "_id": doc_id} for doc_id, doc in docs.items() if doc.get("txHash") == tx_hash]
        return httpx.Response(200, json={"hits": {"total": {"value": len(hits)}, "hits": hits}})

    @staticmethod
    def _error(status: int, error_type: str) -> httpx.Response:
        return httpx.Response(status, json={"error": {"type": error_type, "reason": error_type}, "status": status})

    def add_document(self, doc_id: str, tx_hash: str, index: str = "transactions") -> None:
        self.indices.setdefault(index, {})[doc_id] = {"txHash": tx_hash}

    def documents(self, index: str = "transactions") -> dict[str, dict[str, Any]]:
        return self.indices.get(index, {})


class FakeNode:
    """In-process node: canned transactions, blocks and receipts plus live subscriptions."""

    max_queued_notifications = 1000

    def __init__(self, chain_id: int = 1) -> None:
        self._chain_id = chain_id
        self.chain_id_calls = 0
        self.transactions: dict[str, PendingTransaction] = {}
        self.blocks: dict[str, Block] = {}
        self.receipts: dict[str, dict[str, Any]] = {}
        self.subscriptions: dict[str, Subscription] = {}

    async def chain_id(self) -> int:
        self.chain_id_calls += 1
        return self._chain_id

    async def subscribe(self, topic: str) -> Subscription:
        sub = Subscription(self, f"0xsub{len(self.subscriptions) + 1}", topic)
        self.subscriptions[topic] = sub
        return sub

    async def get_transaction(self, tx_hash: str) -> PendingTransaction | None:
        return self.transactions.get(tx_hash)

    async def get_block(self, block_hash: str) -> Block | None:
        return self.blocks.get(block_hash)

    async def get_receipt(self, tx_hash: str) -> dict[str, Any] | None:
        return self.receipts.get(tx_hash)

    def add_transaction(self, tx: PendingTransaction) -> PendingTransaction:
        self.transactions[tx.hash] = tx
        return tx

    def add_block(self, block_hash: str, number: int, tx_hashes: list[str]) -> Block:
        block = Block(hash=block_hash, number=number, transactions=list(tx_hashes))
        self.blocks[block_hash] = block
        return block

    def push(self, topic: str, payload: Any) -> None:
        self.subscriptions[topic]._push(payload)

    def drop(self, topic: str, reason: str = "connection reset") -> None:
        self.subscriptions[topic]._close(reason)


@pytest.fixture
def fake_es() -> FakeElasticsearch:
    return FakeElasticsearch()


@pytest.fixture
def store(fake_es: FakeElasticsearch) -> TransactionStore:
    """TransactionStore wired to the in-memory Elasticsearch."""
    return TransactionStore(
        "http://elasticsearch.test:9200",
        "transactions",
        transport=httpx.MockTransport(fake_es.handle),
    )


@pytest.fixture
def node() -> FakeNode:
    return FakeNode(chain_id=1)
