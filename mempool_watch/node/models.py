"""
Data models for node JSON-RPC payloads.

Normalizes eth_getTransactionByHash / eth_getBlockByHash / newHeads results into
typed dataclasses. Hex quantities are parsed to int, hex data to bytes; field
names follow Python conventions.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from mempool_watch.utils.units import parse_quantity


def hex_to_bytes(value: str | None) -> bytes:
    """Decode a 0x-prefixed hex string; None or "0x" -> b""."""
    if not value:
        return b""
    s = value[2:] if value.startswith(("0x", "0X")) else value
    if len(s) % 2:
        s = "0" + s
    return bytes.fromhex(s)


def _optional_quantity(item: dict[str, Any], key: str) -> int | None:
    raw = item.get(key)
    return None if raw is None else parse_quantity(raw)


@dataclass(frozen=True)
class PendingTransaction:
    """
    A transaction as returned by eth_getTransactionByHash.

    block_hash is None while the transaction is still pending. Fee fields that
    do not apply to the envelope type are None.
    """

    hash: str
    type: int
    nonce: int
    to: str | None
    value: int
    gas: int
    gas_price: int | None
    input: bytes
    v: int
    r: int
    s: int
    chain_id: int | None = None
    max_fee_per_gas: int | None = None
    max_priority_fee_per_gas: int | None = None
    max_fee_per_blob_gas: int | None = None
    access_list: list[dict[str, Any]] = field(default_factory=list)
    blob_versioned_hashes: list[str] = field(default_factory=list)
    authorization_list: list[dict[str, Any]] = field(default_factory=list)
    block_hash: str | None = None
    block_number: int | None = None

    @property
    def is_pending(self) -> bool:
        return self.block_hash is None

    @property
    def effective_gas_price(self) -> int:
        """gasPrice when the node reports it, else maxFeePerGas, else 0."""
        if self.gas_price is not None:
            return self.gas_price
        return self.max_fee_per_gas or 0

    @classmethod
    def from_rpc(cls, item: dict[str, Any]) -> "PendingTransaction":
        """Build from an eth_getTransactionByHash result object."""
        tx_type = parse_quantity(item.get("type"))
        v_raw = item.get("v")
        if tx_type != 0 and item.get("yParity") is not None:
            v_raw = item["yParity"]
        block_hash = item.get("blockHash")
        if block_hash is not None and int(block_hash, 16) == 0:
            block_hash = None
        return cls(
            hash=item["hash"],
            type=tx_type,
            nonce=parse_quantity(item["nonce"]),
            to=item.get("to"),
            value=parse_quantity(item.get("value")),
            gas=parse_quantity(item.get("gas")),
            gas_price=_optional_quantity(item, "gasPrice"),
            input=hex_to_bytes(item.get("input") or item.get("data")),
            v=parse_quantity(v_raw),
            r=parse_quantity(item.get("r")),
            s=parse_quantity(item.get("s")),
            chain_id=_optional_quantity(item, "chainId"),
            max_fee_per_gas=_optional_quantity(item, "maxFeePerGas"),
            max_priority_fee_per_gas=_optional_quantity(item, "maxPriorityFeePerGas"),
            max_fee_per_blob_gas=_optional_quantity(item, "maxFeePerBlobGas"),
            access_list=list(item.get("accessList") or []),
            blob_versioned_hashes=list(item.get("blobVersionedHashes") or []),
            authorization_list=list(item.get("authorizationList") or []),
            block_hash=block_hash,
            block_number=_optional_quantity(item, "blockNumber"),
        )


@dataclass(frozen=True)
class BlockHeader:
    """A newHeads notification payload (only the fields the pipeline uses)."""

    hash: str
    number: int

    @classmethod
    def from_rpc(cls, item: dict[str, Any]) -> "BlockHeader":
        return cls(hash=item["hash"], number=parse_quantity(item.get("number")))


@dataclass(frozen=True)
class Block:
    """A mined block resolved with eth_getBlockByHash; transactions are hashes in block order."""

    hash: str
    number: int
    transactions: list[str]

    @classmethod
    def from_rpc(cls, item: dict[str, Any]) -> "Block":
        """Accept both full transaction objects and bare hashes."""
        hashes = []
        for tx in item.get("transactions") or []:
            hashes.append(tx["hash"] if isinstance(tx, dict) else tx)
        return cls(
            hash=item["hash"],
            number=parse_quantity(item.get("number")),
            transactions=hashes,
        )
