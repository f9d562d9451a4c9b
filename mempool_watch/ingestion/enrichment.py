"""
Pending transaction enrichment: raw node transaction to TransactionRecord.

Filters out plain value transfers and contract creations, recovers the sender
from the signature, and converts value / gas / gas price to ether units.
No store access here; the writer persists the result.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any

from mempool_watch.mempool_logging import get_logger
from mempool_watch.node.models import PendingTransaction
from mempool_watch.node.signer import recover_sender
from mempool_watch.utils.units import to_ether

logger = get_logger(__name__)

# A 4-byte function selector is the minimum for a contract call
MIN_CALLDATA_BYTES = 4


@dataclass(frozen=True)
class TransactionRecord:
    """
    One observed pending transaction, as persisted in the index.

    value / gas / gas_price are in ether units; data is hex without 0x.
    """

    tx_hash: str
    time_first_discovered: int
    sender: str
    to: str
    value: float
    data: str
    nonce: int
    gas_price: float
    gas: float

    def to_document(self) -> dict[str, Any]:
        """Return the index document; key names are the stored field names."""
        return {
            "timeFirstDiscovered": self.time_first_discovered,
            "txHash": self.tx_hash,
            "from": self.sender,
            "to": self.to,
            "txValue": self.value,
            "data": self.data,
            "nonce": self.nonce,
            "gasPrice": self.gas_price,
            "gas": self.gas,
        }


def is_eligible(tx: PendingTransaction) -> bool:
    """True for contract interactions: calldata of at least 4 bytes and a recipient."""
    return len(tx.input) >= MIN_CALLDATA_BYTES and tx.to is not None


async def enrich_transaction(
    tx: PendingTransaction,
    node: Any,
    *,
    now: int | None = None,
) -> TransactionRecord | None:
    """
    Build a TransactionRecord for an eligible pending transaction.

    node must provide `await node.chain_id()`. Returns None for ineligible
    transactions.

    Raises:
        SenderRecoveryError: the signature cannot be decoded.
        NodeRequestError / NodeConnectionError: the chain id query failed.
    """
    if not is_eligible(tx):
        logger.debug(
            "pending_tx_filtered",
            tx_hash=tx.hash,
            calldata_bytes=len(tx.input),
            contract_creation=tx.to is None,
        )
        return None
    chain_id = await node.chain_id()
    sender = recover_sender(tx, chain_id)
    return TransactionRecord(
        tx_hash=tx.hash,
        time_first_discovered=int(time.time()) if now is None else now,
        sender=sender,
        to=tx.to,
        value=to_ether(tx.value),
        data=tx.input.hex(),
        nonce=tx.nonce,
        gas_price=to_ether(tx.effective_gas_price),
        gas=to_ether(tx.gas),
    )
