"""
Sender recovery for pending transactions.

Rebuilds the signing hash for each envelope type and recovers the signer's
public key from (v, r, s). Legacy transactions follow EIP-155 when protected
(v >= 35) and homestead rules otherwise; typed envelopes (EIP-2930, EIP-1559,
EIP-4844, EIP-7702) sign keccak(type || rlp(payload)) with a 0/1 y-parity.
"""

from __future__ import annotations

from typing import Any

import rlp
from eth_keys import keys
from eth_keys.exceptions import BadSignature, ValidationError
from eth_utils import keccak

from mempool_watch.core.exceptions import SenderRecoveryError
from mempool_watch.node.models import PendingTransaction, hex_to_bytes
from mempool_watch.utils.units import parse_quantity

LEGACY_TX_TYPE = 0
ACCESS_LIST_TX_TYPE = 1
DYNAMIC_FEE_TX_TYPE = 2
BLOB_TX_TYPE = 3
SET_CODE_TX_TYPE = 4

_EIP155_V_OFFSET = 35
_HOMESTEAD_V_OFFSET = 27


def _address_bytes(address: str | None) -> bytes:
    # Contract creation encodes the recipient as the empty string
    return hex_to_bytes(address) if address else b""


def _encode_access_list(access_list: list[dict[str, Any]]) -> list[list[Any]]:
    return [
        [
            hex_to_bytes(entry["address"]),
            [hex_to_bytes(key) for key in entry.get("storageKeys") or []],
        ]
        for entry in access_list
    ]


def _encode_authorization_list(authorizations: list[dict[str, Any]]) -> list[list[Any]]:
    return [
        [
            parse_quantity(auth.get("chainId")),
            hex_to_bytes(auth["address"]),
            parse_quantity(auth.get("nonce")),
            parse_quantity(auth.get("yParity", auth.get("v"))),
            parse_quantity(auth.get("r")),
            parse_quantity(auth.get("s")),
        ]
        for auth in authorizations
    ]


def _legacy_signing_hash(tx: PendingTransaction, chain_id: int) -> tuple[bytes, int]:
    """Return (signing hash, recovery id) for a legacy transaction."""
    fields: list[Any] = [
        tx.nonce,
        tx.gas_price or 0,
        tx.gas,
        _address_bytes(tx.to),
        tx.value,
        tx.input,
    ]
    if tx.v in (_HOMESTEAD_V_OFFSET, _HOMESTEAD_V_OFFSET + 1):
        return keccak(rlp.encode(fields)), tx.v - _HOMESTEAD_V_OFFSET
    if tx.v < _EIP155_V_OFFSET:
        raise SenderRecoveryError(f"invalid legacy signature v={tx.v} for {tx.hash}")
    signed_chain_id = (tx.v - _EIP155_V_OFFSET) // 2
    if signed_chain_id != chain_id:
        raise SenderRecoveryError(
            f"chain id mismatch for {tx.hash}: signed for {signed_chain_id}, node is {chain_id}"
        )
    fields.extend([chain_id, 0, 0])
    recovery_id = tx.v - _EIP155_V_OFFSET - 2 * chain_id
    return keccak(rlp.encode(fields)), recovery_id


def _typed_payload(tx: PendingTransaction, chain_id: int) -> list[Any]:
    access_list = _encode_access_list(tx.access_list)
    if tx.type == ACCESS_LIST_TX_TYPE:
        return [
            chain_id,
            tx.nonce,
            tx.gas_price or 0,
            tx.gas,
            _address_bytes(tx.to),
            tx.value,
            tx.input,
            access_list,
        ]
    payload: list[Any] = [
        chain_id,
        tx.nonce,
        tx.max_priority_fee_per_gas or 0,
        tx.max_fee_per_gas or 0,
        tx.gas,
        _address_bytes(tx.to),
        tx.value,
        tx.input,
        access_list,
    ]
    if tx.type == BLOB_TX_TYPE:
        payload.extend([
            tx.max_fee_per_blob_gas or 0,
            [hex_to_bytes(h) for h in tx.blob_versioned_hashes],
        ])
    elif tx.type == SET_CODE_TX_TYPE:
        payload.append(_encode_authorization_list(tx.authorization_list))
    return payload


def signing_hash(tx: PendingTransaction, chain_id: int) -> tuple[bytes, int]:
    """
    Return (hash the sender signed, recovery id 0/1) for the transaction.

    Raises:
        SenderRecoveryError: unknown envelope type, or the transaction was
            signed for a different chain than the node's.
    """
    if tx.type == LEGACY_TX_TYPE:
        return _legacy_signing_hash(tx, chain_id)
    if tx.type not in (ACCESS_LIST_TX_TYPE, DYNAMIC_FEE_TX_TYPE, BLOB_TX_TYPE, SET_CODE_TX_TYPE):
        raise SenderRecoveryError(f"unsupported transaction type {tx.type} for {tx.hash}")
    if tx.chain_id is not None and tx.chain_id != chain_id:
        raise SenderRecoveryError(
            f"chain id mismatch for {tx.hash}: signed for {tx.chain_id}, node is {chain_id}"
        )
    encoded = bytes([tx.type]) + rlp.encode(_typed_payload(tx, chain_id))
    return keccak(encoded), tx.v


def recover_sender(tx: PendingTransaction, chain_id: int) -> str:
    """
    Recover the checksummed sender address from the transaction signature.

    Raises:
        SenderRecoveryError: the signature cannot be decoded or does not
            recover to a public key.
    """
    msg_hash, recovery_id = signing_hash(tx, chain_id)
    try:
        signature = keys.Signature(vrs=(recovery_id, tx.r, tx.s))
        public_key = signature.recover_public_key_from_msg_hash(msg_hash)
    except (BadSignature, ValidationError, ValueError) as e:
        raise SenderRecoveryError(f"cannot recover sender of {tx.hash}: {e}") from e
    return public_key.to_checksum_address()
