"""
Web3 Ledger Client

JSON-RPC implementation of LedgerClient for an EVM order book contract.
Every RPC goes through an HTTP provider with a bounded timeout; transport
failures are raised as TransientTransportError so callers can retry the
same height range.
"""

import logging
from collections import OrderedDict
from collections.abc import Callable, Mapping
from datetime import datetime, timezone
from typing import Any, TypeVar

import requests
from web3 import Web3
from web3.exceptions import Web3Exception

from orderbook_indexer.contracts.events import LedgerEvent
from orderbook_indexer.contracts.types import EventKind, OrderSide, OrderStatus
from orderbook_indexer.errors import TransientTransportError
from orderbook_indexer.ledger.abi import ORDERBOOK_ABI
from orderbook_indexer.ledger.base import LedgerClient, OrderDetail

logger = logging.getLogger(__name__)

T = TypeVar("T")

BLOCK_TIME_CACHE_SIZE = 4096


def _from_unix(value: int | None) -> datetime | None:
    if not value:
        return None
    return datetime.fromtimestamp(int(value), tz=timezone.utc)


def decode_payload(kind: EventKind, args: Mapping[str, Any]) -> dict[str, Any]:
    """Map decoded contract event args to the payload fields for `kind`."""
    if kind == EventKind.ORDER_CREATED:
        return {
            "order_id": int(args["orderId"]),
            "owner": args["user"],
            "side": OrderSide.from_ledger(args["orderType"]),
            "total_amount": int(args["baseAmount"]),
            "counter_amount": int(args["quoteAmount"]),
            "unit_price": int(args["pricePerUnit"]),
            "expires_at": datetime.fromtimestamp(int(args["expiresAt"]), tz=timezone.utc),
            "fee_at_creation": None,  # Not emitted; enriched via orders(id)
        }
    if kind == EventKind.ORDER_FILLED:
        return {
            "order_id": int(args["orderId"]),
            "fill_sequence": int(args["fillId"]),
            "filler": args["filler"],
            "amount": int(args["baseAmount"]),
            "counterparty_amount": int(args["quoteAmount"]),
            "new_status": OrderStatus.from_ledger(args["newStatus"]),
        }
    if kind == EventKind.ORDER_CANCELLED:
        return {
            "order_id": int(args["orderId"]),
            "owner": args["user"],
            "counter_refund": int(args["quoteRefund"]),
            "amount_refund": int(args["baseRefund"]),
        }
    if kind == EventKind.WITHDRAWAL_CLAIMED:
        return {"user": args["user"], "amount": int(args["amount"])}
    raise ValueError(f"Unsupported event kind: {kind}")


def decode_log(kind: EventKind, log: Mapping[str, Any], block_timestamp: datetime | None = None) -> LedgerEvent:
    """Convert one decoded web3 event log into a LedgerEvent."""
    return LedgerEvent.create(
        kind=kind,
        payload=decode_payload(kind, log["args"]),
        block_height=int(log["blockNumber"]),
        tx_hash=Web3.to_hex(log["transactionHash"]),
        log_index=int(log.get("logIndex", 0)),
        block_timestamp=block_timestamp,
    )


class Web3LedgerClient(LedgerClient):
    """
    LedgerClient backed by web3.py over HTTP JSON-RPC.

    get_height() reports head minus `confirmations` so that only blocks
    deep enough to be considered final are indexed.
    """

    def __init__(
        self,
        rpc_url: str,
        contract_address: str,
        timeout: float = 30.0,
        confirmations: int = 0,
        abi: list[dict] | None = None,
    ):
        """
        Initialize the client.

        Args:
            rpc_url: JSON-RPC endpoint
            contract_address: Order book contract address
            timeout: Per-request HTTP timeout in seconds
            confirmations: Blocks to stay behind head
            abi: Contract ABI (defaults to the bundled fragment)
        """
        self.rpc_url = rpc_url
        self.contract_address = Web3.to_checksum_address(contract_address)
        self.timeout = timeout
        self.confirmations = confirmations
        self.w3 = Web3(Web3.HTTPProvider(rpc_url, request_kwargs={"timeout": timeout}))
        self.contract = self.w3.eth.contract(address=self.contract_address, abi=abi or ORDERBOOK_ABI)
        self._block_times: OrderedDict[int, datetime] = OrderedDict()

    def _rpc(self, what: str, fn: Callable[[], T]) -> T:
        """Run one RPC, translating transport failures."""
        try:
            return fn()
        except (requests.RequestException, Web3Exception, TimeoutError, ConnectionError) as e:
            logger.warning(f"Ledger RPC failed ({what}): {e}")
            raise TransientTransportError(f"{what} failed: {e}", details={"rpc": what}) from e

    def verify_contract(self) -> None:
        """Fail fast if there is no code at the configured address."""
        code = self._rpc("eth_getCode", lambda: self.w3.eth.get_code(self.contract_address))
        if not code or code in (b"", b"\x00"):
            raise TransientTransportError(
                f"Contract not found at {self.contract_address}",
                details={"contract_address": self.contract_address},
            )

    def get_height(self) -> int:
        head = self._rpc("eth_blockNumber", lambda: self.w3.eth.block_number)
        return max(int(head) - self.confirmations, 0)

    def get_block_time(self, height: int) -> datetime | None:
        cached = self._block_times.get(height)
        if cached is not None:
            self._block_times.move_to_end(height)
            return cached

        block = self._rpc("eth_getBlockByNumber", lambda: self.w3.eth.get_block(height))
        ts = _from_unix(block["timestamp"])
        self._block_times[height] = ts
        if len(self._block_times) > BLOCK_TIME_CACHE_SIZE:
            self._block_times.popitem(last=False)
        return ts

    def query_events(self, kind: EventKind, from_height: int, to_height: int) -> list[LedgerEvent]:
        event_cls = getattr(self.contract.events, kind.value)
        logs = self._rpc(
            f"eth_getLogs[{kind.value}]",
            lambda: event_cls().get_logs(from_block=from_height, to_block=to_height),
        )
        return [decode_log(kind, log, self.get_block_time(int(log["blockNumber"]))) for log in logs]

    def query_detail(self, order_id: int) -> OrderDetail:
        raw = self._rpc(f"orders({order_id})", lambda: self.contract.functions.orders(order_id).call())
        (owner, order_type, base_amount, quote_amount, price, filled, remaining,
         created_at, expires_at, status, fee_at_creation) = raw
        return OrderDetail(
            order_id=order_id,
            owner=owner.lower(),
            side=OrderSide.from_ledger(order_type),
            total_amount=int(base_amount),
            counter_amount=int(quote_amount),
            unit_price=int(price),
            filled=int(filled),
            remaining=int(remaining),
            created_at=_from_unix(created_at),
            expires_at=_from_unix(expires_at),
            status=OrderStatus.from_ledger(status),
            fee_at_creation=int(fee_at_creation),
        )
