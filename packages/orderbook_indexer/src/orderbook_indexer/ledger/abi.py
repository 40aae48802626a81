"""
ABI fragment for the order book contract.

Only the four indexed events and the orders(uint256) view are needed.
A full artifact ABI can be passed to Web3LedgerClient instead.
"""


def _event(name: str, inputs: list[tuple[str, str, bool]]) -> dict:
    return {
        "anonymous": False,
        "name": name,
        "type": "event",
        "inputs": [{"name": n, "type": t, "indexed": idx} for n, t, idx in inputs],
    }


ORDERBOOK_ABI: list[dict] = [
    _event(
        "OrderCreated",
        [
            ("orderId", "uint256", True),
            ("user", "address", True),
            ("orderType", "uint8", False),
            ("baseAmount", "uint256", False),
            ("quoteAmount", "uint256", False),
            ("pricePerUnit", "uint256", False),
            ("expiresAt", "uint256", False),
        ],
    ),
    _event(
        "OrderFilled",
        [
            ("orderId", "uint256", True),
            ("fillId", "uint256", True),
            ("filler", "address", True),
            ("baseAmount", "uint256", False),
            ("quoteAmount", "uint256", False),
            ("newStatus", "uint8", False),
        ],
    ),
    _event(
        "OrderCancelled",
        [
            ("orderId", "uint256", True),
            ("user", "address", True),
            ("quoteRefund", "uint256", False),
            ("baseRefund", "uint256", False),
        ],
    ),
    _event(
        "WithdrawalClaimed",
        [
            ("user", "address", True),
            ("amount", "uint256", False),
        ],
    ),
    {
        "name": "orders",
        "type": "function",
        "stateMutability": "view",
        "inputs": [{"name": "", "type": "uint256"}],
        "outputs": [
            {"name": "user", "type": "address"},
            {"name": "orderType", "type": "uint8"},
            {"name": "baseAmount", "type": "uint256"},
            {"name": "quoteAmount", "type": "uint256"},
            {"name": "pricePerUnit", "type": "uint256"},
            {"name": "filled", "type": "uint256"},
            {"name": "remaining", "type": "uint256"},
            {"name": "createdAt", "type": "uint256"},
            {"name": "expiresAt", "type": "uint256"},
            {"name": "status", "type": "uint8"},
            {"name": "feeAtCreation", "type": "uint256"},
        ],
    },
]
