"""
Order Book Indexer - ledger event projection runtime

Keeps an off-chain read model in sync with the event log of an order book
contract. It provides:
- Event contracts (ledger events, kinds, statuses)
- Indexer-owned persistence models and checkpoint store
- Idempotent projector shared by the live and backfill paths
- Live listener, historical sync and reconciliation

Consumers read the orderbook_* tables; they never write to them.
"""
