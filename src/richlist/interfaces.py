"""Contracts of collaborators the crawl and rebuild engines depend on.

Default implementations: `richlist.datasources.node.NodeDatasource` (chain client),
`richlist.storage` (queue, rich list storage and crawl ledger backed by Tortoise ORM) and
`richlist.parser.AddressParser` (address extractor).
"""

from __future__ import annotations

from decimal import Decimal
from typing import TYPE_CHECKING
from typing import Protocol

if TYPE_CHECKING:
    from richlist.models import CrawlLedgerEntry
    from richlist.models import QueueMode
    from richlist.models import RichListItem
    from richlist.models.node import Block
    from richlist.models.node import Transaction


class ChainClient(Protocol):
    async def get_block(self, height: int) -> Block | None:
        """Block at given height or None if the height is beyond the known tip"""
        ...

    async def get_transaction(self, txid: str) -> Transaction: ...

    async def get_balances(self, address: str) -> dict[str, Decimal]:
        """Non-zero balances of an address by token id"""
        ...

    async def list_token_ids(self) -> set[str]: ...


class WorkQueue(Protocol):
    async def push(self, address: str) -> None: ...

    async def receive(self, max_count: int) -> list[str]:
        """Remove and return up to `max_count` items in delivery order"""
        ...


class QueueClient(Protocol):
    async def create_queue_if_not_exist(self, name: str, mode: QueueMode) -> WorkQueue: ...


class KeyValueStore(Protocol):
    async def get(self, token_id: str) -> tuple[RichListItem, ...] | None: ...

    async def put(self, token_id: str, items: tuple[RichListItem, ...]) -> None: ...


class CrawlLedger(Protocol):
    async def size(self) -> int: ...

    async def get_last(self) -> CrawlLedgerEntry | None: ...

    async def append(self, entry: CrawlLedgerEntry) -> None: ...


class AddressExtractor(Protocol):
    async def parse(self, transaction: Transaction) -> list[str]: ...
