from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Any

from tortoise import fields
from tortoise.models import Model

from richlist.utils import json_dumps_plain


class CrawlerStatus(Enum):
    """State of the crawl pass"""

    idle = 'idle'
    crawling = 'crawling'


class QueueMode(Enum):
    """Delivery order of the work queue"""

    LIFO = 'LIFO'
    FIFO = 'FIFO'


@dataclass(frozen=True)
class RichListItem:
    """Holder of a token and its exact balance"""

    address: str
    amount: Decimal

    def to_json(self) -> dict[str, Any]:
        return {'address': self.address, 'amount': f'{self.amount:f}'}

    @classmethod
    def from_json(cls, item_json: dict[str, Any]) -> RichListItem:
        return cls(address=item_json['address'], amount=Decimal(item_json['amount']))


@dataclass(frozen=True)
class CrawlLedgerEntry:
    """Summary of a processed block; position in the ledger is the block height"""

    hash: str
    addresses: tuple[str, ...]


class CrawledBlock(Model):
    """Crawl ledger entry; `height` is assigned sequentially on append"""

    height = fields.IntField(pk=True, generated=False)
    hash = fields.TextField()
    addresses: list[str] = fields.JSONField(encoder=json_dumps_plain)

    created_at = fields.DatetimeField(auto_now_add=True)

    class Meta:
        table = 'richlist_crawled_block'

    def to_entry(self) -> CrawlLedgerEntry:
        return CrawlLedgerEntry(hash=self.hash, addresses=tuple(self.addresses))


class QueuedAddress(Model):
    """Address waiting in a durable queue for balance refresh"""

    id = fields.IntField(pk=True)
    queue = fields.TextField()
    address = fields.TextField()

    created_at = fields.DatetimeField(auto_now_add=True)

    class Meta:
        table = 'richlist_queued_address'


class Queue(Model):
    """Durable queue registry"""

    name = fields.CharField(max_length=255, pk=True)
    mode = fields.CharEnumField(QueueMode, max_length=4)

    created_at = fields.DatetimeField(auto_now_add=True)

    class Meta:
        table = 'richlist_queue'


class RichList(Model):
    """Persisted leaderboard of a single token"""

    token_id = fields.CharField(max_length=255, pk=True)
    items: list[dict[str, Any]] = fields.JSONField(encoder=json_dumps_plain)

    updated_at = fields.DatetimeField(auto_now=True)

    class Meta:
        table = 'richlist_rich_list'
