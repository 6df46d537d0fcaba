"""Durable queue, rich list storage and crawl ledger backed by Tortoise ORM"""

import logging

from tortoise.transactions import in_transaction

from richlist.exceptions import ConfigurationError
from richlist.models import CrawledBlock
from richlist.models import CrawlLedgerEntry
from richlist.models import QueuedAddress
from richlist.models import Queue
from richlist.models import QueueMode
from richlist.models import RichList
from richlist.models import RichListItem

# NOTE: Keep below SQLite's host parameters limit
DELETE_CHUNK_SIZE = 500

_logger = logging.getLogger(__name__)


class WorkQueue:
    def __init__(self, name: str, mode: QueueMode) -> None:
        self._name = name
        self._mode = mode

    @property
    def name(self) -> str:
        return self._name

    @property
    def mode(self) -> QueueMode:
        return self._mode

    async def push(self, address: str) -> None:
        await QueuedAddress.create(queue=self._name, address=address)

    async def receive(self, max_count: int) -> list[str]:
        order_by = '-id' if self._mode == QueueMode.LIFO else 'id'
        async with in_transaction():
            items = await QueuedAddress.filter(queue=self._name).order_by(order_by).limit(max_count)
            ids = [item.id for item in items]
            for i in range(0, len(ids), DELETE_CHUNK_SIZE):
                await QueuedAddress.filter(id__in=ids[i : i + DELETE_CHUNK_SIZE]).delete()

        if items:
            _logger.debug('`%s`: received %s items', self._name, len(items))
        return [item.address for item in items]

    async def size(self) -> int:
        return await QueuedAddress.filter(queue=self._name).count()


class QueueClient:
    async def create_queue_if_not_exist(self, name: str, mode: QueueMode) -> WorkQueue:
        queue, created = await Queue.get_or_create(name=name, defaults={'mode': mode})
        if created:
            _logger.info('Created `%s` queue (%s)', name, mode.value)
        elif queue.mode != mode:
            raise ConfigurationError(f'Queue `{name}` already exists with `{queue.mode.value}` mode')
        return WorkQueue(name, mode)


class RichListStorage:
    async def get(self, token_id: str) -> tuple[RichListItem, ...] | None:
        rich_list = await RichList.get_or_none(token_id=token_id)
        if rich_list is None:
            return None
        return tuple(RichListItem.from_json(item) for item in rich_list.items)

    async def put(self, token_id: str, items: tuple[RichListItem, ...]) -> None:
        await RichList.update_or_create(
            token_id=token_id,
            defaults={'items': [item.to_json() for item in items]},
        )


class CrawlLedger:
    """Append-only log of crawled blocks; entry position is the block height"""

    async def size(self) -> int:
        return await CrawledBlock.all().count()

    async def get_last(self) -> CrawlLedgerEntry | None:
        block = await CrawledBlock.all().order_by('-height').first()
        if block is None:
            return None
        return block.to_entry()

    async def append(self, entry: CrawlLedgerEntry) -> None:
        await CrawledBlock.create(
            height=await self.size(),
            hash=entry.hash,
            addresses=list(entry.addresses),
        )
