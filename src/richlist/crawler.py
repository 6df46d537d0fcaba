import logging

from richlist.exceptions import ChainDiscontinuityError
from richlist.exceptions import InvalidDataError
from richlist.interfaces import AddressExtractor
from richlist.interfaces import ChainClient
from richlist.interfaces import CrawlLedger
from richlist.interfaces import QueueClient
from richlist.models import CrawlLedgerEntry
from richlist.models import QueueMode
from richlist.models.node import Block
from richlist.prometheus import Metrics

LOG_INTERVAL = 1000

_logger = logging.getLogger(__name__)


class Crawler:
    """Forward-only scanner of the chain.

    Every block not yet present in the crawl ledger is fetched in order of height; addresses touched by its
    transactions are pushed to the active addresses queue and a summary of the block is appended to the ledger.
    The ledger size is the next height to crawl, so an interrupted pass resumes where it stopped.
    """

    def __init__(
        self,
        client: ChainClient,
        extractor: AddressExtractor,
        queue_client: QueueClient,
        ledger: CrawlLedger,
        queue_name: str,
    ) -> None:
        self._client = client
        self._extractor = extractor
        self._queue_client = queue_client
        self._ledger = ledger
        self._queue_name = queue_name

    async def catch_up(self) -> int:
        """Crawl until the tip is reached; return number of appended blocks.

        Raises `ChainDiscontinuityError` without touching the ledger if the next block doesn't extend it.
        """
        queue = await self._queue_client.create_queue_if_not_exist(self._queue_name, QueueMode.LIFO)
        crawled = 0

        while True:
            height = await self._ledger.size()
            block = await self._client.get_block(height)
            if block is None:
                _logger.info('Caught up at height %s, %s blocks crawled', height, crawled)
                return crawled
            if block.height != height:
                raise InvalidDataError(f'Requested height {height}, got {block.height}', Block, block)

            last = await self._ledger.get_last()
            if last is not None and last.hash != block.previous_hash:
                Metrics.set_chain_discontinuity()
                raise ChainDiscontinuityError(height, last.hash, block.previous_hash)

            addresses: list[str] = []
            for transaction in block.transactions:
                for address in await self._extractor.parse(transaction):
                    await queue.push(address)
                    addresses.append(address)

            await self._ledger.append(CrawlLedgerEntry(hash=block.hash, addresses=tuple(addresses)))
            crawled += 1

            Metrics.set_block_crawled(len(addresses))
            Metrics.set_ledger_height(height + 1)
            _logger.debug('Block %s (%s): %s addresses queued', height, block.hash, len(addresses))
            if crawled % LOG_INTERVAL == 0:
                _logger.info('%s blocks crawled, ledger height is %s', crawled, height + 1)
