import asyncio
import logging
from contextlib import suppress

from richlist.builder import LeaderboardBuilder
from richlist.config import DEFAULT_QUEUE_NAME
from richlist.config import DEFAULT_QUEUED_ADDRESS_LIMIT
from richlist.config import DEFAULT_RICH_LIST_LENGTH
from richlist.crawler import Crawler
from richlist.exceptions import ChainDiscontinuityError
from richlist.exceptions import InvalidTokenError
from richlist.interfaces import AddressExtractor
from richlist.interfaces import ChainClient
from richlist.interfaces import CrawlLedger
from richlist.interfaces import KeyValueStore
from richlist.interfaces import QueueClient
from richlist.models import CrawlerStatus
from richlist.models import RichListItem
from richlist.prometheus import Metrics

_logger = logging.getLogger(__name__)


class RichListEngine:
    """Keeps rich lists of every token in sync with the chain.

    Crawling and rebuilding are independent: `resume` scans new blocks in the background and queues touched
    addresses, `calculate_next` drains the queue and merges fresh balances into rich lists.
    """

    def __init__(
        self,
        client: ChainClient,
        extractor: AddressExtractor,
        queue_client: QueueClient,
        ledger: CrawlLedger,
        rich_lists: KeyValueStore,
        queue_name: str = DEFAULT_QUEUE_NAME,
        rich_list_length: int = DEFAULT_RICH_LIST_LENGTH,
    ) -> None:
        self._client = client
        self._rich_lists = rich_lists
        self._crawler = Crawler(
            client=client,
            extractor=extractor,
            queue_client=queue_client,
            ledger=ledger,
            queue_name=queue_name,
        )
        self._builder = LeaderboardBuilder(
            client=client,
            rich_lists=rich_lists,
            queue_client=queue_client,
            queue_name=queue_name,
            rich_list_length=rich_list_length,
        )
        self._status = CrawlerStatus.idle
        self._crawl_task: asyncio.Task[None] | None = None
        self._last_error: Exception | None = None

    @property
    def status(self) -> CrawlerStatus:
        return self._status

    @property
    def last_error(self) -> Exception | None:
        """Failure of the most recent crawl pass, if any"""
        return self._last_error

    @property
    def rich_list_length(self) -> int:
        return self._builder.rich_list_length

    def set_rich_list_length(self, length: int) -> None:
        """Set truncation bound of rich lists computed from now on"""
        self._builder.rich_list_length = length

    def resume(self) -> None:
        """Start a crawl pass in background unless one is already running"""
        if self._crawl_task is not None and not self._crawl_task.done():
            _logger.debug('Crawler is already running')
            return
        self._crawl_task = asyncio.create_task(self._crawl(), name='richlist:crawl')

    async def wait(self) -> None:
        """Wait for the current crawl pass to finish; reraise its failure"""
        if self._crawl_task is not None:
            await self._crawl_task
        if self._last_error is not None:
            raise self._last_error

    async def close(self) -> None:
        """Cancel the running crawl pass and wait until it stops"""
        if self._crawl_task is None or self._crawl_task.done():
            return
        self._crawl_task.cancel()
        with suppress(asyncio.CancelledError):
            await self._crawl_task

    async def get(self, token_id: str) -> tuple[RichListItem, ...]:
        tokens = await self._client.list_token_ids()
        if token_id not in tokens:
            raise InvalidTokenError(token_id)
        return await self._rich_lists.get(token_id) or ()

    async def calculate_next(self, queued_address_limit: int = DEFAULT_QUEUED_ADDRESS_LIMIT) -> int:
        return await self._builder.calculate_next(queued_address_limit)

    async def _crawl(self) -> None:
        self._status = CrawlerStatus.crawling
        self._last_error = None
        Metrics.set_crawler_active(True)
        try:
            await self._crawler.catch_up()
        except ChainDiscontinuityError as e:
            _logger.error('Crawler halted: %s', e.help())
            self._last_error = e
        except Exception as e:
            _logger.exception('Crawler failed')
            self._last_error = e
        finally:
            self._status = CrawlerStatus.idle
            Metrics.set_crawler_active(False)
