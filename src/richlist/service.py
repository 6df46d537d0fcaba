import logging
from asyncio import CancelledError
from collections.abc import AsyncIterator
from contextlib import AsyncExitStack
from contextlib import asynccontextmanager
from contextlib import suppress

from richlist.config import RichListConfig
from richlist.database import generate_schema
from richlist.database import tortoise_wrapper
from richlist.datasources.node import NodeDatasource
from richlist.engine import RichListEngine
from richlist.parser import AddressParser
from richlist.prometheus import Metrics
from richlist.scheduler import SchedulerManager
from richlist.storage import CrawlLedger
from richlist.storage import QueueClient
from richlist.storage import RichListStorage

_logger = logging.getLogger(__name__)


class RichListService:
    """Wires config, database, node and engine into a long-running process"""

    def __init__(self, config: RichListConfig) -> None:
        self._config = config
        self._node = NodeDatasource(config.node)

    @property
    def node(self) -> NodeDatasource:
        return self._node

    def create_engine(self) -> RichListEngine:
        return RichListEngine(
            client=self._node,
            extractor=AddressParser(self._node, resolve_inputs=self._config.resolve_inputs),
            queue_client=QueueClient(),
            ledger=CrawlLedger(),
            rich_lists=RichListStorage(),
            queue_name=self._config.queue_name,
            rich_list_length=self._config.rich_list_length,
        )

    @asynccontextmanager
    async def open(self) -> AsyncIterator[RichListEngine]:
        """Connect to database and node; yield an engine for one-shot commands"""
        async with AsyncExitStack() as stack:
            await self._set_up_database(stack)
            await self._set_up_node(stack)
            engine = self.create_engine()
            # NOTE: Stop background crawl before the node session and database are closed
            stack.push_async_callback(engine.close)
            yield engine

    async def run(self) -> None:
        """Crawl and rebuild rich lists periodically until stopped or halted"""
        # NOTE: Order matters; node requests are issued from scheduler jobs only.
        async with AsyncExitStack() as stack:
            stack.enter_context(suppress(KeyboardInterrupt, CancelledError))
            await self._set_up_database(stack)
            await self._set_up_node(stack)
            await self._set_up_prometheus()

            engine = self.create_engine()
            stack.push_async_callback(engine.close)
            scheduler = SchedulerManager(self._config.jobs)
            _logger.info('Running `%s` rich list service', self._config.network)
            await scheduler.run(engine, self._config.queued_address_limit)

    async def _set_up_database(self, stack: AsyncExitStack) -> None:
        _logger.info('Setting up database')
        await stack.enter_async_context(
            tortoise_wrapper(
                url=self._config.database.connection_string,
                timeout=self._config.database.connection_timeout,
            )
        )
        await generate_schema()

    async def _set_up_node(self, stack: AsyncExitStack) -> None:
        _logger.info('Connecting to node `%s`', self._node.name)
        await stack.enter_async_context(self._node)

    async def _set_up_prometheus(self) -> None:
        if not self._config.prometheus:
            return

        from prometheus_client import start_http_server

        _logger.info('Setting up Prometheus')
        Metrics.enabled = True
        start_http_server(self._config.prometheus.port, self._config.prometheus.host)
