import logging
import time
from collections.abc import Iterable
from decimal import Decimal

from richlist.config import DEFAULT_QUEUED_ADDRESS_LIMIT
from richlist.config import DEFAULT_RICH_LIST_LENGTH
from richlist.exceptions import ConfigurationError
from richlist.interfaces import ChainClient
from richlist.interfaces import KeyValueStore
from richlist.interfaces import QueueClient
from richlist.interfaces import WorkQueue
from richlist.models import QueueMode
from richlist.models import RichListItem
from richlist.prometheus import Metrics

# NOTE: address -> token id -> amount
ActiveAddressBalances = dict[str, dict[str, Decimal]]

_logger = logging.getLogger(__name__)


def rank(item: RichListItem) -> tuple[Decimal, str]:
    """Sort key: amount descending, then address ascending"""
    return -item.amount, item.address


def compute_rich_list(
    existing: Iterable[RichListItem],
    balances: ActiveAddressBalances,
    token_id: str,
    length: int,
) -> tuple[RichListItem, ...]:
    """Merge refreshed balances into an existing rich list.

    Entries of refreshed addresses are replaced, so redelivered addresses never produce duplicates.
    """
    latest = [RichListItem(address=address, amount=amounts[token_id]) for address, amounts in balances.items()]
    merged = [item for item in existing if item.address not in balances]
    merged.extend(latest)
    merged.sort(key=rank)
    return tuple(merged[:length])


class LeaderboardBuilder:
    """Drains the active addresses queue and recomputes rich lists of every token"""

    def __init__(
        self,
        client: ChainClient,
        rich_lists: KeyValueStore,
        queue_client: QueueClient,
        queue_name: str,
        rich_list_length: int = DEFAULT_RICH_LIST_LENGTH,
    ) -> None:
        self._client = client
        self._rich_lists = rich_lists
        self._queue_client = queue_client
        self._queue_name = queue_name
        self.rich_list_length = rich_list_length

    @property
    def rich_list_length(self) -> int:
        return self._rich_list_length

    @rich_list_length.setter
    def rich_list_length(self, length: int) -> None:
        if length <= 0:
            raise ConfigurationError(f'Rich list length must be positive, got {length}')
        self._rich_list_length = length

    async def calculate_next(self, queued_address_limit: int = DEFAULT_QUEUED_ADDRESS_LIMIT) -> int:
        """Rebuild rich lists until the queue is empty; return number of iterations"""
        if queued_address_limit <= 0:
            raise ConfigurationError(f'Queued address limit must be positive, got {queued_address_limit}')

        tokens = sorted(await self._client.list_token_ids())
        queue = await self._queue_client.create_queue_if_not_exist(self._queue_name, QueueMode.LIFO)
        iterations = 0

        while True:
            started_at = time.time()
            balances = await self._get_active_address_balances(queue, tokens, queued_address_limit)
            if not balances:
                break

            for token_id in tokens:
                existing = await self._rich_lists.get(token_id) or ()
                updated = compute_rich_list(existing, balances, token_id, self._rich_list_length)
                await self._rich_lists.put(token_id, updated)
                Metrics.set_rich_list_size(token_id, len(updated))

            iterations += 1
            Metrics.set_rebuild_pass(len(balances), time.time() - started_at)
            _logger.info('%s addresses rebalanced across %s tokens', len(balances), len(tokens))

        _logger.debug('Queue is empty after %s iterations', iterations)
        return iterations

    async def _get_active_address_balances(
        self,
        queue: WorkQueue,
        tokens: list[str],
        limit: int,
    ) -> ActiveAddressBalances:
        balances: ActiveAddressBalances = {}
        for address in await queue.receive(limit):
            # NOTE: At-least-once delivery; a single refresh per batch is enough
            if address in balances:
                continue
            non_zero = await self._client.get_balances(address)
            balances[address] = {token_id: non_zero.get(token_id, Decimal(0)) for token_id in tokens}
        return balances
