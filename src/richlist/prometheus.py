from prometheus_client import Counter
from prometheus_client import Gauge
from prometheus_client import Histogram

_ledger_height = Gauge(
    'richlist_ledger_height',
    'Number of blocks recorded in the crawl ledger',
)
_crawler_active = Gauge(
    'richlist_crawler_active',
    'Whether a crawl pass is running',
)
_blocks_crawled = Counter(
    'richlist_blocks_crawled',
    'Number of blocks appended to the crawl ledger',
)
_addresses_queued = Counter(
    'richlist_addresses_queued',
    'Number of addresses pushed to the active addresses queue',
)
_chain_discontinuities = Counter(
    'richlist_chain_discontinuities',
    'Number of crawl passes halted by a chain discontinuity',
)
_rebuild_passes = Counter(
    'richlist_rebuild_passes',
    'Number of rich list rebuild iterations',
)
_addresses_rebalanced = Counter(
    'richlist_addresses_rebalanced',
    'Number of addresses with refreshed balances',
)
_rebuild_duration = Histogram(
    'richlist_rebuild_duration',
    'Duration of a single rebuild iteration in seconds',
)
_rich_list_size = Gauge(
    'richlist_rich_list_size',
    'Number of holders in the persisted rich list',
    ['token'],
)
_http_errors = Counter(
    'richlist_http_errors',
    'Number of http errors',
    ['url', 'status'],
)
_http_errors_in_row = Gauge(
    'richlist_http_errors_in_row',
    'Number of consecutive failed requests',
    ['url'],
)


class Metrics:
    """Prometheus metrics of crawl and rebuild passes; no-op until `enabled` is set"""

    enabled = False

    @classmethod
    def set_ledger_height(cls, height: int) -> None:
        if not cls.enabled:
            return
        _ledger_height.set(height)

    @classmethod
    def set_crawler_active(cls, active: bool) -> None:
        if not cls.enabled:
            return
        _crawler_active.set(int(active))

    @classmethod
    def set_block_crawled(cls, addresses: int) -> None:
        if not cls.enabled:
            return
        _blocks_crawled.inc()
        _addresses_queued.inc(addresses)

    @classmethod
    def set_chain_discontinuity(cls) -> None:
        if not cls.enabled:
            return
        _chain_discontinuities.inc()

    @classmethod
    def set_rebuild_pass(cls, addresses: int, duration: float) -> None:
        if not cls.enabled:
            return
        _rebuild_passes.inc()
        _addresses_rebalanced.inc(addresses)
        _rebuild_duration.observe(duration)

    @classmethod
    def set_rich_list_size(cls, token_id: str, size: int) -> None:
        if not cls.enabled:
            return
        _rich_list_size.labels(token=token_id).set(size)

    @classmethod
    def set_http_error(cls, url: str, status: int) -> None:
        if not cls.enabled:
            return
        _http_errors.labels(url=url, status=status).inc()

    @classmethod
    def set_http_errors_in_row(cls, url: str, errors_count: int) -> None:
        if not cls.enabled:
            return
        _http_errors_in_row.labels(url=url).set(errors_count)
