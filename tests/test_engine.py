import asyncio
from decimal import Decimal

from pytest import raises

from richlist.exceptions import InvalidTokenError
from richlist.models import CrawlerStatus
from richlist.models import RichListItem
from richlist.storage import CrawlLedger
from tests import FakeChain
from tests import in_memory_engine
from tests import make_transaction


async def test_unknown_token() -> None:
    chain = FakeChain()

    async with in_memory_engine(chain) as engine:
        with raises(InvalidTokenError) as exc_info:
            await engine.get('not-a-real-token')

    assert exc_info.value.token_id == 'not-a-real-token'
    assert 'not-a-real-token' in exc_info.value.help()


async def test_known_token_without_holders() -> None:
    chain = FakeChain()
    chain.tokens = {'0', '15'}

    async with in_memory_engine(chain) as engine:
        assert await engine.get('15') == ()


async def test_end_to_end() -> None:
    chain = FakeChain()
    chain.tokens = {'0', 'DUSD'}
    chain.add_block(make_transaction('coinbase0', 'miner'))
    chain.add_block(make_transaction('tx1', 'alice', 'bob', spends=(('coinbase0', 0),)))
    chain.balances = {
        'miner': {'0': Decimal('10.00000001')},
        'alice': {'0': Decimal('39.99999999'), 'DUSD': Decimal(100)},
        'bob': {'DUSD': Decimal(250)},
    }

    async with in_memory_engine(chain, resolve_inputs=True) as engine:
        engine.resume()
        await engine.wait()
        assert await engine.calculate_next() == 1

        assert await engine.get('0') == (
            RichListItem('alice', Decimal('39.99999999')),
            RichListItem('miner', Decimal('10.00000001')),
            RichListItem('bob', Decimal(0)),
        )
        assert await engine.get('DUSD') == (
            RichListItem('bob', Decimal(250)),
            RichListItem('alice', Decimal(100)),
            RichListItem('miner', Decimal(0)),
        )

        # NOTE: New block moves funds; only touched addresses are refreshed
        chain.add_block(make_transaction('tx2', 'miner', spends=(('tx1', 1),)))
        chain.balances['miner'] = {'0': Decimal(10), 'DUSD': Decimal(300)}
        chain.balances['bob'] = {}
        chain.balance_requests.clear()

        engine.resume()
        await engine.wait()
        await engine.calculate_next()

        assert sorted(chain.balance_requests) == ['bob', 'miner']
        assert await engine.get('DUSD') == (
            RichListItem('miner', Decimal(300)),
            RichListItem('alice', Decimal(100)),
            RichListItem('bob', Decimal(0)),
        )


async def test_close_cancels_crawl() -> None:
    chain = FakeChain()
    chain.add_block(make_transaction('tx0', 'a'))
    chain.gate = asyncio.Event()

    async with in_memory_engine(chain) as engine:
        engine.resume()
        while not chain.block_requests:
            await asyncio.sleep(0)
        assert engine.status == CrawlerStatus.crawling

        await engine.close()

        assert engine.status == CrawlerStatus.idle
        assert engine.last_error is None
        assert await CrawlLedger().size() == 0

        # NOTE: Closed engine can be resumed
        chain.gate.set()
        engine.resume()
        await engine.wait()
        assert await CrawlLedger().size() == 1


async def test_close_idle_engine() -> None:
    async with in_memory_engine(FakeChain()) as engine:
        await engine.close()
        assert engine.status == CrawlerStatus.idle
