import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from decimal import Decimal
from pathlib import Path

from tortoise import Tortoise

from richlist import env
from richlist.database import tortoise_wrapper
from richlist.engine import RichListEngine
from richlist.models.node import Block
from richlist.models.node import Transaction
from richlist.models.node import TransactionInput
from richlist.models.node import TransactionOutput
from richlist.parser import AddressParser
from richlist.storage import CrawlLedger
from richlist.storage import QueueClient
from richlist.storage import RichListStorage

env.set_test()


TEST_CONFIGS = Path(__file__).parent / 'configs'
NATIVE_TOKEN = '0'


def make_transaction(txid: str, *receivers: str, spends: tuple[tuple[str, int], ...] = ()) -> Transaction:
    inputs = tuple(TransactionInput(txid=prev, vout=n, coinbase=False) for prev, n in spends)
    if not inputs:
        inputs = (TransactionInput(txid=None, vout=None, coinbase=True),)
    outputs = tuple(
        TransactionOutput(n=n, value=Decimal(1), addresses=(receiver,)) for n, receiver in enumerate(receivers)
    )
    return Transaction(txid=txid, inputs=inputs, outputs=outputs)


class FakeChain:
    """In-memory chain implementing `ChainClient`"""

    def __init__(self) -> None:
        self.blocks: list[Block] = []
        self.transactions: dict[str, Transaction] = {}
        self.balances: dict[str, dict[str, Decimal]] = {}
        self.tokens: set[str] = {NATIVE_TOKEN}
        self.block_requests: list[int] = []
        self.balance_requests: list[str] = []
        self.gate: asyncio.Event | None = None
        self.error: Exception | None = None

    def add_block(self, *transactions: Transaction, previous_hash: str | None = None) -> Block:
        height = len(self.blocks)
        if previous_hash is None and self.blocks:
            previous_hash = self.blocks[-1].hash
        block = Block(
            height=height,
            hash=f'hash{height}',
            previous_hash=previous_hash,
            transactions=transactions,
        )
        self.blocks.append(block)
        self.transactions.update((tx.txid, tx) for tx in transactions)
        return block

    def add_empty_blocks(self, count: int) -> None:
        for _ in range(count):
            self.add_block()

    async def get_block(self, height: int) -> Block | None:
        self.block_requests.append(height)
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        if height >= len(self.blocks):
            return None
        return self.blocks[height]

    async def get_transaction(self, txid: str) -> Transaction:
        return self.transactions[txid]

    async def get_balances(self, address: str) -> dict[str, Decimal]:
        self.balance_requests.append(address)
        return dict(self.balances.get(address, {}))

    async def list_token_ids(self) -> set[str]:
        return set(self.tokens)


@asynccontextmanager
async def in_memory_database() -> AsyncIterator[None]:
    async with tortoise_wrapper('sqlite://:memory:'):
        await Tortoise.generate_schemas()
        yield


@asynccontextmanager
async def in_memory_engine(
    chain: FakeChain,
    rich_list_length: int = 1000,
    resolve_inputs: bool = False,
) -> AsyncIterator[RichListEngine]:
    async with in_memory_database():
        yield RichListEngine(
            client=chain,
            extractor=AddressParser(chain, resolve_inputs=resolve_inputs),
            queue_client=QueueClient(),
            ledger=CrawlLedger(),
            rich_lists=RichListStorage(),
            rich_list_length=rich_list_length,
        )
