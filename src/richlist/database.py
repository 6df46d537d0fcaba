import asyncio
import logging
from collections.abc import AsyncIterator
from collections.abc import Iterator
from contextlib import asynccontextmanager
from typing import cast

import asyncpg.exceptions  # type: ignore[import-untyped]
from tortoise import Tortoise
from tortoise.backends.asyncpg.client import AsyncpgDBClient
from tortoise.backends.sqlite.client import SqliteClient
from tortoise.connection import connections
from tortoise.models import Model as TortoiseModel
from tortoise.transactions import in_transaction

from richlist.exceptions import ConfigurationError

_logger = logging.getLogger(__name__)

DEFAULT_CONNECTION_NAME = 'default'
MODELS_MODULE = 'richlist.models'


AsyncpgClient = AsyncpgDBClient
SupportedClient = SqliteClient | AsyncpgClient


def get_connection() -> SupportedClient:
    return cast(SupportedClient, connections.get(DEFAULT_CONNECTION_NAME))


@asynccontextmanager
async def tortoise_wrapper(
    url: str,
    timeout: int = 60,
) -> AsyncIterator[None]:
    """Initialize Tortoise with richlist models, close connections when done"""
    if ':memory' in url:
        _logger.warning('Using in-memory database; data will be lost on exit')

    try:
        for attempt in range(timeout):
            try:
                await Tortoise.init(
                    db_url=url,
                    modules={'models': [MODELS_MODULE]},
                )

                conn = get_connection()
                try:
                    await conn.execute_query('SELECT 1')
                except asyncpg.exceptions.InvalidPasswordError as e:
                    raise ConfigurationError(f'{e.__class__.__name__}: {e}') from e

            except (OSError, asyncpg.exceptions.CannotConnectNowError):
                _logger.warning("Can't establish database connection, attempt %s/%s", attempt, timeout)
                if attempt == timeout - 1:
                    raise
                await asyncio.sleep(1)
            else:
                break
        yield
    finally:
        await Tortoise.close_connections()


def iter_models() -> Iterator[type[TortoiseModel]]:
    """Iterate over richlist models"""
    for app in Tortoise.apps.values():
        yield from app.values()


async def generate_schema() -> None:
    """Create missing tables"""
    _logger.info('Initializing database schema')
    await Tortoise.generate_schemas(safe=True)


async def wipe_schema() -> None:
    """Delete crawled state, queued addresses and rich lists. Executes in a transaction"""
    async with in_transaction():
        for model in iter_models():
            _logger.info('Wiping `%s` table', model._meta.db_table)
            await model.all().delete()
