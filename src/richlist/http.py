import asyncio
import logging
import platform
from collections.abc import Awaitable
from collections.abc import Callable
from contextlib import AbstractAsyncContextManager
from http import HTTPStatus
from typing import Any
from urllib.parse import urlsplit
from urllib.parse import urlunsplit

import aiohttp
from aiolimiter import AsyncLimiter

from richlist import __version__
from richlist.config import ResolvedHttpConfig
from richlist.exceptions import FrameworkException
from richlist.prometheus import Metrics
from richlist.utils import json_dumps_plain

retriable_exceptions = (
    asyncio.TimeoutError,
    aiohttp.ClientConnectionError,
    aiohttp.ClientResponseError,
    aiohttp.ClientPayloadError,
)

StatusCheck = Callable[[aiohttp.ClientResponse], Awaitable[None]]


def get_user_agent() -> str:
    system = f'{platform.system()}; {platform.machine()}'
    return f'richlist/{__version__} ({system}) {aiohttp.http.SERVER_SOFTWARE}'


class HTTPGateway(AbstractAsyncContextManager[None]):
    """Base class for clients of a single remote HTTP endpoint

    Requests are ratelimited and retried with growing delays according to `ResolvedHttpConfig`. `429 Too Many
    Requests` replies are retried after `Retry-After` seconds instead. Response bodies are returned as bytes;
    decoding is up to the caller.
    """

    def __init__(self, url: str, http_config: ResolvedHttpConfig) -> None:
        parsed_url = urlsplit(url)
        self._url = urlunsplit((parsed_url.scheme, parsed_url.netloc, '', '', ''))
        self._path = parsed_url.path or '/'
        self._alias = http_config.alias or parsed_url.netloc
        self._http_config = http_config
        self._logger = logging.getLogger(__name__)
        self._ratelimiter = (
            AsyncLimiter(max_rate=http_config.ratelimit_rate, time_period=http_config.ratelimit_period)
            if http_config.ratelimit_rate and http_config.ratelimit_period
            else None
        )
        self._session: aiohttp.ClientSession | None = None

    async def __aenter__(self) -> None:
        """Create underlying aiohttp session"""
        self._session = aiohttp.ClientSession(
            base_url=self._url,
            headers={'User-Agent': get_user_agent()},
            json_serialize=json_dumps_plain,
            connector=aiohttp.TCPConnector(limit=self._http_config.connection_limit),
            timeout=aiohttp.ClientTimeout(
                total=self._http_config.request_timeout,
                connect=self._http_config.connection_timeout,
            ),
        )

    async def __aexit__(self, exc_type: type[BaseException] | None, exc_val: BaseException | None, exc_tb: Any) -> None:
        """Close underlying aiohttp session"""
        if self._session is None:
            raise FrameworkException('Session is not initialized')
        self._logger.debug('Closing gateway session (%s)', self._url)
        await self._session.close()

    @property
    def url(self) -> str:
        """HTTP endpoint URL without path"""
        return self._url

    @property
    def name(self) -> str:
        return self._alias

    @property
    def session(self) -> aiohttp.ClientSession:
        if self._session is None:
            raise FrameworkException('aiohttp session is not initialized. Wrap with `async with gateway`')
        if self._session.closed:
            raise FrameworkException('aiohttp session is closed')
        return self._session

    async def request(
        self,
        method: str,
        url: str = '',
        raise_for_status: bool | StatusCheck = True,
        **kwargs: Any,
    ) -> bytes:
        """Send HTTP request and return response body, retrying failed attempts"""
        retry_sleep = self._http_config.retry_sleep
        last_attempt = self._http_config.retry_count + 1
        Metrics.set_http_errors_in_row(self._url, 0)

        for attempt in range(1, last_attempt + 1):
            try:
                return await self._request(method, url, raise_for_status, **kwargs)
            except retriable_exceptions as e:
                status = e.status if isinstance(e, aiohttp.ClientResponseError) else 0
                Metrics.set_http_error(self._url, status)
                Metrics.set_http_errors_in_row(self._url, attempt)
                self._logger.warning('%s request attempt %s/%s failed: %s', self._alias, attempt, last_attempt, e)
                if attempt == last_attempt:
                    raise

                ratelimit_sleep = self._get_ratelimit_sleep(e)
                sleep = ratelimit_sleep or retry_sleep
                self._logger.info('Waiting %s seconds before retry', sleep)
                await asyncio.sleep(sleep)
                if not ratelimit_sleep:
                    retry_sleep *= self._http_config.retry_multiplier

        raise FrameworkException('Retry loop exited without a response')

    def _get_ratelimit_sleep(self, error: Exception) -> float | None:
        if not isinstance(error, aiohttp.ClientResponseError) or error.status != HTTPStatus.TOO_MANY_REQUESTS:
            return None
        sleep = self._http_config.ratelimit_sleep
        retry_after = (error.headers or {}).get('Retry-After')
        if retry_after and retry_after.isdigit():
            sleep = max(sleep, int(retry_after))
        return sleep

    async def _request(
        self,
        method: str,
        url: str,
        raise_for_status: bool | StatusCheck,
        **kwargs: Any,
    ) -> bytes:
        path = f"{self._path.rstrip('/')}/{url}" if url else self._path
        self._logger.debug('Calling `%s%s`', self._url, path)

        if self._ratelimiter:
            await self._ratelimiter.acquire()

        async with self.session.request(
            method=method,
            url=path,
            raise_for_status=raise_for_status,
            **kwargs,
        ) as response:
            return await response.read()
