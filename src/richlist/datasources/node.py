import json
import logging
from decimal import Decimal
from http import HTTPStatus
from json import JSONDecodeError
from typing import Any
from uuid import uuid4

import aiohttp

from richlist.config import HttpConfig
from richlist.config import NodeConfig
from richlist.config import ResolvedHttpConfig
from richlist.exceptions import DatasourceError
from richlist.exceptions import InvalidDataError
from richlist.exceptions import InvalidRequestError
from richlist.http import HTTPGateway
from richlist.models.node import Block
from richlist.models.node import Transaction

# NOTE: `getblockhash` error for heights above the tip
BLOCK_OUT_OF_RANGE_CODE = -8
BLOCK_OUT_OF_RANGE_MESSAGE = 'Block height out of range'
# NOTE: Larger than any token registry or account we expect; RPC pagination is not needed
PAGE_LIMIT = 1_000_000
BLOCK_VERBOSITY = 2
# NOTE: Statuses of failed calls carrying a JSON-RPC error body; others are retried
JSONRPC_ERROR_STATUSES = (HTTPStatus.NOT_FOUND, HTTPStatus.INTERNAL_SERVER_ERROR)


async def _raise_for_status(response: aiohttp.ClientResponse) -> None:
    if response.status not in JSONRPC_ERROR_STATUSES:
        response.raise_for_status()


class NodeDatasource(HTTPGateway):
    """JSON-RPC client of a DeFiChain-like node

    Node responses are decoded with `decimal.Decimal` for floats, so amounts are never rounded.
    """

    _default_http_config = HttpConfig(
        retry_count=5,
        retry_sleep=1,
        ratelimit_sleep=1,
    )

    def __init__(self, config: NodeConfig) -> None:
        super().__init__(
            config.url,
            ResolvedHttpConfig.create(self._default_http_config, config.http),
        )
        self._config = config
        self._logger = logging.getLogger('richlist.node')
        self._auth = aiohttp.BasicAuth(config.user, config.password or '') if config.user else None

    async def get_block(self, height: int) -> Block | None:
        response = await self._jsonrpc_request('getblockhash', [height], unwrap=False)
        if error := response.get('error'):
            if error.get('code') == BLOCK_OUT_OF_RANGE_CODE and BLOCK_OUT_OF_RANGE_MESSAGE in error.get('message', ''):
                self._logger.debug('No block at height %s', height)
                return None
            raise DatasourceError(error.get('message', str(error)), self.name)

        block_hash = response['result']
        block_json = await self._jsonrpc_request('getblock', [block_hash, BLOCK_VERBOSITY])
        return Block.from_json(block_json)

    async def get_transaction(self, txid: str) -> Transaction:
        transaction_json = await self._jsonrpc_request('getrawtransaction', [txid, True])
        return Transaction.from_json(transaction_json)

    async def get_balances(self, address: str) -> dict[str, Decimal]:
        balances_json = await self._jsonrpc_request('getaccount', [address, {'limit': PAGE_LIMIT}, True])
        return self._parse_balances(balances_json)

    async def list_token_ids(self) -> set[str]:
        tokens_json = await self._jsonrpc_request('listtokens', [{'limit': PAGE_LIMIT}, False])
        if not isinstance(tokens_json, dict):
            raise InvalidDataError('Token registry is not a mapping', dict, tokens_json)
        return set(tokens_json.keys())

    def _parse_balances(self, balances_json: Any) -> dict[str, Decimal]:
        # NOTE: Empty accounts are reported as an empty list by some node versions
        if balances_json == []:
            return {}
        if not isinstance(balances_json, dict):
            raise InvalidDataError('Account balances are not a mapping', dict, balances_json)

        balances: dict[str, Decimal] = {}
        for token_id, amount in balances_json.items():
            if isinstance(amount, bool) or not isinstance(amount, Decimal | int):
                raise InvalidDataError(f'Invalid amount of token `{token_id}`', Decimal, balances_json)
            balances[str(token_id)] = Decimal(amount)
        return balances

    async def _jsonrpc_request(
        self,
        method: str,
        params: Any,
        unwrap: bool = True,
    ) -> Any:
        request = {
            'jsonrpc': '1.0',
            'id': uuid4().hex,
            'method': method,
            'params': params,
        }
        self._logger.debug('Calling `%s`', method)
        body = await self.request(
            method='post',
            url='',
            json=request,
            auth=self._auth,
            raise_for_status=_raise_for_status,
        )

        try:
            data = json.loads(body, parse_float=Decimal)
        except (JSONDecodeError, UnicodeDecodeError) as e:
            raise InvalidRequestError(f'`{method}` returned non-JSON response: {body[:200]!r}', self.url) from e

        if not isinstance(data, dict):
            raise InvalidRequestError(f'`{method}` returned unexpected response: {data}', self.url)
        if not unwrap:
            return data

        if data.get('error'):
            raise DatasourceError(data['error'].get('message', str(data['error'])), self.name)
        return data['result']
