from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from decimal import Decimal
from typing import Any

import aiohttp
import orjson
from aiohttp import web
from aiohttp.test_utils import TestServer
from pytest import raises

from richlist.config import HttpConfig
from richlist.config import NodeConfig
from richlist.datasources.node import NodeDatasource
from richlist.exceptions import DatasourceError
from richlist.exceptions import InvalidDataError
from richlist.exceptions import InvalidRequestError
from richlist.models.node import Block

BLOCK_HASH = '8b5d5b6a3b4f7a9b7c0c1f1f1d7a6c6e0d6c5b4a39281706f5e4d3c2b1a09f8e'

BLOCK_JSON = b"""{
    "result": {
        "hash": "8b5d5b6a3b4f7a9b7c0c1f1f1d7a6c6e0d6c5b4a39281706f5e4d3c2b1a09f8e",
        "height": 1,
        "previousblockhash": "279b1a87aedc7b9471d4ad4e5f12967ab6259926cd097ade188dfcf22ebfe72a",
        "tx": [
            {
                "txid": "c0ffee",
                "vin": [{"coinbase": "5100", "sequence": 4294967295}],
                "vout": [
                    {"n": 0, "value": 200.12345678, "scriptPubKey": {"addresses": ["8ZWWN1nX8drxJBSMG1VS9jH4ciBSvW4bb3"]}},
                    {"n": 1, "value": 0, "scriptPubKey": {"type": "nulldata"}}
                ]
            },
            {
                "txid": "beef",
                "vin": [{"txid": "c0ffee", "vout": 0}],
                "vout": [{"n": 0, "value": 0.00000001, "scriptPubKey": {"address": "df1qrecipient"}}]
            }
        ]
    },
    "error": null,
    "id": "1"
}"""


class FakeRPC:
    def __init__(self, responses: dict[str, bytes]) -> None:
        self.responses = responses
        self.calls: list[tuple[str, Any]] = []

    async def __call__(self, method: str, url: str = '', **kwargs: Any) -> bytes:
        request = kwargs['json']
        self.calls.append((request['method'], request['params']))
        return self.responses[request['method']]


def create_node(responses: dict[str, bytes]) -> tuple[NodeDatasource, FakeRPC]:
    node = NodeDatasource(NodeConfig(url='http://127.0.0.1:8554/', user='rpc', password='secret'))
    rpc = FakeRPC(responses)
    node.request = rpc  # type: ignore[method-assign]
    return node, rpc


def result(value: Any) -> bytes:
    return orjson.dumps({'result': value, 'error': None, 'id': '1'})


def error(code: int, message: str) -> bytes:
    return orjson.dumps({'result': None, 'error': {'code': code, 'message': message}, 'id': '1'})


async def test_get_block() -> None:
    node, rpc = create_node(
        {
            'getblockhash': result(BLOCK_HASH),
            'getblock': BLOCK_JSON,
        }
    )

    block = await node.get_block(1)

    assert rpc.calls == [('getblockhash', [1]), ('getblock', [BLOCK_HASH, 2])]
    assert block is not None
    assert block.height == 1
    assert block.hash == BLOCK_HASH
    assert block.previous_hash == '279b1a87aedc7b9471d4ad4e5f12967ab6259926cd097ade188dfcf22ebfe72a'

    coinbase, transfer = block.transactions
    assert coinbase.inputs[0].coinbase
    assert coinbase.outputs[0].value == Decimal('200.12345678')
    assert coinbase.outputs[0].addresses == ('8ZWWN1nX8drxJBSMG1VS9jH4ciBSvW4bb3',)
    assert coinbase.outputs[1].addresses == ()
    assert transfer.inputs[0].txid == 'c0ffee'
    assert transfer.inputs[0].vout == 0
    assert transfer.outputs[0].value == Decimal('0.00000001')
    assert transfer.outputs[0].addresses == ('df1qrecipient',)


async def test_get_block_above_tip() -> None:
    node, rpc = create_node({'getblockhash': error(-8, 'Block height out of range')})

    assert await node.get_block(10_000_000) is None
    assert rpc.calls == [('getblockhash', [10_000_000])]


async def test_rpc_error() -> None:
    node, _ = create_node({'getblockhash': error(-28, 'Loading block index...')})

    with raises(DatasourceError) as exc_info:
        await node.get_block(1)
    assert exc_info.value.msg == 'Loading block index...'


async def test_non_json_response() -> None:
    node, _ = create_node({'listtokens': b'<html>502 Bad Gateway</html>'})

    with raises(InvalidRequestError):
        await node.list_token_ids()


async def test_get_balances() -> None:
    node, rpc = create_node({'getaccount': b'{"result": {"0": 1.23456789, "15": 42}, "error": null, "id": "1"}'})

    balances = await node.get_balances('df1qholder')

    assert balances == {'0': Decimal('1.23456789'), '15': Decimal(42)}
    assert rpc.calls[0][0] == 'getaccount'
    assert rpc.calls[0][1][0] == 'df1qholder'


async def test_get_balances_of_empty_account() -> None:
    node, _ = create_node({'getaccount': result([])})

    assert await node.get_balances('df1qempty') == {}


async def test_get_balances_invalid() -> None:
    node, _ = create_node({'getaccount': result({'0': 'lots'})})

    with raises(InvalidDataError):
        await node.get_balances('df1qholder')


async def test_get_balances_boolean_amount() -> None:
    node, _ = create_node({'getaccount': result({'0': True})})

    with raises(InvalidDataError):
        await node.get_balances('df1qholder')


async def test_list_token_ids() -> None:
    node, _ = create_node({'listtokens': result({'0': {'symbol': 'DFI'}, '15': {'symbol': 'BTC'}})})

    assert await node.list_token_ids() == {'0', '15'}


async def test_malformed_block() -> None:
    with raises(InvalidDataError):
        Block.from_json({'hash': BLOCK_HASH, 'tx': []})


class FakeNode:
    """JSON-RPC endpoint replying with prepared responses in order"""

    def __init__(self, *replies: web.Response) -> None:
        self.replies = list(replies)
        self.requests: list[dict[str, Any]] = []
        self.authorization: list[str | None] = []

    async def handle(self, request: web.Request) -> web.Response:
        self.requests.append(await request.json())
        self.authorization.append(request.headers.get('Authorization'))
        return self.replies.pop(0)


def reply(body: bytes, status: int = 200, **headers: str) -> web.Response:
    return web.Response(status=status, body=body, content_type='application/json', headers=headers)


@asynccontextmanager
async def serve(fake: FakeNode, http: HttpConfig | None = None) -> AsyncIterator[NodeDatasource]:
    app = web.Application()
    app.router.add_post('/', fake.handle)
    async with TestServer(app) as server:
        config = NodeConfig(
            url=str(server.make_url('/')),
            user='rpc',
            password='secret',
            http=http or HttpConfig(retry_count=5, retry_sleep=0.01),
        )
        node = NodeDatasource(config)
        async with node:
            yield node


async def test_http_block_above_tip() -> None:
    fake = FakeNode(reply(error(-8, 'Block height out of range'), status=500))

    async with serve(fake) as node:
        assert await node.get_block(10_000_000) is None

    assert len(fake.requests) == 1
    assert fake.requests[0]['method'] == 'getblockhash'
    assert fake.requests[0]['params'] == [10_000_000]
    assert fake.authorization == [aiohttp.BasicAuth('rpc', 'secret').encode()]


async def test_http_rpc_error_is_not_retried() -> None:
    fake = FakeNode(reply(error(-28, 'Loading block index...'), status=500))

    async with serve(fake) as node:
        with raises(DatasourceError) as exc_info:
            await node.get_block(1)

    assert exc_info.value.msg == 'Loading block index...'
    assert len(fake.requests) == 1


async def test_http_transient_errors_are_retried() -> None:
    busy = b'Work queue depth exceeded'
    fake = FakeNode(
        web.Response(status=503, body=busy),
        web.Response(status=503, body=busy),
        reply(result({'0': {'symbol': 'DFI'}, '15': {'symbol': 'BTC'}})),
    )

    async with serve(fake) as node:
        assert await node.list_token_ids() == {'0', '15'}

    assert [request['method'] for request in fake.requests] == ['listtokens'] * 3


async def test_http_retries_exhausted() -> None:
    fake = FakeNode(
        web.Response(status=502),
        web.Response(status=502),
    )

    async with serve(fake, HttpConfig(retry_count=1, retry_sleep=0.01)) as node:
        with raises(aiohttp.ClientResponseError) as exc_info:
            await node.list_token_ids()

    assert exc_info.value.status == 502
    assert len(fake.requests) == 2


async def test_http_too_many_requests() -> None:
    fake = FakeNode(
        web.Response(status=429, headers={'Retry-After': '0'}),
        reply(b'{"result": {"0": 0.00000001, "15": 21000000.12345678}, "error": null, "id": "1"}'),
    )

    async with serve(fake, HttpConfig(retry_count=1, retry_sleep=10, ratelimit_sleep=0.01)) as node:
        balances = await node.get_balances('df1qholder')

    assert balances == {'0': Decimal('0.00000001'), '15': Decimal('21000000.12345678')}
    assert len(fake.requests) == 2
