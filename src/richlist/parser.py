import logging

from richlist.exceptions import InvalidDataError
from richlist.interfaces import ChainClient
from richlist.models.node import Transaction

_logger = logging.getLogger(__name__)


class AddressParser:
    """Extracts addresses touched by a UTXO transaction.

    Receivers are taken from transaction outputs. Senders are owners of spent outputs, resolved by fetching
    previous transactions (requires `-txindex` on the node); pass `resolve_inputs=False` to skip them.
    Addresses are returned in order of first appearance without duplicates.
    """

    def __init__(self, client: ChainClient, resolve_inputs: bool = True) -> None:
        self._client = client
        self._resolve_inputs = resolve_inputs

    async def parse(self, transaction: Transaction) -> list[str]:
        addresses: dict[str, None] = {}

        for output in transaction.outputs:
            addresses.update(dict.fromkeys(output.addresses))

        if self._resolve_inputs:
            for address in await self._parse_inputs(transaction):
                addresses.setdefault(address)

        return list(addresses)

    async def _parse_inputs(self, transaction: Transaction) -> list[str]:
        addresses: list[str] = []
        for tx_input in transaction.inputs:
            if tx_input.coinbase:
                continue
            if tx_input.txid is None or tx_input.vout is None:
                raise InvalidDataError('Input has neither coinbase nor outpoint', Transaction, transaction)

            previous = await self._client.get_transaction(tx_input.txid)
            spent = next((o for o in previous.outputs if o.n == tx_input.vout), None)
            if spent is None:
                _logger.warning('%s: spent output %s:%s not found', transaction.txid, tx_input.txid, tx_input.vout)
                continue
            addresses.extend(spent.addresses)
        return addresses
