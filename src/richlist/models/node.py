from dataclasses import dataclass
from decimal import Decimal
from typing import Any
from typing import Self

from richlist.exceptions import InvalidDataError


@dataclass(frozen=True)
class TransactionInput:
    txid: str | None
    vout: int | None
    coinbase: bool

    @classmethod
    def from_json(cls, input_json: dict[str, Any]) -> Self:
        if 'coinbase' in input_json:
            return cls(txid=None, vout=None, coinbase=True)
        return cls(
            txid=input_json['txid'],
            vout=int(input_json['vout']),
            coinbase=False,
        )


@dataclass(frozen=True)
class TransactionOutput:
    n: int
    value: Decimal
    addresses: tuple[str, ...]

    @classmethod
    def from_json(cls, output_json: dict[str, Any]) -> Self:
        script = output_json.get('scriptPubKey') or {}
        # NOTE: Newer nodes report a single `address` instead of `addresses` list
        if 'addresses' in script:
            addresses = tuple(script['addresses'])
        elif 'address' in script:
            addresses = (script['address'],)
        else:
            addresses = ()

        return cls(
            n=int(output_json['n']),
            value=Decimal(str(output_json['value'])),
            addresses=addresses,
        )


@dataclass(frozen=True)
class Transaction:
    txid: str
    inputs: tuple[TransactionInput, ...]
    outputs: tuple[TransactionOutput, ...]

    @classmethod
    def from_json(cls, transaction_json: dict[str, Any]) -> Self:
        try:
            return cls(
                txid=transaction_json['txid'],
                inputs=tuple(TransactionInput.from_json(i) for i in transaction_json.get('vin', ())),
                outputs=tuple(TransactionOutput.from_json(o) for o in transaction_json.get('vout', ())),
            )
        except (KeyError, TypeError, ValueError, ArithmeticError) as e:
            raise InvalidDataError(f'{e.__class__.__name__}: {e}', cls, transaction_json) from e


@dataclass(frozen=True)
class Block:
    height: int
    hash: str
    # NOTE: None for genesis block only
    previous_hash: str | None
    transactions: tuple[Transaction, ...]

    @classmethod
    def from_json(cls, block_json: dict[str, Any]) -> Self:
        try:
            return cls(
                height=int(block_json['height']),
                hash=block_json['hash'],
                previous_hash=block_json.get('previousblockhash'),
                transactions=tuple(Transaction.from_json(tx) for tx in block_json['tx']),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise InvalidDataError(f'{e.__class__.__name__}: {e}', cls, block_json) from e
