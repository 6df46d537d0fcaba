import textwrap
from abc import ABC
from abc import abstractmethod
from dataclasses import dataclass
from typing import Any

tab = ('_' * 80) + '\n\n'


def unindent(text: str) -> str:
    """Remove indentation from text"""
    return textwrap.dedent(text).strip()


def format_help(help: str) -> str:
    """Format help text"""
    return tab + unindent(help) + '\n'


class FrameworkException(AssertionError, RuntimeError):
    pass


class Error(ABC, FrameworkException):
    """Base class for _known_ exceptions in this module.

    Instances of this class should have a nice help message explaining the error and how to fix it.
    """

    def __str__(self) -> str:
        if not self.__doc__:
            raise NotImplementedError(f'{self.__class__.__name__} has no docstring')
        return self.__doc__ + ' -> ' + ' '.join(str(a) for a in self.args)

    def help(self) -> str:
        """Return a string containing a help message for this error."""
        return format_help(self._help())

    @classmethod
    def default_help(cls) -> str:
        return format_help(
            """
                An unexpected error has occurred! Most likely it's a bug.

                Please, run `richlist status` and attach its output to the issue.
            """
        )

    @abstractmethod
    def _help(self) -> str: ...


@dataclass(repr=False)
class DatasourceError(Error):
    """One of datasources returned an error"""

    msg: str
    datasource: str

    def _help(self) -> str:
        return f"""
            `{self.datasource}` datasource returned an error.

            {self.msg}
        """


@dataclass(repr=False)
class InvalidRequestError(Error):
    """API returned an unexpected response"""

    msg: str
    url: str

    def _help(self) -> str:
        return f"""
            Unexpected response: {self.msg}

            URL: `{self.url}`

            Make sure that config is correct and you're calling the correct API.
        """


@dataclass(repr=False)
class ConfigurationError(Error):
    """richlist YAML config is invalid"""

    msg: str

    def _help(self) -> str:
        return f"""
            {self.msg}

            Check `richlist.yaml` and environment variables it refers to.
        """


@dataclass(repr=False)
class InvalidDataError(Error):
    """Failed to validate datasource message against typed record"""

    msg: str
    type_: type[Any]
    data: Any

    def _help(self) -> str:
        return f"""
            Failed to validate datasource message against typed record.

              {self.msg}

            Type class: `{self.type_.__name__}`
            Data: `{self.data}`
        """


@dataclass(repr=False)
class InvalidTokenError(Error):
    """Token is not known to the node"""

    token_id: str

    def _help(self) -> str:
        return f"""
            Token `{self.token_id}` is not present in the node's token registry.

            Run `richlist get` with one of the ids returned by `listtokens` RPC.
        """


@dataclass(repr=False)
class ChainDiscontinuityError(Error):
    """Crawled chain history doesn't match the chain reported by the node"""

    height: int
    expected_hash: str
    previous_hash: str | None

    def _help(self) -> str:
        return f"""
            Chain discontinuity detected at height {self.height}!

              ledger hash at height {self.height - 1}: `{self.expected_hash}`
              previous hash of block {self.height}: `{self.previous_hash}`

            The node has likely switched to another branch (chain reorganization). Crawling is halted and
            the crawl ledger is left untouched; automatic rewinding is not supported.

            Perform one of the following actions:

              - Wait for the node to settle on the canonical chain and run `richlist crawl` again.
              - Drop crawled state and start from scratch with `richlist schema wipe --force`.
        """
