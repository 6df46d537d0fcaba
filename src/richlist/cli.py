# NOTE: All imports except the basic ones are very lazy in this module. Let's keep it that way.
import asyncio
import atexit
import logging
import sys
from collections.abc import Callable
from collections.abc import Coroutine
from contextlib import suppress
from dataclasses import dataclass
from functools import wraps
from pathlib import Path
from typing import TYPE_CHECKING
from typing import Any
from typing import TypeVar
from typing import cast

import click
import uvloop

from richlist import __version__
from richlist.sys import set_up_process

if TYPE_CHECKING:
    from richlist.config import RichListConfig

ROOT_CONFIG = 'richlist.yaml'

# NOTE: Do not try to load config for these commands as they don't need it
NO_CONFIG_CMDS = {
    'config',
}


_logger = logging.getLogger(__name__)


def _get_paths(
    params: dict[str, Any],
) -> tuple[list[Path], list[Path]]:
    from richlist.exceptions import ConfigurationError

    config_args: list[str] = params.pop('config', []) or [ROOT_CONFIG]
    env_file_args: list[str] = params.pop('env_file', [])

    config_paths: list[Path] = []
    env_file_paths: list[Path] = []

    for arg in config_args:
        path = Path(arg)
        if path.is_dir():
            path = path / ROOT_CONFIG
        if not path.is_file():
            raise ConfigurationError(f'Config file not found: {path}')
        config_paths.append(path)

    for arg in env_file_args:
        path = Path(arg)
        if not path.is_file():
            raise ConfigurationError(f'Env file not found: {path}')
        env_file_paths.append(path)

    return config_paths, env_file_paths


def _load_env_files(env_file_paths: list[Path]) -> None:
    for path in env_file_paths:
        from dotenv import load_dotenv

        _logger.info('Applying env_file `%s`', path)
        load_dotenv(path, override=True)


def echo(message: str, err: bool = False, **styles: Any) -> None:
    with suppress(BrokenPipeError):
        click.secho(message, err=err, **styles)


def _print_help_atexit(error: Exception) -> None:
    """Prints a helpful error message after the traceback"""
    from richlist.exceptions import Error

    def _print() -> None:
        if isinstance(error, Error):
            echo(error.help(), err=True)
        else:
            echo(Error.default_help(), err=True)

    atexit.register(_print)


WrappedCommandT = TypeVar('WrappedCommandT', bound=Callable[..., Coroutine[Any, Any, None]])


@dataclass
class CLIContext:
    config_paths: list[str]
    config: 'RichListConfig'


def _cli_wrapper(fn: WrappedCommandT) -> WrappedCommandT:
    @wraps(fn)
    def wrapper(ctx: click.Context, *args: Any, **kwargs: Any) -> None:
        try:
            uvloop.run(fn(ctx, *args, **kwargs))
        except (KeyboardInterrupt, asyncio.CancelledError):
            pass
        except Exception as e:
            _print_help_atexit(e)
            raise e

    return cast(WrappedCommandT, wrapper)


def _skip_cli_group() -> bool:
    # NOTE: Workaround for help pages. First argument check is for the test runner.
    args = sys.argv[1:] if sys.argv else ['--help']
    is_help = '--help' in args
    is_empty_group = args in (
        ['config'],
        ['schema'],
    )
    return is_help or is_empty_group


@click.group(context_settings={'max_content_width': 120})
@click.version_option(__version__)
@click.option(
    '--config',
    '-c',
    type=str,
    multiple=True,
    help='A path to richlist config.',
    default=[],
    metavar='PATH',
    envvar='RICHLIST_CONFIG',
)
@click.option(
    '--env-file',
    '-e',
    type=str,
    multiple=True,
    help='A path to .env file containing `KEY=value` strings.',
    default=[],
    metavar='PATH',
    envvar='RICHLIST_ENV_FILE',
)
@click.pass_context
@_cli_wrapper
async def cli(ctx: click.Context, config: list[str], env_file: list[str]) -> None:
    """Top holders of every token of a DeFiChain-like network, kept in sync with the chain."""
    set_up_process()

    if _skip_cli_group():
        return

    from richlist.sys import set_up_logging

    set_up_logging()

    # NOTE: These commands need no other preparations
    if ctx.invoked_subcommand in NO_CONFIG_CMDS:
        logging.getLogger('richlist').setLevel(logging.INFO)
        return

    from richlist.config import RichListConfig

    config_paths, env_file_paths = _get_paths(ctx.params)
    # NOTE: Apply env files before loading the config
    _load_env_files(env_file_paths)

    _config = RichListConfig.load(
        paths=config_paths,
        environment=True,
        unsafe=True,
    )
    _config.set_up_logging()

    if _config.sentry:
        from richlist.sentry import init_sentry

        init_sentry(_config.sentry, _config.network)

    ctx.obj = CLIContext(
        config_paths=config,
        config=_config,
    )


@cli.command()
@click.pass_context
@_cli_wrapper
async def run(ctx: click.Context) -> None:
    """Crawl new blocks and rebuild rich lists periodically.

    Execution stops on the first failed job. A chain discontinuity (reorg) halts the crawler; inspect it with `richlist status`, then wipe the schema to recrawl from genesis.
    """
    from richlist.service import RichListService

    service = RichListService(ctx.obj.config)
    await service.run()


@cli.command()
@click.pass_context
@_cli_wrapper
async def crawl(ctx: click.Context) -> None:
    """Run a single catch-up pass: crawl blocks until the tip and queue touched addresses."""
    from richlist.service import RichListService

    service = RichListService(ctx.obj.config)
    async with service.open() as engine:
        engine.resume()
        await engine.wait()


@cli.command()
@click.pass_context
@_cli_wrapper
async def calculate(ctx: click.Context) -> None:
    """Drain the queue of active addresses and rebuild rich lists."""
    from richlist.service import RichListService

    config: RichListConfig = ctx.obj.config
    service = RichListService(config)
    async with service.open() as engine:
        iterations = await engine.calculate_next(config.queued_address_limit)
    _logger.info('Rich lists rebuilt in %s iterations', iterations)


@cli.command()
@click.argument('token_id', type=str)
@click.pass_context
@_cli_wrapper
async def get(ctx: click.Context, token_id: str) -> None:
    """Print rich list of a token as JSON."""
    from richlist.service import RichListService
    from richlist.utils import json_dumps

    service = RichListService(ctx.obj.config)
    async with service.open() as engine:
        items = await engine.get(token_id)
    echo(json_dumps([item.to_json() for item in items]).decode())


@cli.command()
@click.pass_context
@_cli_wrapper
async def status(ctx: click.Context) -> None:
    """Show crawl ledger state and check whether the next block extends it."""
    from richlist.models import QueueMode
    from richlist.service import RichListService
    from richlist.storage import CrawlLedger
    from richlist.storage import QueueClient

    config: RichListConfig = ctx.obj.config
    service = RichListService(config)
    async with service.open():
        ledger = CrawlLedger()
        height = await ledger.size()
        last = await ledger.get_last()
        queue = await QueueClient().create_queue_if_not_exist(config.queue_name, QueueMode.LIFO)
        queued = await queue.size()
        block = await service.node.get_block(height)

    echo(f'Network:            {config.network}')
    echo(f'Ledger height:      {height}')
    echo(f'Last block hash:    {last.hash if last else "-"}')
    echo(f'Queued addresses:   {queued}')

    if block is None:
        echo('Next block:         not produced yet')
    elif last is not None and block.previous_hash != last.hash:
        echo(f'Next block:         {block.hash} does not extend the ledger (reorg)', fg='red')
    else:
        echo(f'Next block:         {block.hash}', fg='green')


@cli.group()
@click.pass_context
@_cli_wrapper
async def config(ctx: click.Context) -> None:
    """Commands to manage richlist configuration."""
    pass


@config.command(name='export')
@click.option('--unsafe', is_flag=True, help='Use actual environment variables instead of default values.')
@click.pass_context
@_cli_wrapper
async def config_export(ctx: click.Context, unsafe: bool) -> None:
    """
    Print config after substituting environment variables.

    WARNING: Avoid sharing output with 3rd-parties when `--unsafe` flag set - it may contain secrets!
    """
    from richlist.config import RichListConfig

    # NOTE: Late loading; cli() was skipped.
    config_paths, env_file_paths = _get_paths(ctx.parent.parent.params)  # type: ignore[union-attr]
    _load_env_files(env_file_paths)

    config = RichListConfig.load(
        paths=config_paths,
        environment=True,
        unsafe=unsafe,
    )
    echo(config.dump())


@cli.group()
@click.pass_context
@_cli_wrapper
async def schema(ctx: click.Context) -> None:
    """Commands to manage database schema."""
    pass


@schema.command(name='init')
@click.pass_context
@_cli_wrapper
async def schema_init(ctx: click.Context) -> None:
    """Create database tables."""
    from richlist.database import generate_schema
    from richlist.database import tortoise_wrapper

    config: RichListConfig = ctx.obj.config
    async with tortoise_wrapper(
        url=config.database.connection_string,
        timeout=config.database.connection_timeout,
    ):
        await generate_schema()

    _logger.info('Schema initialized')


@schema.command(name='wipe')
@click.option('--force', '-f', is_flag=True, help='Skip confirmation prompt.')
@click.pass_context
@_cli_wrapper
async def schema_wipe(ctx: click.Context, force: bool) -> None:
    """
    Delete crawl ledger, queued addresses and rich lists.

    The next crawl pass starts from genesis. WARNING: This action is irreversible!
    """
    config: RichListConfig = ctx.obj.config
    url = config.database.connection_string

    if not force:
        try:
            assert sys.__stdin__.isatty()  # type: ignore[union-attr]
            click.confirm(
                f"You're about to wipe schema `{url}`. All crawled data will be irreversibly lost, are you sure?",
                abort=True,
            )
        except AssertionError:
            echo('Not in a TTY, skipping confirmation')
        except click.Abort:
            echo('\nAborted')
            sys.exit(0)

    _logger.info('Wiping schema `%s`', url)

    from richlist.database import generate_schema
    from richlist.database import tortoise_wrapper
    from richlist.database import wipe_schema

    async with tortoise_wrapper(
        url=url,
        timeout=config.database.connection_timeout,
    ):
        await generate_schema()
        await wipe_schema()

    _logger.info('Schema wiped')
