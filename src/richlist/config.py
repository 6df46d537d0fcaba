"""Config files parsing and processing

YAML (de)serialization and environment variables substitution live in `richlist.yaml` module; here raw
config is validated into pydantic dataclasses.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from pathlib import Path
from typing import Any
from typing import Literal
from urllib.parse import quote_plus

from pydantic import ConfigDict
from pydantic import Field
from pydantic import TypeAdapter
from pydantic import ValidationError
from pydantic.dataclasses import dataclass

from richlist import env
from richlist.exceptions import ConfigurationError
from richlist.yaml import RichListYAMLConfig

DEFAULT_POSTGRES_SCHEMA = 'public'
DEFAULT_POSTGRES_DATABASE = 'postgres'
DEFAULT_POSTGRES_USER = 'postgres'
DEFAULT_POSTGRES_PORT = 5432
DEFAULT_SQLITE_PATH = ':memory:'

DEFAULT_RICH_LIST_LENGTH = 1000
DEFAULT_QUEUED_ADDRESS_LIMIT = 5000
DEFAULT_QUEUE_NAME = 'RichListCore_ACTIVE_ADDRESSES'

_logger = logging.getLogger(__name__)


def _valid_url(v: str) -> str:
    if not v.startswith(('http://', 'https://')):
        raise ConfigurationError(f'`{v}` is not a valid HTTP URL')
    return v.rstrip('/')


@dataclass(config=ConfigDict(extra='forbid'), kw_only=True)
class SqliteDatabaseConfig:
    """
    SQLite connection config

    :param kind: always 'sqlite'
    :param path: Path to .sqlite file, leave default for in-memory database (`:memory:`)
    """

    kind: Literal['sqlite']
    path: str = DEFAULT_SQLITE_PATH

    @property
    def connection_string(self) -> str:
        if self.path != DEFAULT_SQLITE_PATH:
            path = Path(self.path).resolve()
            path.parent.mkdir(parents=True, exist_ok=True)
            return f'{self.kind}:///{path}'

        return f'{self.kind}://{self.path}'

    @property
    def connection_timeout(self) -> int:
        # NOTE: Fail immediately
        return 1


@dataclass(config=ConfigDict(extra='forbid'), kw_only=True)
class PostgresDatabaseConfig:
    """Postgres database connection config

    :param kind: always 'postgres'
    :param host: Host
    :param port: Port
    :param user: User
    :param password: Password
    :param database: Database name
    :param schema_name: Schema name
    :param connection_timeout: Connection timeout
    """

    kind: Literal['postgres']
    host: str
    user: str = DEFAULT_POSTGRES_USER
    database: str = DEFAULT_POSTGRES_DATABASE
    port: int = DEFAULT_POSTGRES_PORT
    schema_name: str = DEFAULT_POSTGRES_SCHEMA
    password: str = Field(default='', repr=False)
    connection_timeout: int = 60

    @property
    def connection_string(self) -> str:
        # NOTE: `maxsize=1` is important! Queue receive relies on a single connection transaction.
        connection_string = (
            f'{self.kind}://{self.user}:{quote_plus(self.password)}@{self.host}:{self.port}/{self.database}?maxsize=1'
        )
        if self.schema_name != DEFAULT_POSTGRES_SCHEMA:
            connection_string += f'&schema={self.schema_name}'
        return connection_string


@dataclass(config=ConfigDict(extra='forbid'), kw_only=True)
class HttpConfig:
    """Advanced configuration of HTTP client

    :param retry_count: Number of retries after request failed before giving up
    :param retry_sleep: Sleep time between retries
    :param retry_multiplier: Multiplier for sleep time between retries
    :param ratelimit_rate: Number of requests per period ("drops" in leaky bucket)
    :param ratelimit_period: Time period for rate limiting in seconds
    :param ratelimit_sleep: Sleep time between requests when rate limit is reached
    :param connection_limit: Number of simultaneous connections
    :param connection_timeout: Connection timeout in seconds
    :param request_timeout: Request timeout in seconds
    :param alias: Alias for this HTTP client (dev only)
    """

    retry_count: int | None = None
    retry_sleep: float | None = None
    retry_multiplier: float | None = None
    ratelimit_rate: int | None = None
    ratelimit_period: int | None = None
    ratelimit_sleep: float | None = None
    connection_limit: int | None = None
    connection_timeout: int | None = None
    request_timeout: int | None = None
    alias: str | None = None


@dataclass(config=ConfigDict(extra='forbid'), kw_only=True)
class ResolvedHttpConfig:
    __doc__ = HttpConfig.__doc__

    retry_count: int = 10
    retry_sleep: float = 1.0
    retry_multiplier: float = 2.0
    ratelimit_rate: int = 0
    ratelimit_period: int = 0
    ratelimit_sleep: float = 0.0
    connection_limit: int = 100
    connection_timeout: int = 60
    request_timeout: int = 60
    alias: str | None = None

    @classmethod
    def create(
        cls,
        default: HttpConfig,
        user: HttpConfig | None,
    ) -> ResolvedHttpConfig:
        config = cls()
        # NOTE: Apply datasource defaults first
        for merge_config in (default, user):
            if merge_config is None:
                continue
            for k, v in merge_config.__dict__.items():
                if v is not None:
                    setattr(config, k, v)
        return config


@dataclass(config=ConfigDict(extra='forbid'), kw_only=True)
class NodeConfig:
    """Blockchain node JSON-RPC endpoint

    :param url: URL of the node RPC
    :param user: RPC user
    :param password: RPC password
    :param http: HTTP connection tunables
    """

    url: str
    user: str | None = None
    password: str | None = Field(default=None, repr=False)
    http: HttpConfig | None = None

    def __post_init__(self) -> None:
        self.url = _valid_url(self.url)


@dataclass(config=ConfigDict(extra='forbid'), kw_only=True)
class JobsConfig:
    """Schedule of periodic jobs in `run` mode

    :param crawl_interval: Seconds between attempts to resume the crawl pass
    :param calculate_interval: Seconds between rebuild passes
    :param calculate_crontab: Schedule rebuild passes with crontab syntax instead (`* * * * *`); takes precedence
    """

    crawl_interval: int = 30
    calculate_interval: int = 60
    calculate_crontab: str | None = None

    def __post_init__(self) -> None:
        if self.calculate_interval <= 0:
            raise ConfigurationError('`calculate_interval` must be positive')
        if self.crawl_interval <= 0:
            raise ConfigurationError('`crawl_interval` must be positive')


@dataclass(config=ConfigDict(extra='forbid'), kw_only=True)
class SentryConfig:
    """Config for Sentry integration.

    :param dsn: DSN of the Sentry instance
    :param environment: Environment; if not set, guessed from docker/ci/local.
    :param server_name: Server name; defaults to hostname.
    :param release: Release version; defaults to richlist package version.
    :param debug: Catch warning messages, increase verbosity.
    """

    dsn: str | None = None
    environment: str | None = None
    server_name: str | None = None
    release: str | None = None
    debug: bool = False


@dataclass(config=ConfigDict(extra='forbid'), kw_only=True)
class PrometheusConfig:
    """Config for Prometheus integration.

    :param host: Host to bind to
    :param port: Port to bind to
    """

    host: str
    port: int = 8000


@dataclass(config=ConfigDict(extra='forbid'), kw_only=True)
class RichListConfig:
    """richlist configuration file

    :param network: Network name, used in logs and metrics labels
    :param node: Node RPC config
    :param database: Database config
    :param rich_list_length: Number of holders kept per token
    :param queued_address_limit: Number of addresses drained from the queue per rebuild iteration
    :param queue_name: Name of the durable queue of active addresses
    :param resolve_inputs: Queue owners of spent outputs along with receivers
    :param jobs: Periodic jobs schedule
    :param sentry: Sentry integration config
    :param prometheus: Prometheus integration config
    :param logging: Modify logging verbosity
    """

    network: str
    node: NodeConfig
    database: SqliteDatabaseConfig | PostgresDatabaseConfig = Field(
        default_factory=lambda *a, **kw: SqliteDatabaseConfig(kind='sqlite')
    )
    rich_list_length: int = DEFAULT_RICH_LIST_LENGTH
    queued_address_limit: int = DEFAULT_QUEUED_ADDRESS_LIMIT
    queue_name: str = DEFAULT_QUEUE_NAME
    resolve_inputs: bool = True
    jobs: JobsConfig = Field(default_factory=JobsConfig)
    sentry: SentryConfig | None = None
    prometheus: PrometheusConfig | None = None
    logging: dict[str, str | int] | str | int = 'INFO'

    def __post_init__(self) -> None:
        if self.rich_list_length <= 0:
            raise ConfigurationError('`rich_list_length` must be positive')
        if self.queued_address_limit <= 0:
            raise ConfigurationError('`queued_address_limit` must be positive')

        self._paths: list[Path] = []
        self._environment: dict[str, str] = {}
        self._json = RichListYAMLConfig()

    @classmethod
    def load(
        cls,
        paths: list[Path],
        environment: bool = True,
        unsafe: bool = False,
    ) -> RichListConfig:
        config_json, config_environment = RichListYAMLConfig.load(
            paths=paths,
            environment=environment,
            unsafe=unsafe,
        )

        try:
            config = TypeAdapter(cls).validate_python(config_json)
        except ConfigurationError:
            raise
        except ValidationError as e:
            msgs = []
            errors_by_path = defaultdict(list)
            for error in e.errors():
                path = '.'.join(str(e) for e in error['loc'][:-1])
                errors_by_path[path].append(error)

            for path, errors in errors_by_path.items():
                fields = {error['loc'][-1] for error in errors if error['loc']}

                # NOTE: If `kind` doesn't match the expected value, skip this class; it's a wrong Union member.
                if 'kind' in fields:
                    continue

                for error in errors:
                    path = '.'.join(str(e) for e in error['loc'])
                    msgs.append(f'- {path}: {error["msg"]}')

            msg = 'Config validation failed:\n\n' + '\n'.join(msgs)
            raise ConfigurationError(msg) from e
        except Exception as e:
            raise ConfigurationError(str(e)) from e

        config._paths = paths
        config._json = config_json
        config._environment = config_environment
        return config

    def dump(self) -> str:
        return self._json.dump()

    def set_up_logging(self) -> None:
        loglevels = {}
        if isinstance(self.logging, dict):
            loglevels = {**self.logging}
        else:
            loglevels['richlist'] = self.logging

        # NOTE: Environment variables have higher priority
        if env.DEBUG:
            loglevels['richlist'] = 'DEBUG'

        for name, level in loglevels.items():
            try:
                if isinstance(level, str):
                    level = getattr(logging, level.upper())
                if not isinstance(level, int):
                    raise ValueError
            except (AttributeError, ValueError):
                raise ConfigurationError(f'Invalid logging level `{level}` for logger `{name}`') from None

            logging.getLogger(name).setLevel(level)
