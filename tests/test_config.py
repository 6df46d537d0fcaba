from pytest import MonkeyPatch
from pytest import raises

from richlist.config import PostgresDatabaseConfig
from richlist.config import ResolvedHttpConfig
from richlist.config import RichListConfig
from richlist.config import SqliteDatabaseConfig
from richlist.datasources.node import NodeDatasource
from richlist.exceptions import ConfigurationError
from tests import TEST_CONFIGS


async def test_load_defaults() -> None:
    config = RichListConfig.load([TEST_CONFIGS / 'richlist.yaml'])

    assert config.network == 'mainnet'
    assert config.node.url == 'http://127.0.0.1:8554'
    assert config.node.user == 'rpc'
    assert config.rich_list_length == 100
    assert config.queued_address_limit == 500
    assert config.queue_name == 'RichListCore_ACTIVE_ADDRESSES'
    assert config.resolve_inputs is True
    assert config.jobs.crawl_interval == 10
    assert config.jobs.calculate_interval == 60
    assert config.jobs.calculate_crontab == '*/5 * * * *'
    assert isinstance(config.database, SqliteDatabaseConfig)
    assert config.database.connection_string == 'sqlite://:memory:'
    assert config.prometheus is None
    assert config.sentry is None


async def test_load_env_variables(monkeypatch: MonkeyPatch) -> None:
    monkeypatch.setenv('NODE_URL', 'https://node.example.com/')
    monkeypatch.setenv('POSTGRES_PASSWORD', 'p@ss')

    config = RichListConfig.load(
        [TEST_CONFIGS / 'richlist.yaml', TEST_CONFIGS / 'postgres.yaml'],
        unsafe=True,
    )

    assert config.node.url == 'https://node.example.com'
    assert isinstance(config.database, PostgresDatabaseConfig)
    assert config.database.host == 'db'
    assert config.database.connection_string == 'postgres://postgres:p%40ss@db:5432/postgres?maxsize=1'
    assert config.prometheus is not None
    assert config.prometheus.port == 8000


async def test_dump_hides_environment() -> None:
    config = RichListConfig.load(
        [TEST_CONFIGS / 'richlist.yaml', TEST_CONFIGS / 'postgres.yaml'],
        unsafe=False,
    )

    dump = config.dump()
    assert 'password: changeme' in dump
    assert 'network: mainnet' in dump


async def test_invalid_config() -> None:
    with raises(ConfigurationError):
        RichListConfig.load([TEST_CONFIGS / 'invalid.yaml'])


async def test_missing_config() -> None:
    with raises(ConfigurationError):
        RichListConfig.load([TEST_CONFIGS / 'missing.yaml'])


async def test_http_config_merge() -> None:
    config = RichListConfig.load([TEST_CONFIGS / 'richlist.yaml'])
    node = NodeDatasource(config.node)

    assert node._http_config == ResolvedHttpConfig(
        retry_count=3,
        retry_sleep=1,
        ratelimit_sleep=1,
    )
    assert node.name == '127.0.0.1:8554'
