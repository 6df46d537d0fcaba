import hashlib
import logging
import platform
from typing import TYPE_CHECKING

import sentry_sdk
import sentry_sdk.consts
from sentry_sdk.integrations.aiohttp import AioHttpIntegration
from sentry_sdk.integrations.atexit import AtexitIntegration
from sentry_sdk.integrations.logging import LoggingIntegration

from richlist import __version__
from richlist import env

if TYPE_CHECKING:
    from richlist.config import SentryConfig

_logger = logging.getLogger(__name__)


def get_environment(config: 'SentryConfig') -> str:
    if config.environment:
        return config.environment
    if env.DOCKER:
        return 'docker'
    if env.TEST:
        return 'tests'
    if env.CI:
        return 'gha'
    return 'local'


def init_sentry(config: 'SentryConfig', network: str) -> None:
    if not config.dsn:
        return
    _logger.info('Sentry is enabled: %s', config.dsn)

    if config.debug or env.DEBUG:
        level, event_level, attach_stacktrace = logging.DEBUG, logging.WARNING, True
    else:
        level, event_level, attach_stacktrace = logging.INFO, logging.ERROR, False

    integrations = [
        AioHttpIntegration(),
        LoggingIntegration(
            level=level,
            event_level=event_level,
        ),
        # NOTE: Suppresses `atexit` notification
        AtexitIntegration(lambda _, __: None),
    ]
    release = config.release or __version__
    environment = get_environment(config)
    server_name = config.server_name or platform.node()

    sentry_sdk.init(
        dsn=config.dsn,
        integrations=integrations,
        attach_stacktrace=attach_stacktrace,
        release=release,
        environment=environment,
        server_name=server_name,
        # NOTE: Rich list items are long; increase __repr__ length limit
        max_value_length=sentry_sdk.consts.DEFAULT_MAX_VALUE_LENGTH * 10,
    )

    tags = {
        'python': platform.python_version(),
        'os': f'{platform.system().lower()}-{platform.machine()}',
        'version': __version__,
        'network': network,
    }
    _logger.debug('Sentry tags: %s', ', '.join(f'{k}={v}' for k, v in tags.items()))
    for tag, value in tags.items():
        sentry_sdk.set_tag(f'richlist.{tag}', value)

    user_id = hashlib.sha256((network + environment + server_name).encode()).hexdigest()[:8]
    sentry_sdk.set_user({'id': user_id})
