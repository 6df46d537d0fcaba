from os import getenv
from pathlib import Path


def get_bool(key: str) -> bool:
    return (getenv(key) or '').lower() in ('1', 'y', 'yes', 't', 'true', 'on')


def set_test() -> None:
    global TEST
    TEST = True


CI: bool = get_bool('RICHLIST_CI')
DEBUG: bool = get_bool('RICHLIST_DEBUG')
DOCKER: bool = get_bool('RICHLIST_DOCKER')
JSON_LOG: bool = get_bool('RICHLIST_JSON_LOG')
TEST: bool = get_bool('RICHLIST_TEST')

if getenv('CI') == 'true':
    CI = True
if Path('/.dockerenv').exists():
    DOCKER = True
