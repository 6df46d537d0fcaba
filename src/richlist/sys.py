import logging
import sys
import warnings

import orjson
from pydantic_core import to_jsonable_python

from richlist import env


def set_up_logging() -> None:
    root = logging.getLogger()
    handler = logging.StreamHandler(stream=sys.stdout)
    formatter: logging.Formatter

    if env.JSON_LOG:
        from pythonjsonlogger import jsonlogger

        formatter = jsonlogger.JsonFormatter(  # type: ignore[no-untyped-call]
            json_serializer=lambda *a, **kw: orjson.dumps(*a, default=to_jsonable_python).decode(),  # type: ignore[misc]
            reserved_attrs=set(jsonlogger.RESERVED_ATTRS) - {'message', 'name', 'levelname', 'created'} | {'taskName'},
        )
    else:
        formatter = logging.Formatter('%(levelname)-8s %(name)-20s %(message)s')

    handler.setFormatter(formatter)
    root.addHandler(handler)

    # NOTE: Nothing useful there
    logging.getLogger('tortoise').setLevel(logging.WARNING)
    logging.getLogger('apscheduler').setLevel(logging.WARNING)

    if env.DEBUG:
        logging.getLogger('richlist').setLevel(logging.DEBUG)


def set_up_process() -> None:
    """Set up interpreter process-wide state"""
    if env.TEST:
        return

    # NOTE: Format warnings as normal log messages
    logging.captureWarnings(True)
    warnings.formatwarning = lambda msg, *a, **kw: str(msg)
