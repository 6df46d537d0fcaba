import asyncio
import logging
from datetime import UTC
from datetime import datetime
from typing import Any

from apscheduler.events import EVENT_JOB_ERROR  # type: ignore[import-untyped]
from apscheduler.events import JobEvent  # type: ignore[import-untyped]
from apscheduler.job import Job  # type: ignore[import-untyped]
from apscheduler.schedulers.asyncio import AsyncIOScheduler  # type: ignore[import-untyped]
from apscheduler.triggers.cron import CronTrigger  # type: ignore[import-untyped]
from apscheduler.triggers.interval import IntervalTrigger  # type: ignore[import-untyped]

from richlist.config import JobsConfig
from richlist.engine import RichListEngine
from richlist.exceptions import ChainDiscontinuityError
from richlist.exceptions import FrameworkException

DEFAULT_CONFIG = {
    'apscheduler.jobstores.default.class': 'apscheduler.jobstores.memory:MemoryJobStore',
    'apscheduler.executors.default.class': 'apscheduler.executors.asyncio:AsyncIOExecutor',
    'apscheduler.timezone': 'UTC',
}

CRAWL_JOB = 'crawl'
CALCULATE_JOB = 'calculate'


async def crawl_job(engine: RichListEngine) -> None:
    # NOTE: Halted crawler requires operator intervention; stop the service
    if isinstance(engine.last_error, ChainDiscontinuityError):
        raise engine.last_error
    engine.resume()


async def calculate_job(engine: RichListEngine, queued_address_limit: int) -> None:
    await engine.calculate_next(queued_address_limit)


class SchedulerManager:
    """Triggers crawl and rebuild passes periodically; stops on the first job failure"""

    def __init__(
        self,
        jobs: JobsConfig,
        config: dict[str, Any] | None = None,
    ) -> None:
        self._logger = logging.getLogger(__name__)
        self._jobs = jobs
        self._scheduler = AsyncIOScheduler(config or DEFAULT_CONFIG)
        self._scheduler.add_listener(self._on_error, EVENT_JOB_ERROR)
        self._exception: BaseException | None = None
        self._exception_event: asyncio.Event = asyncio.Event()

    async def run(self, engine: RichListEngine, queued_address_limit: int) -> None:
        try:
            self._logger.info('Starting job scheduler')
            self._scheduler.start()
            self.add_crawl_job(engine)
            self.add_calculate_job(engine, queued_address_limit)

            await self._exception_event.wait()
            if self._exception is None:
                raise FrameworkException('Job has failed but exception is not set')
            raise self._exception
        except asyncio.CancelledError:
            pass
        finally:
            self._scheduler.shutdown()

    def add_crawl_job(self, engine: RichListEngine) -> Job:
        return self._scheduler.add_job(
            func=crawl_job,
            id=CRAWL_JOB,
            name=CRAWL_JOB,
            trigger=IntervalTrigger(seconds=self._jobs.crawl_interval),
            kwargs={'engine': engine},
            next_run_time=datetime.now(UTC),
        )

    def add_calculate_job(self, engine: RichListEngine, queued_address_limit: int) -> Job:
        trigger: CronTrigger | IntervalTrigger
        if self._jobs.calculate_crontab:
            trigger = CronTrigger.from_crontab(self._jobs.calculate_crontab)
        else:
            trigger = IntervalTrigger(seconds=self._jobs.calculate_interval)

        # NOTE: Rebuild passes must never overlap
        return self._scheduler.add_job(
            func=calculate_job,
            id=CALCULATE_JOB,
            name=CALCULATE_JOB,
            trigger=trigger,
            kwargs={'engine': engine, 'queued_address_limit': queued_address_limit},
            max_instances=1,
            coalesce=True,
        )

    def _on_error(self, event: JobEvent) -> None:
        self._exception = event.exception
        self._exception_event.set()
