"""Scheduler runtime for marketplace reconciliation sweeps."""

from __future__ import annotations

import asyncio
import inspect
import time
from importlib import import_module
from pathlib import Path
from typing import Any, Awaitable, Callable

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from loguru import logger
from zoneinfo import ZoneInfo

from surplus_api.observability.scheduler import get_scheduler_store

from .config import JobDefinition, ScheduleConfig, load_job_definitions

SessionFactory = Callable[[], Any]
JobRunner = Callable[[], Awaitable[Any]]
JobCallable = Callable[..., Awaitable[dict[str, Any] | None]]


def import_task(path: str) -> JobCallable:
    """Resolve ``package.module.function`` to the async job it names."""

    module_path, _, name = path.rpartition(".")
    if not module_path or not name:
        raise ValueError(f"Task path must be dotted: {path!r}")
    target = getattr(import_module(module_path), name, None)
    if target is None:
        raise AttributeError(f"{module_path} has no job named {name}")
    if not inspect.iscoroutinefunction(target):
        raise TypeError(f"Job {path} is not a coroutine function")
    return target


def retry_delay(job: JobDefinition, failed_attempt: int) -> float:
    """Exponential backoff for the attempt after ``failed_attempt``, capped by the job."""

    delay = job.base_backoff_seconds * job.backoff_multiplier ** (failed_attempt - 1)
    if job.max_backoff_seconds:
        delay = min(delay, job.max_backoff_seconds)
    return max(delay, 0.0)


class MarketplaceJobScheduler:
    """Own the APScheduler instance that drives offer expiry, no-show sweeps, payouts and reconciliation.

    Every job is wrapped so that retries and outcomes are reported to the
    scheduler observability store, whether it fires from its cron trigger or
    is triggered on demand through :meth:`run_job`.
    """

    def __init__(self, *, session_factory: SessionFactory, config_path: Path) -> None:
        self._session_factory = session_factory
        self._config_path = config_path
        self._config: ScheduleConfig | None = None
        self._scheduler: AsyncIOScheduler | None = None
        self._runners: dict[str, JobRunner] = {}
        self._store = get_scheduler_store()

    @property
    def is_running(self) -> bool:
        return self._scheduler is not None

    def load(self) -> ScheduleConfig:
        """Read the schedule file and bind a runner to every job, enabled or not."""

        config = load_job_definitions(self._config_path)
        self._runners = {job.id: self._wrap_callable(import_task(job.task), job) for job in config.jobs}
        self._config = config
        return config

    def start(self) -> None:
        if self._scheduler is not None:
            return
        config = self.load()
        zone = ZoneInfo(config.timezone)
        scheduler = AsyncIOScheduler(timezone=zone)

        registered = 0
        for job in config.jobs:
            if not job.enabled:
                logger.info("Marketplace job disabled in schedule", job_id=job.id)
                continue
            scheduler.add_job(
                self._runners[job.id],
                trigger=CronTrigger.from_crontab(job.cron, timezone=zone),
                id=job.id,
                replace_existing=True,
                max_instances=job.max_instances,
                coalesce=True,
            )
            registered += 1
            logger.info("Marketplace job registered", job_id=job.id, task=job.task, cron=job.cron)

        scheduler.start()
        self._scheduler = scheduler
        logger.info("Marketplace job scheduler started", jobs=registered, timezone=config.timezone)

    async def stop(self) -> None:
        scheduler, self._scheduler = self._scheduler, None
        if scheduler is None:
            return
        outcome = scheduler.shutdown(wait=False)
        if inspect.isawaitable(outcome):
            await outcome
        logger.info("Marketplace job scheduler stopped")

    async def run_job(self, job_id: str) -> Any:
        """Run one configured job now, with the same retry and metrics wrapping as the cron path."""

        if not self._runners:
            self.load()
        try:
            runner = self._runners[job_id]
        except KeyError:
            raise KeyError(f"Unknown job {job_id}") from None
        return await runner()

    def _wrap_callable(self, func: JobCallable, job: JobDefinition) -> JobRunner:
        async def run_with_retries() -> Any:
            self._store.record_dispatch(job.id, job.task)
            started = time.perf_counter()
            attempt = 0
            while True:
                attempt += 1
                try:
                    summary = await func(session_factory=self._session_factory, **job.kwargs)
                except Exception as exc:
                    error = f"{type(exc).__name__}: {exc}"
                    self._store.record_attempt_failure(job.id, job.task, attempts=attempt, error=error)
                    if attempt < job.max_attempts:
                        await self._pause_before_retry(job, attempt)
                        continue
                    self._store.record_run_failure(
                        job.id,
                        job.task,
                        runtime_seconds=time.perf_counter() - started,
                        attempts=attempt,
                        error=error,
                    )
                    logger.exception("Marketplace job exhausted its attempts", job_id=job.id, attempts=attempt)
                    return None

                elapsed = time.perf_counter() - started
                self._store.record_success(
                    job.id,
                    job.task,
                    runtime_seconds=elapsed,
                    attempts=attempt,
                    summary=summary if isinstance(summary, dict) else None,
                )
                logger.info(
                    "Marketplace job finished",
                    job_id=job.id,
                    attempts=attempt,
                    runtime_seconds=round(elapsed, 3),
                    summary=summary,
                )
                return summary

        run_with_retries.__name__ = f"run_{job.id}"
        return run_with_retries

    async def _pause_before_retry(self, job: JobDefinition, failed_attempt: int) -> None:
        delay = retry_delay(job, failed_attempt)
        self._store.record_retry(job.id, job.task, attempts=failed_attempt + 1)
        logger.warning(
            "Marketplace job attempt failed; retrying",
            job_id=job.id,
            next_attempt=failed_attempt + 1,
            delay_seconds=delay,
        )
        if delay:
            await asyncio.sleep(delay)

    def health(self) -> dict[str, object]:
        """Configured jobs joined with their latest run metrics."""

        snapshot = self._store.snapshot()
        configured = self._config.jobs if self._config else []
        return {
            "running": self.is_running,
            "configured_jobs": len(configured),
            "totals": snapshot.totals,
            "jobs": [
                {
                    "id": job.id,
                    "task": job.task,
                    "cron": job.cron,
                    "enabled": job.enabled,
                    "max_attempts": job.max_attempts,
                    "metrics": snapshot.jobs[job.id].as_dict() if job.id in snapshot.jobs else None,
                }
                for job in configured
            ],
        }


__all__ = ["MarketplaceJobScheduler", "import_task", "retry_delay"]
