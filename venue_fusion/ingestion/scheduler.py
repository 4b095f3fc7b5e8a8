"""
Update Scheduler Module
=======================

Triggers a full batch run on a calendar cadence (time of day plus an
interval in days). Before each scheduled run a cheap freshness check
skips the run when stored data is still recent enough. Manual runs
bypass the check.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any

from venue_fusion.core.enums import BatchState, UpdateType
from venue_fusion.ingestion.batch import BatchOrchestrator, BatchResult, process_entities_in_batches
from venue_fusion.ingestion.registry import SchedulerConfig, get_default_registry

if TYPE_CHECKING:
    from venue_fusion.db.repositories import VenueStore
    from venue_fusion.ingestion.registry import ConnectorRegistry
    from venue_fusion.ingestion.storage import RunArtifactStore

logger = logging.getLogger(__name__)

UpdateRunner = Callable[[UpdateType], Awaitable[BatchResult]]


def _local_now() -> datetime:
    return datetime.now().astimezone()


def calculate_next_run(
    now: datetime, hour: int, minute: int, interval_days: int
) -> datetime:
    """
    Next run time for a daily slot repeated every ``interval_days``.

    Today's slot is used if it is still ahead of ``now``; otherwise the
    slot ``interval_days`` later.
    """
    candidate = now.replace(hour=hour, minute=minute, second=0, microsecond=0)
    if candidate <= now:
        candidate += timedelta(days=interval_days)
    return candidate


@dataclass
class FreshnessReport:
    """Result of the pre-run freshness check."""

    is_fresh: bool
    total: int
    fresh: int
    overdue: int
    reason: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "is_fresh": self.is_fresh,
            "total": self.total,
            "fresh": self.fresh,
            "overdue": self.overdue,
            "reason": self.reason,
        }


class UpdateScheduler:
    """
    Calendar scheduler for batch updates.

    Args:
        runner: Coroutine function running one update of a given type
        config: Cadence and freshness settings
        update_times: Returns the last update time of every entity
        clock: Returns the current (timezone-aware) time
    """

    def __init__(
        self,
        runner: UpdateRunner,
        config: SchedulerConfig | None = None,
        update_times: Callable[[], list[datetime]] | None = None,
        clock: Callable[[], datetime] = _local_now,
    ) -> None:
        self.runner = runner
        self.config = config or SchedulerConfig()
        self._update_times = update_times
        self._clock = clock
        self._task: asyncio.Task[None] | None = None
        self._update_task: asyncio.Task[Any] | None = None
        self._orchestrator: BatchOrchestrator | None = None
        self._is_running = False
        # Bumped on every stop/restart; a loop from an older generation exits
        self._generation = 0
        self.next_run: datetime | None = None
        self.last_run: datetime | None = None
        self.last_error: str | None = None
        self.total_runs = 0
        self.successful_runs = 0
        self.cancelled_runs = 0
        self.failed_runs = 0
        self.skipped_runs = 0

    @property
    def is_running(self) -> bool:
        """True while an update is executing."""
        return self._is_running

    def calculate_next_run(self, now: datetime | None = None) -> datetime:
        """Next run time from the current config."""
        return calculate_next_run(
            now or self._clock(), self.config.hour, self.config.minute, self.config.interval_days
        )

    def attach_orchestrator(self, orchestrator: BatchOrchestrator) -> None:
        """Keep a handle on the running batch so stop() can cancel it."""
        self._orchestrator = orchestrator

    def check_freshness(self, now: datetime | None = None) -> FreshnessReport:
        """
        Decide whether stored data is still fresh.

        Fresh means at least ``fresh_ratio`` of entities were updated
        within ``fresh_days`` and none is older than ``overdue_days``.
        An empty entity set is never fresh.
        """
        now = now or self._clock()
        times = self._update_times() if self._update_times else []
        total = len(times)
        if total == 0:
            return FreshnessReport(False, 0, 0, 0, "no stored entities")

        fresh_cutoff = now - timedelta(days=self.config.fresh_days)
        overdue_cutoff = now - timedelta(days=self.config.overdue_days)
        fresh = sum(1 for t in times if t >= fresh_cutoff)
        overdue = sum(1 for t in times if t < overdue_cutoff)
        ratio = fresh / total

        is_fresh = ratio >= self.config.fresh_ratio and overdue == 0
        reason = (
            f"{fresh}/{total} entities updated within {self.config.fresh_days} days "
            f"({ratio:.0%}), {overdue} overdue"
        )
        return FreshnessReport(is_fresh, total, fresh, overdue, reason)

    async def execute_update(
        self, update_type: UpdateType | None = None, force: bool = False
    ) -> BatchResult | None:
        """
        Run one update unless one is already running or data is fresh.

        Args:
            update_type: Overrides the configured update type
            force: Skip the freshness check

        Returns:
            The BatchResult, or None when skipped or failed
        """
        if self._is_running:
            logger.warning("Update already running; skipping")
            return None

        update_type = UpdateType(update_type or self.config.update_type)
        self._is_running = True
        self._update_task = asyncio.current_task()
        try:
            before = self.check_freshness()
            if not force and before.is_fresh:
                self.skipped_runs += 1
                logger.info(f"Skipping scheduled update: {before.reason}")
                return None

            logger.info(f"Starting {update_type.value} update. Before: {before.reason}")
            self.total_runs += 1

            result = await self.runner(update_type)

            self.last_error = None
            if result.state == BatchState.CANCELLED:
                self.cancelled_runs += 1
                logger.warning(
                    f"{update_type.value} update cancelled after {result.processed} "
                    f"of {result.total} entities"
                )
                return result

            self.successful_runs += 1
            self.last_run = self._clock()
            after = self.check_freshness()
            logger.info(
                f"Finished {update_type.value} update: {result.success} succeeded, "
                f"{result.failed} failed. After: {after.reason}"
            )
            return result
        except Exception as e:
            self.failed_runs += 1
            self.last_error = str(e)
            logger.exception(f"{update_type.value} update failed: {e}")
            return None
        finally:
            self._is_running = False
            self._update_task = None
            self._orchestrator = None
            self.next_run = self.calculate_next_run()

    async def run_now(self) -> BatchResult | None:
        """Run a scheduled-style update immediately (freshness check applies)."""
        return await self.execute_update()

    async def run_manual_update(self, update_type: UpdateType | str | None = None) -> BatchResult | None:
        """Run an update immediately, bypassing the freshness check."""
        chosen = UpdateType(update_type) if update_type else None
        logger.info(f"Manual update requested ({(chosen or self.config.update_type).value})")
        return await self.execute_update(chosen, force=True)

    async def _loop(self, generation: int) -> None:
        while generation == self._generation:
            self.next_run = self.calculate_next_run()
            delay = max(0.0, (self.next_run - self._clock()).total_seconds())
            logger.info(f"Next update scheduled for {self.next_run.isoformat()}")
            await asyncio.sleep(delay)
            if generation != self._generation:
                break
            await self.execute_update()
        if self._task is None:
            self.next_run = None

    def _disarm(self) -> None:
        """
        Retire the current loop.

        A sleeping loop is cancelled. A loop that is running an update
        is left to finish it and exits on the generation check.
        """
        self._generation += 1
        task, self._task = self._task, None
        if task is not None and not task.done() and task is not self._update_task:
            task.cancel()

    def start(self) -> None:
        """Start the scheduling loop on the running event loop."""
        if not self.config.enabled:
            logger.info("Scheduler disabled; not starting")
            return
        if self._task is not None and not self._task.done():
            logger.warning("Scheduler already started")
            return
        self.next_run = self.calculate_next_run()
        self._task = asyncio.get_running_loop().create_task(self._loop(self._generation))
        logger.info(
            f"Scheduler started: {self.config.update_type.value} every "
            f"{self.config.interval_days} days at {self.config.schedule}"
        )

    def stop(self) -> None:
        """
        Stop scheduling and cancel any update in progress.

        The running batch is asked to cancel between chunks; its loop
        exits once the update returns.
        """
        if self._is_running and self._orchestrator is not None:
            self._orchestrator.cancel()
        self._disarm()
        self.next_run = None
        logger.info("Scheduler stopped")

    def restart(self) -> None:
        """Re-arm the loop with the current config, leaving a running update alone."""
        self._disarm()
        self.start()

    def update_config(self, **overrides: Any) -> SchedulerConfig:
        """
        Apply config overrides and recompute the next run.

        Returns:
            The new configuration
        """
        was_started = self._task is not None
        self.config = self.config.with_overrides(**overrides)
        self.next_run = self.calculate_next_run() if self.config.enabled else None
        logger.info(f"Scheduler config updated: {overrides}")
        if was_started:
            self.restart()
        return self.config

    async def serve_forever(self) -> None:
        """Start and wait on the scheduling loop (for CLI / worker use)."""
        self.start()
        # restart() swaps in a new loop task, so follow whichever is current
        while self._task is not None and not self._task.done():
            try:
                await self._task
            except asyncio.CancelledError:
                logger.info("Scheduler loop cancelled")

    def get_status(self) -> dict[str, Any]:
        """Current scheduler status."""
        return {
            "enabled": self.config.enabled,
            "update_type": self.config.update_type.value,
            "next_run": self.next_run.isoformat() if self.next_run else None,
            "is_running": self._is_running,
            "schedule": self.config.schedule,
            "interval_days": self.config.interval_days,
            "last_run": self.last_run.isoformat() if self.last_run else None,
            "last_error": self.last_error,
            "total_runs": self.total_runs,
            "successful_runs": self.successful_runs,
            "cancelled_runs": self.cancelled_runs,
            "failed_runs": self.failed_runs,
            "skipped_runs": self.skipped_runs,
        }


def build_scheduler(
    registry: ConnectorRegistry | None = None,
    store: VenueStore | None = None,
    artifact_store: RunArtifactStore | None = None,
    config: SchedulerConfig | None = None,
) -> UpdateScheduler:
    """
    Wire a scheduler to the batch pipeline, the database and the artifact store.

    Args:
        registry: Connector registry; defaults to the global one
        store: Persistence collaborator; defaults to the database store
        artifact_store: Snapshot destination; defaults to VENUE_DATA_DIR
        config: Scheduler config; defaults to the registry's (with env overrides)
    """
    from venue_fusion.db.repositories import VenueStore
    from venue_fusion.ingestion.storage import get_default_store

    registry = registry or get_default_registry()
    store = store or VenueStore()
    artifact_store = artifact_store or get_default_store(registry.global_config.data_dir)

    scheduler: UpdateScheduler

    async def runner(update_type: UpdateType) -> BatchResult:
        return await process_entities_in_batches(
            registry=registry,
            store=store,
            artifact_store=artifact_store,
            update_type=update_type,
            orchestrator_hook=scheduler.attach_orchestrator,
        )

    scheduler = UpdateScheduler(
        runner,
        config=config or registry.scheduler,
        update_times=store.list_update_times,
    )
    return scheduler
