"""
Batch Orchestrator Module
=========================

Drives the venue pipeline over a large entity list: fixed-size chunks
processed in order, bounded concurrency within each chunk, delays
between sub-groups and chunks, progress telemetry and cooperative
cancellation between chunks.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy.exc import SQLAlchemyError

from venue_fusion.core.enums import BatchState, UpdateType
from venue_fusion.ingestion.errors import FatalRunError
from venue_fusion.ingestion.pipeline import VenuePipeline
from venue_fusion.ingestion.registry import BatchConfig, get_default_registry

if TYPE_CHECKING:
    from venue_fusion.db.repositories import VenueStore
    from venue_fusion.ingestion.registry import ConnectorRegistry
    from venue_fusion.ingestion.storage import RunArtifactStore

logger = logging.getLogger(__name__)


@dataclass
class BatchResult:
    """Outcome of one batch run."""

    total: int
    success: int = 0
    failed: int = 0
    duration: float = 0.0
    state: BatchState = BatchState.IDLE
    errors: list[dict[str, str]] = field(default_factory=list)
    records: list[Any] = field(default_factory=list)
    started_at: datetime | None = None
    completed_at: datetime | None = None
    error_statistics: dict[str, Any] = field(default_factory=dict)

    @property
    def processed(self) -> int:
        return self.success + self.failed

    @property
    def progress(self) -> dict[str, float | int]:
        """Processed, remaining and percentage complete."""
        percentage = self.processed / self.total * 100 if self.total else 100.0
        return {
            "processed": self.processed,
            "remaining": self.total - self.processed,
            "percentage": round(percentage, 2),
        }

    def to_summary(self, max_errors: int = 10) -> dict[str, Any]:
        """
        Structured run report with a truncated error sample.

        Args:
            max_errors: Maximum number of errors to include
        """
        return {
            "state": self.state.value,
            "success": self.success,
            "failed": self.failed,
            "total": self.total,
            "duration": round(self.duration, 3),
            "progress": self.progress,
            "errors": self.errors[:max_errors],
            "error_count": len(self.errors),
        }


ProgressCallback = Callable[[BatchResult, int, int], None]


class BatchOrchestrator:
    """
    Runs an async per-entity processor over many entities.

    State machine: idle -> running -> completed | cancelled. Per-entity
    failures are recorded and never abort the run.
    """

    def __init__(
        self,
        processor: Callable[[str], Awaitable[Any]],
        config: BatchConfig | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        on_progress: ProgressCallback | None = None,
    ) -> None:
        self.processor = processor
        self.config = config or BatchConfig()
        self._sleep = sleep
        self._on_progress = on_progress
        self._state = BatchState.IDLE
        self._cancel_requested = False

    @property
    def state(self) -> BatchState:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._state == BatchState.RUNNING

    def cancel(self) -> None:
        """Request cancellation; honoured before the next chunk starts."""
        if self._state == BatchState.RUNNING:
            logger.info("Batch cancellation requested")
            self._cancel_requested = True

    @staticmethod
    def chunk(items: list[str], size: int) -> list[list[str]]:
        """Split items into consecutive chunks of at most ``size``."""
        return [items[i : i + size] for i in range(0, len(items), size)]

    async def run(self, entities: list[str], config: BatchConfig | None = None) -> BatchResult:
        """
        Process entities in batches.

        Args:
            entities: Entity names, processed in order
            config: Overrides the orchestrator's config for this run

        Returns:
            BatchResult where success + failed == processed <= total
        """
        if self._state == BatchState.RUNNING:
            raise RuntimeError("Batch run already in progress")

        config = config or self.config
        self._state = BatchState.RUNNING
        self._cancel_requested = False
        started = time.monotonic()
        result = BatchResult(total=len(entities), started_at=datetime.now(UTC))
        chunks = self.chunk(list(entities), config.batch_size)

        logger.info(
            f"Starting batch run: {len(entities)} entities, {len(chunks)} batches "
            f"(size={config.batch_size}, concurrency={config.concurrency})"
        )

        try:
            for index, chunk in enumerate(chunks, start=1):
                if self._cancel_requested:
                    self._state = BatchState.CANCELLED
                    logger.warning(f"Batch run cancelled before batch {index}/{len(chunks)}")
                    break

                await self._run_chunk(chunk, config, result)
                self._report_progress(result, index, len(chunks), started)

                if index < len(chunks) and config.delay_between_batches > 0:
                    await self._sleep(config.delay_between_batches)
            else:
                self._state = BatchState.COMPLETED
        except BaseException:
            self._state = BatchState.CANCELLED
            raise
        finally:
            result.state = self._state
            result.duration = time.monotonic() - started
            result.completed_at = datetime.now(UTC)

        logger.info(
            f"Batch run {result.state.value}: {result.success} succeeded, "
            f"{result.failed} failed of {result.total} in {result.duration:.1f}s"
        )
        return result

    async def _run_chunk(self, chunk: list[str], config: BatchConfig, result: BatchResult) -> None:
        groups = self.chunk(chunk, config.concurrency)
        for position, group in enumerate(groups):
            outcomes = await asyncio.gather(
                *(self.processor(entity) for entity in group), return_exceptions=True
            )
            for entity, outcome in zip(group, outcomes):
                if isinstance(outcome, Exception):
                    result.failed += 1
                    result.errors.append(
                        {
                            "entity": entity,
                            "error": str(outcome),
                            "type": type(outcome).__name__,
                        }
                    )
                    logger.debug(f"Entity '{entity}' failed: {outcome}")
                elif isinstance(outcome, BaseException):
                    raise outcome
                else:
                    result.success += 1
                    if outcome is not None:
                        result.records.append(outcome)

            if position < len(groups) - 1 and config.retry_delay > 0:
                await self._sleep(config.retry_delay)

    def _report_progress(
        self, result: BatchResult, batch_index: int, total_batches: int, started: float
    ) -> None:
        progress = result.progress
        elapsed = time.monotonic() - started
        rate = elapsed / result.processed if result.processed else 0.0
        eta = rate * progress["remaining"]
        logger.info(
            f"Batch {batch_index}/{total_batches}: {progress['processed']}/{result.total} "
            f"({progress['percentage']:.1f}%), ~{eta:.0f}s remaining"
        )
        if self._on_progress is not None:
            self._on_progress(result, batch_index, total_batches)


async def process_entities_in_batches(
    config: BatchConfig | None = None,
    registry: ConnectorRegistry | None = None,
    store: VenueStore | None = None,
    artifact_store: RunArtifactStore | None = None,
    update_type: UpdateType = UpdateType.FULL,
    entities: list[str] | None = None,
    orchestrator_hook: Callable[[BatchOrchestrator], None] | None = None,
) -> BatchResult:
    """
    Run the full pipeline over every known entity.

    Args:
        config: Batch parameters; defaults to the registry's batch config
        registry: Connector registry; defaults to the global one
        store: Persistence collaborator; defaults to the database store
        artifact_store: Where to write the run snapshot; skipped when None
        update_type: Which connector kinds to use
        entities: Explicit entity names instead of loading from the store
        orchestrator_hook: Receives the orchestrator before the run starts
            (the scheduler uses it to keep a handle for cancellation)

    Returns:
        BatchResult for the run

    Raises:
        FatalRunError: Persistence unreachable or artifact not writable
    """
    from venue_fusion.db.repositories import VenueStore

    registry = registry or get_default_registry()
    config = config or registry.batch
    store = store or VenueStore()

    if entities is None:
        try:
            entities = store.list_names()
        except SQLAlchemyError as e:
            raise FatalRunError(f"Cannot load entities from persistence: {e}") from e

    pipeline = VenuePipeline.from_registry(
        registry,
        store=store,
        update_type=update_type,
        max_retries=config.max_retries,
        timeout=config.timeout,
    )
    orchestrator = BatchOrchestrator(pipeline.process_entity, config)
    if orchestrator_hook is not None:
        orchestrator_hook(orchestrator)

    try:
        result = await orchestrator.run(entities)
    finally:
        await pipeline.aclose()

    result.error_statistics = pipeline.error_handler.get_statistics()

    if artifact_store is not None and result.state == BatchState.COMPLETED:
        artifact_store.write(
            result.records,
            config={"update_type": update_type.value, **config.to_dict()},
        )
    return result
