"""
Background Jobs Module
======================

Defines arq tasks for running fusion batches outside the request path.
Uses Redis as the job queue backend.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any
from uuid import uuid4

from arq import create_pool
from arq.connections import RedisSettings

from venue_fusion.core.enums import BatchState, UpdateType
from venue_fusion.ingestion.batch import process_entities_in_batches
from venue_fusion.ingestion.errors import FusionError
from venue_fusion.ingestion.registry import get_default_registry
from venue_fusion.ingestion.storage import get_default_store

logger = logging.getLogger(__name__)


class JobStatus(str, Enum):
    """Status of a fusion job."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"


@dataclass
class JobResult:
    """Result of a fusion job."""

    job_id: str
    update_type: UpdateType
    status: JobStatus
    started_at: datetime | None = None
    completed_at: datetime | None = None
    summary: dict[str, Any] = field(default_factory=dict)
    errors: list[str] = field(default_factory=list)
    duration_seconds: float | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "job_id": self.job_id,
            "update_type": self.update_type.value,
            "status": self.status.value,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "summary": self.summary,
            "errors": self.errors,
            "duration_seconds": self.duration_seconds,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> JobResult:
        return cls(
            job_id=data["job_id"],
            update_type=UpdateType(data["update_type"]),
            status=JobStatus(data["status"]),
            started_at=datetime.fromisoformat(data["started_at"]) if data["started_at"] else None,
            completed_at=(
                datetime.fromisoformat(data["completed_at"]) if data["completed_at"] else None
            ),
            summary=data.get("summary", {}),
            errors=data.get("errors", []),
            duration_seconds=data.get("duration_seconds"),
        )


def get_redis_settings() -> RedisSettings:
    """Get Redis connection settings from environment."""
    return RedisSettings(
        host=os.environ.get("REDIS_HOST", "localhost"),
        port=int(os.environ.get("REDIS_PORT", "6379")),
        database=int(os.environ.get("REDIS_DB", "0")),
        password=os.environ.get("REDIS_PASSWORD") or None,
    )


async def run_fusion_batch(
    ctx: dict[str, Any],
    update_type: str = UpdateType.FULL.value,
    entities: list[str] | None = None,
    batch_overrides: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """
    Fusion batch task.

    Loads configuration, runs every entity (or the given ones) through
    the pipeline, writes the run artifact and reports a summary.

    Args:
        ctx: arq context (contains Redis connection)
        update_type: full, structured or scraped
        entities: Optional explicit entity names
        batch_overrides: Optional BatchConfig field overrides

    Returns:
        JobResult as dictionary
    """
    job_id = ctx.get("job_id", str(uuid4()))
    result = JobResult(
        job_id=job_id,
        update_type=UpdateType(update_type),
        status=JobStatus.RUNNING,
        started_at=datetime.now(UTC),
    )

    try:
        registry = get_default_registry()
        config = registry.batch.with_overrides(**(batch_overrides or {}))
        batch_result = await process_entities_in_batches(
            config=config,
            registry=registry,
            artifact_store=get_default_store(registry.global_config.data_dir),
            update_type=result.update_type,
            entities=entities,
        )
        result.summary = batch_result.to_summary()
        result.status = (
            JobStatus.COMPLETED
            if batch_result.state == BatchState.COMPLETED
            else JobStatus.CANCELLED
        )
        logger.info(f"Job {job_id} finished: {result.summary}")

    except (FusionError, ValueError) as e:
        result.status = JobStatus.FAILED
        result.errors.append(str(e))
        logger.error(f"Job {job_id} failed: {e}")

    finally:
        result.completed_at = datetime.now(UTC)
        if result.started_at:
            result.duration_seconds = (result.completed_at - result.started_at).total_seconds()

    return result.to_dict()


async def run_fusion_batch_sync(
    update_type: str = UpdateType.FULL.value,
    entities: list[str] | None = None,
    batch_overrides: dict[str, Any] | None = None,
) -> JobResult:
    """
    Run a fusion batch in-process (without arq).

    Useful for CLI commands with --sync flag.
    """
    ctx: dict[str, Any] = {"job_id": str(uuid4())}
    return JobResult.from_dict(await run_fusion_batch(ctx, update_type, entities, batch_overrides))


async def enqueue_fusion_batch(
    update_type: str = UpdateType.FULL.value,
    entities: list[str] | None = None,
    batch_overrides: dict[str, Any] | None = None,
) -> str:
    """
    Enqueue a fusion batch for async processing.

    Returns:
        Job ID
    """
    redis = await create_pool(get_redis_settings())
    job = await redis.enqueue_job("run_fusion_batch", update_type, entities, batch_overrides)
    await redis.close()
    if job is None:
        raise RuntimeError("Job was not enqueued (duplicate job id)")
    return job.job_id


async def get_job_status(job_id: str) -> dict[str, Any] | None:
    """
    Get the status of a fusion job.

    Args:
        job_id: Job ID to look up

    Returns:
        Job info dict, or None if not found
    """
    from arq.jobs import Job, JobStatus as ArqJobStatus

    redis = await create_pool(get_redis_settings())
    try:
        job = Job(job_id, redis)
        status = await job.status()
        if status == ArqJobStatus.not_found:
            return None
        result = await job.result(timeout=0) if status == ArqJobStatus.complete else None
        return {"job_id": job_id, "status": status.value, "result": result}
    finally:
        await redis.close()


class WorkerSettings:
    """arq worker settings."""

    functions = [run_fusion_batch]
    redis_settings = get_redis_settings()
    max_jobs = 2
    job_timeout = 6 * 3600
    keep_result = 86400  # 24 hours
