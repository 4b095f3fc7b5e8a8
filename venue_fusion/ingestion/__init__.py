"""
Venue Fusion Ingestion Framework
================================

This package provides the pipeline that collects venue facts from
several external sources and fuses them into one record per venue.

Pipeline Stages:
1. Expand - Turn a venue name into ordered search query variants
2. Fetch - Query connectors under rate limits, timeouts and retries
3. Normalize - Coerce raw results into typed source records
4. Group - Cluster records that describe the same venue
5. Fuse - Merge each group by source trust, completeness and detail
6. Persist - Upsert fused records and write a run snapshot
7. Schedule - Run batches on a calendar cadence when data goes stale
"""

from venue_fusion.ingestion.registry import (
    BatchConfig,
    ConnectorConfig,
    ConnectorRegistry,
    FusionConfig,
    RateLimitConfig,
    SchedulerConfig,
    get_default_registry,
)
from venue_fusion.ingestion.errors import (
    ErrorDecision,
    ErrorHandler,
    FatalRunError,
    FusionError,
    classify_error,
)
from venue_fusion.ingestion.rate_limiter import FixedWindowRateLimiter
from venue_fusion.ingestion.query_expander import QueryExpander, expand_queries
from venue_fusion.ingestion.fetcher import FetchExecutor, FetchResult
from venue_fusion.ingestion.normalizer import NormalizationResult, ResultNormalizer
from venue_fusion.ingestion.grouping import EntityGroup, SimilarityEngine
from venue_fusion.ingestion.fusion import FusionEngine, FusionOutcome
from venue_fusion.ingestion.storage import RunArtifactStore, get_default_store
from venue_fusion.ingestion.pipeline import FusionReport, VenuePipeline
from venue_fusion.ingestion.batch import (
    BatchOrchestrator,
    BatchResult,
    process_entities_in_batches,
)
from venue_fusion.ingestion.scheduler import UpdateScheduler, build_scheduler
from venue_fusion.ingestion.jobs import (
    JobResult,
    JobStatus,
    enqueue_fusion_batch,
    get_job_status,
    run_fusion_batch,
)

__all__ = [
    # Registry
    "BatchConfig",
    "ConnectorConfig",
    "ConnectorRegistry",
    "FusionConfig",
    "RateLimitConfig",
    "SchedulerConfig",
    "get_default_registry",
    # Errors
    "ErrorDecision",
    "ErrorHandler",
    "FatalRunError",
    "FusionError",
    "classify_error",
    # Fetching
    "FixedWindowRateLimiter",
    "QueryExpander",
    "expand_queries",
    "FetchExecutor",
    "FetchResult",
    # Normalize / group / fuse
    "NormalizationResult",
    "ResultNormalizer",
    "EntityGroup",
    "SimilarityEngine",
    "FusionEngine",
    "FusionOutcome",
    # Storage
    "RunArtifactStore",
    "get_default_store",
    # Orchestration
    "FusionReport",
    "VenuePipeline",
    "BatchOrchestrator",
    "BatchResult",
    "process_entities_in_batches",
    "UpdateScheduler",
    "build_scheduler",
    # Jobs
    "JobResult",
    "JobStatus",
    "enqueue_fusion_batch",
    "get_job_status",
    "run_fusion_batch",
]
