"""
Venue Pipeline Module
=====================

Runs the per-entity flow: query expansion, rate-limited fetching from
every selected connector, normalization, grouping, fusion and quality
scoring, then hands the accepted record to persistence.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Protocol

from venue_fusion.core.enums import ConnectorKind, NextAction, UpdateType
from venue_fusion.core.schema import MergedRecord, SourceRecord
from venue_fusion.core.scoring import QualityScorer
from venue_fusion.ingestion.connectors import BaseConnector, get_connector
from venue_fusion.ingestion.errors import EntityNotResolvedError, ErrorDecision, ErrorHandler
from venue_fusion.ingestion.fetcher import FetchExecutor
from venue_fusion.ingestion.fusion import FusionEngine, RejectedRecord
from venue_fusion.ingestion.grouping import SimilarityEngine, name_similarity
from venue_fusion.ingestion.normalizer import ResultNormalizer
from venue_fusion.ingestion.query_expander import QueryExpander
from venue_fusion.ingestion.rate_limiter import FixedWindowRateLimiter

if TYPE_CHECKING:
    from venue_fusion.ingestion.registry import ConnectorRegistry

logger = logging.getLogger(__name__)

CACHED_SOURCE = "cached"


class VenueStoreProtocol(Protocol):
    """Persistence operations the pipeline relies on."""

    def find_by_name(self, name: str) -> MergedRecord | None: ...

    def upsert(self, record: MergedRecord, lookup_name: str | None = None) -> MergedRecord: ...


@dataclass
class ConnectorOutcome:
    """What one connector contributed for one entity."""

    connector_id: str
    records: list[SourceRecord] = field(default_factory=list)
    queries_tried: list[str] = field(default_factory=list)
    invalid_count: int = 0
    error: str | None = None
    decision: ErrorDecision | None = None


@dataclass
class FusionReport:
    """Outcome of fusing one raw result set."""

    total: int = 0
    success: int = 0
    failed: int = 0
    merged: list[MergedRecord] = field(default_factory=list)
    rejected: list[RejectedRecord] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "total": self.total,
            "success": self.success,
            "failed": self.failed,
            "merged": len(self.merged),
            "rejected": len(self.rejected),
            "errors": list(self.errors),
        }


def cached_source_record(record: MergedRecord) -> SourceRecord:
    """Turn a persisted venue into a candidate observation."""
    fields = record.model_dump(
        include=set(SourceRecord.model_fields) - {"source", "confidence", "additional_info"}
    )
    return SourceRecord(
        **fields,
        source=CACHED_SOURCE,
        confidence=record.confidence,
        additional_info={"cached_at": record.updated_at.isoformat()},
    )


class VenuePipeline:
    """
    Fetch-and-fuse flow for a single venue name.

    Args:
        connectors: Connectors to query
        fetcher: FetchExecutor shared by all connectors
        store: Persistence collaborator; when None nothing is persisted
        normalizer: ResultNormalizer
        similarity: SimilarityEngine for grouping
        fusion: FusionEngine for merging
        expander: QueryExpander for query variants
    """

    def __init__(
        self,
        connectors: list[BaseConnector],
        fetcher: FetchExecutor | None = None,
        store: VenueStoreProtocol | None = None,
        normalizer: ResultNormalizer | None = None,
        similarity: SimilarityEngine | None = None,
        fusion: FusionEngine | None = None,
        expander: QueryExpander | None = None,
    ) -> None:
        self.connectors = connectors
        self.fetcher = fetcher or FetchExecutor()
        self.store = store
        self.normalizer = normalizer or ResultNormalizer()
        self.similarity = similarity or SimilarityEngine()
        self.fusion = fusion or FusionEngine()
        self.expander = expander or QueryExpander()

    @property
    def error_handler(self) -> ErrorHandler:
        return self.fetcher.error_handler

    @classmethod
    def from_registry(
        cls,
        registry: ConnectorRegistry,
        store: VenueStoreProtocol | None = None,
        update_type: UpdateType = UpdateType.FULL,
        max_retries: int | None = None,
        timeout: float | None = None,
        error_handler: ErrorHandler | None = None,
    ) -> VenuePipeline:
        """
        Build a pipeline from registry configuration.

        Args:
            registry: Loaded connector registry
            store: Persistence collaborator
            update_type: Selects which connector kinds are used
            max_retries: Attempts per fetch; defaults to the batch setting
            timeout: Per-request timeout; defaults to the global setting
            error_handler: Shared error handler
        """
        global_config = registry.global_config
        connectors: list[BaseConnector] = []
        for config in registry.list_enabled_connectors(update_type.connector_kinds()):
            connector = get_connector(config)
            if connector is None:
                logger.warning(f"Unknown connector type '{config.type}' for {config.name}")
                continue
            connectors.append(connector)

        fetcher = FetchExecutor(
            rate_limiter=FixedWindowRateLimiter(global_config.rate_limit_window_seconds),
            error_handler=error_handler or ErrorHandler(),
            timeout=timeout or global_config.request_timeout,
            max_retries=max_retries or registry.batch.max_retries,
            max_throttle_waits=global_config.max_throttle_waits,
        )
        scorer = QualityScorer(registry.quality)
        return cls(
            connectors=connectors,
            fetcher=fetcher,
            store=store,
            similarity=SimilarityEngine(threshold=registry.fusion.similarity_threshold),
            fusion=FusionEngine(
                source_weights=registry.source_weights(),
                confidence_threshold=registry.fusion.confidence_threshold,
                coordinate_delta_meters=registry.fusion.coordinate_delta_meters,
                scorer=scorer,
            ),
            expander=QueryExpander(keyword=global_config.query_keyword),
        )

    async def _search_connector(
        self, connector: BaseConnector, queries: list[str], entity_name: str
    ) -> ConnectorOutcome:
        """Try query variants in order until one yields valid records."""
        outcome = ConnectorOutcome(connector_id=connector.connector_id)
        for query in queries:
            outcome.queries_tried.append(query)
            result = await self.fetcher.fetch(connector, query, entity_name=entity_name)

            if not result.success:
                outcome.error = result.error
                outcome.decision = result.decision
                logger.info(
                    f"Giving up on {connector.connector_id} for '{entity_name}': "
                    f"{result.decision.next_action.value if result.decision else 'error'}"
                )
                break

            if not result.records:
                continue

            batch = self.normalizer.normalize_batch(
                result.records, connector.connector_id, connector.kind
            )
            outcome.invalid_count += batch.invalid_count
            if batch.records:
                outcome.records = batch.records
                break

        return outcome

    async def gather_candidates(self, entity_name: str) -> list[ConnectorOutcome]:
        """Query every connector concurrently for one entity."""
        queries = self.expander.expand(entity_name)
        return list(
            await asyncio.gather(
                *(self._search_connector(c, queries, entity_name) for c in self.connectors)
            )
        )

    async def process_entity(self, entity_name: str) -> MergedRecord:
        """
        Fetch, fuse and persist one venue.

        Args:
            entity_name: Canonical venue name

        Returns:
            The stored (or, without a store, the fused) record

        Raises:
            EntityNotResolvedError: No acceptable record could be produced
        """
        outcomes = await self.gather_candidates(entity_name)

        candidates: list[SourceRecord] = []
        use_cache = False
        for outcome in outcomes:
            candidates.extend(outcome.records)
            if outcome.decision and outcome.decision.next_action == NextAction.FALLBACK_TO_CACHED_DATA:
                use_cache = True

        if (use_cache or not candidates) and self.store is not None:
            cached = self.store.find_by_name(entity_name)
            if cached is not None:
                logger.info(f"Using cached record for '{entity_name}'")
                candidates.append(cached_source_record(cached))

        if not candidates:
            errors = [f"{o.connector_id}: {o.error}" for o in outcomes if o.error]
            detail = f" ({'; '.join(errors)})" if errors else ""
            raise EntityNotResolvedError(f"No candidates found for '{entity_name}'{detail}")

        groups = self.similarity.group(candidates)
        best = max(
            groups,
            key=lambda g: max(name_similarity(entity_name, r.name) for r in g.records),
        )
        merged = self.fusion.merge_group(best)

        reasons = self.fusion.rejection_reasons(merged)
        if reasons:
            logger.warning(f"Rejected fused record for '{entity_name}': {', '.join(reasons)}")
            raise EntityNotResolvedError(
                f"Fused record for '{entity_name}' rejected: {', '.join(reasons)}"
            )

        if self.store is None:
            return merged
        return self.store.upsert(merged, lookup_name=entity_name)

    def fuse_candidates(
        self,
        raw_records: list[dict[str, Any]],
        source: str,
        kind: ConnectorKind = ConnectorKind.API,
    ) -> FusionReport:
        """
        Normalize, group and fuse a raw result set without fetching.

        Args:
            raw_records: Raw dicts; a "source" key overrides ``source``
            source: Default connector id
            kind: Connector kind for default confidence

        Returns:
            FusionReport where success + failed == total
        """
        batch = self.normalizer.normalize_batch(raw_records, source, kind)
        groups = self.similarity.group(batch.records)
        outcome = self.fusion.fuse(groups)

        errors = [
            f"{r.raw.get('name') or '<unnamed>'}: {'; '.join(r.errors)}"
            for r in batch.results
            if not r.is_valid
        ]
        errors.extend(
            f"{rejected.record.name}: {', '.join(rejected.reasons)}" for rejected in outcome.rejected
        )
        return FusionReport(
            total=len(raw_records),
            success=batch.valid_count,
            failed=batch.invalid_count,
            merged=outcome.accepted,
            rejected=outcome.rejected,
            errors=errors,
        )

    async def aclose(self) -> None:
        """Close connector resources."""
        for connector in self.connectors:
            await connector.aclose()
