"""Tests for the batch orchestrator."""

import asyncio
import tempfile
from pathlib import Path

import pytest

from venue_fusion.core.enums import BatchState, ConnectorKind
from venue_fusion.core.schema import MergedRecord
from venue_fusion.ingestion.batch import BatchOrchestrator, BatchResult, process_entities_in_batches
from venue_fusion.ingestion.registry import BatchConfig, ConnectorConfig, ConnectorRegistry
from venue_fusion.ingestion.storage import RunArtifactStore


class SleepRecorder:
    """Records requested delays instead of sleeping."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


class MemoryStore:
    """In-memory store exposing the calls the batch runner makes."""

    def __init__(self, names: list[str] | None = None) -> None:
        self.names = names or []
        self.records: dict[str, MergedRecord] = {}

    def list_names(self) -> list[str]:
        return list(self.names)

    def find_by_name(self, name: str) -> MergedRecord | None:
        return self.records.get(name)

    def upsert(self, record: MergedRecord, lookup_name: str | None = None) -> MergedRecord:
        self.records[record.name] = record
        return record


def _config(**kwargs) -> BatchConfig:
    defaults = {"batch_size": 2, "concurrency": 2, "delay_between_batches": 0, "retry_delay": 0}
    defaults.update(kwargs)
    return BatchConfig(**defaults)


async def _processor(entity: str) -> str:
    if entity.startswith("bad"):
        raise ValueError(f"cannot resolve {entity}")
    return entity.upper()


class TestBatchOrchestrator:
    """Tests for BatchOrchestrator."""

    def test_chunk(self) -> None:
        assert BatchOrchestrator.chunk(["a", "b", "c", "d", "e"], 2) == [["a", "b"], ["c", "d"], ["e"]]
        assert BatchOrchestrator.chunk([], 3) == []

    @pytest.mark.asyncio
    async def test_counts_conserved(self) -> None:
        """Test every entity ends up as exactly one success or failure."""
        entities = ["a", "bad1", "b", "c", "bad2", "d", "e"]
        orchestrator = BatchOrchestrator(_processor, _config(batch_size=3))

        result = await orchestrator.run(entities)

        assert result.state == BatchState.COMPLETED
        assert orchestrator.state == BatchState.COMPLETED
        assert result.total == 7
        assert result.success == 5
        assert result.failed == 2
        assert result.success + result.failed == result.total
        assert result.records == ["A", "B", "C", "D", "E"]
        assert [e["entity"] for e in result.errors] == ["bad1", "bad2"]
        assert result.errors[0]["type"] == "ValueError"
        assert result.progress == {"processed": 7, "remaining": 0, "percentage": 100.0}

    @pytest.mark.asyncio
    async def test_empty_run(self) -> None:
        result = await BatchOrchestrator(_processor, _config()).run([])
        assert result.state == BatchState.COMPLETED
        assert result.total == 0
        assert result.progress["percentage"] == 100.0

    @pytest.mark.asyncio
    async def test_delays(self) -> None:
        """Test delays between sub-groups and between batches."""
        sleep = SleepRecorder()
        orchestrator = BatchOrchestrator(
            _processor,
            _config(concurrency=1, delay_between_batches=1.0, retry_delay=0.5),
            sleep=sleep,
        )

        await orchestrator.run(["a", "b", "c", "d", "e"])

        assert sleep.delays == [0.5, 1.0, 0.5, 1.0]

    @pytest.mark.asyncio
    async def test_concurrency_bound(self) -> None:
        active = 0
        peak = 0

        async def slow(entity: str) -> str:
            nonlocal active, peak
            active += 1
            peak = max(peak, active)
            await asyncio.sleep(0)
            active -= 1
            return entity

        await BatchOrchestrator(slow, _config(batch_size=6, concurrency=2)).run(list("abcdef"))
        assert peak == 2

    @pytest.mark.asyncio
    async def test_cancel_between_batches(self) -> None:
        """Test cancellation stops before the next batch starts."""
        orchestrator: BatchOrchestrator

        async def cancelling(entity: str) -> str:
            if entity == "a":
                orchestrator.cancel()
            return entity

        orchestrator = BatchOrchestrator(cancelling, _config())
        result = await orchestrator.run(list("abcdef"))

        assert result.state == BatchState.CANCELLED
        assert result.processed == 2
        assert result.progress["remaining"] == 4

    @pytest.mark.asyncio
    async def test_rejects_concurrent_run(self) -> None:
        gate = asyncio.Event()

        async def waiting(entity: str) -> str:
            await gate.wait()
            return entity

        orchestrator = BatchOrchestrator(waiting, _config())
        task = asyncio.create_task(orchestrator.run(["a"]))
        await asyncio.sleep(0)

        assert orchestrator.is_running
        with pytest.raises(RuntimeError):
            await orchestrator.run(["b"])

        gate.set()
        result = await task
        assert result.success == 1
        assert not orchestrator.is_running

    @pytest.mark.asyncio
    async def test_progress_callback(self) -> None:
        calls: list[tuple[int, int, int]] = []

        def on_progress(result: BatchResult, index: int, total: int) -> None:
            calls.append((result.processed, index, total))

        await BatchOrchestrator(_processor, _config(), on_progress=on_progress).run(list("abcde"))
        assert calls == [(2, 1, 3), (4, 2, 3), (5, 3, 3)]

    def test_summary_truncates_errors(self) -> None:
        result = BatchResult(total=20, failed=20, state=BatchState.COMPLETED)
        result.errors = [{"entity": str(i), "error": "x", "type": "ValueError"} for i in range(20)]
        summary = result.to_summary(max_errors=5)
        assert len(summary["errors"]) == 5
        assert summary["error_count"] == 20
        assert summary["state"] == "completed"


class TestProcessEntitiesInBatches:
    """Tests for the end-to-end batch entry point."""

    @pytest.fixture
    def registry(self) -> ConnectorRegistry:
        registry = ConnectorRegistry()
        registry.add_connector(
            ConnectorConfig(name="seoul_opendata", type="static", kind=ConnectorKind.API)
        )
        return registry

    @pytest.mark.asyncio
    async def test_run_writes_artifact(self, registry: ConnectorRegistry) -> None:
        store = MemoryStore(["강남 피트니스 센터", "역삼 크로스핏", "없는 체육관"])
        with tempfile.TemporaryDirectory() as tmpdir:
            artifacts = RunArtifactStore(Path(tmpdir))

            result = await process_entities_in_batches(
                config=_config(),
                registry=registry,
                store=store,
                artifact_store=artifacts,
            )

            assert result.state == BatchState.COMPLETED
            assert result.success == 2
            assert result.failed == 1
            assert result.errors[0]["type"] == "EntityNotResolvedError"
            assert set(store.records) == {"강남 피트니스 센터", "역삼 크로스핏"}

            payload = artifacts.read()
            assert payload is not None
            assert payload["metadata"]["totalCount"] == 2
            assert payload["metadata"]["config"]["update_type"] == "full"

    @pytest.mark.asyncio
    async def test_explicit_entities(self, registry: ConnectorRegistry) -> None:
        store = MemoryStore(["ignored"])
        hooked: list[BatchOrchestrator] = []

        result = await process_entities_in_batches(
            config=_config(),
            registry=registry,
            store=store,
            entities=["마포 요가 스튜디오"],
            orchestrator_hook=hooked.append,
        )

        assert result.success == 1
        assert len(hooked) == 1
        assert "total_errors" in result.error_statistics
