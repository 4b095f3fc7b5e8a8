"""
Run Artifact Storage Module
===========================

Writes the JSON snapshot of fused venues produced by each successful
run, plus a timestamped backup copy.
"""

from __future__ import annotations

import json
import logging
import os
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from venue_fusion.core.schema import MergedRecord
from venue_fusion.ingestion.errors import FatalRunError

logger = logging.getLogger(__name__)

ARTIFACT_VERSION = "1.0.0"
ARTIFACT_SOURCE = "venue_fusion"


class RunArtifactStore:
    """
    Stores run snapshots in a data directory.

    Layout:
        {data_dir}/venues.json
        {data_dir}/backups/venues_backup_{timestamp}.json
    """

    def __init__(self, data_dir: Path | str, filename: str = "venues.json") -> None:
        """
        Initialize the store.

        Args:
            data_dir: Directory for the snapshot and its backups
            filename: Snapshot file name
        """
        self.data_dir = Path(data_dir).expanduser()
        self.filename = filename

    @property
    def snapshot_path(self) -> Path:
        return self.data_dir / self.filename

    @property
    def backup_dir(self) -> Path:
        return self.data_dir / "backups"

    @staticmethod
    def build_payload(
        records: list[MergedRecord],
        config: dict[str, Any] | None = None,
        now: datetime | None = None,
    ) -> dict[str, Any]:
        """Assemble the snapshot document."""
        now = now or datetime.now(UTC)
        return {
            "metadata": {
                "totalCount": len(records),
                "lastUpdated": now.isoformat(),
                "source": ARTIFACT_SOURCE,
                "version": ARTIFACT_VERSION,
                "config": config or {},
            },
            "records": [r.model_dump(mode="json") for r in records],
        }

    def write(
        self,
        records: list[MergedRecord],
        config: dict[str, Any] | None = None,
        now: datetime | None = None,
    ) -> Path:
        """
        Write the snapshot and a timestamped backup.

        Args:
            records: Fused records from the run
            config: Run configuration recorded in metadata
            now: Timestamp for metadata and the backup name

        Returns:
            Path to the snapshot file

        Raises:
            FatalRunError: If the data directory cannot be written
        """
        now = now or datetime.now(UTC)
        payload = self.build_payload(records, config, now)
        text = json.dumps(payload, ensure_ascii=False, indent=2)
        stamp = now.isoformat().replace(":", "-").replace(".", "-").replace("+", "_")
        backup_path = self.backup_dir / f"{Path(self.filename).stem}_backup_{stamp}.json"

        try:
            self.backup_dir.mkdir(parents=True, exist_ok=True)
            tmp_path = self.snapshot_path.with_suffix(".json.tmp")
            tmp_path.write_text(text, encoding="utf-8")
            os.replace(tmp_path, self.snapshot_path)
            backup_path.write_text(text, encoding="utf-8")
        except OSError as e:
            raise FatalRunError(f"Cannot write run artifact to {self.data_dir}: {e}") from e

        logger.info(f"Wrote {len(records)} records to {self.snapshot_path}")
        return self.snapshot_path

    def read(self) -> dict[str, Any] | None:
        """Load the current snapshot, or None if none exists."""
        if not self.snapshot_path.exists():
            return None
        with open(self.snapshot_path, encoding="utf-8") as f:
            return json.load(f)

    def list_backups(self) -> list[Path]:
        """Backup files, oldest first."""
        if not self.backup_dir.exists():
            return []
        return sorted(self.backup_dir.glob("*_backup_*.json"))

    def prune_backups(self, keep: int = 10) -> int:
        """
        Delete all but the newest ``keep`` backups.

        Returns:
            Number of backups removed
        """
        backups = self.list_backups()
        stale = backups[: max(0, len(backups) - keep)]
        for path in stale:
            path.unlink()
        return len(stale)


def get_default_store(data_dir: Path | str | None = None) -> RunArtifactStore:
    """
    Get the default artifact store.

    VENUE_DATA_DIR takes precedence over ``data_dir``; both fall back
    to ~/.venue_fusion/data.
    """
    return RunArtifactStore(
        os.environ.get("VENUE_DATA_DIR") or data_dir or "~/.venue_fusion/data"
    )
