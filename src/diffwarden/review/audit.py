"""Append-only JSON-lines log of review summaries."""

import asyncio
import json
from datetime import datetime, timezone
from pathlib import Path

import structlog

from .models import ReviewSummary

logger = structlog.get_logger(__name__)


class AuditLog:
    """One JSON record per review run."""

    def __init__(self, path: str | Path):
        self.path = Path(path)
        self._lock = asyncio.Lock()

    async def record(self, summary: ReviewSummary) -> None:
        entry = {"recorded_at": datetime.now(timezone.utc).isoformat(), **summary.to_dict()}
        line = json.dumps(entry, default=str)
        async with self._lock:
            try:
                await asyncio.to_thread(self._append, line)
            except OSError as e:
                logger.error("Failed to write audit record", path=str(self.path), error=str(e))

    def _append(self, line: str) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with self.path.open("a", encoding="utf-8") as handle:
            handle.write(line + "\n")

    def read(self) -> list[dict]:
        """All records, oldest first."""
        if not self.path.exists():
            return []
        with self.path.open(encoding="utf-8") as handle:
            return [json.loads(line) for line in handle if line.strip()]
