"""Upload statistics with best-effort persistence."""

import asyncio
import os
import threading
from datetime import date, datetime
from pathlib import Path
from typing import Set

from loguru import logger

from ..models.storage import DailyStats, FileCategory, StatisticsSnapshot


class StatisticsTracker:
    """Cumulative and daily upload counters backed by a JSON file."""

    def __init__(self, stats_path: Path, persist: bool = True):
        self.stats_path = Path(stats_path)
        self.persist = persist
        self.stats = StatisticsSnapshot()
        self._pending: Set[asyncio.Task] = set()
        self._lock = threading.Lock()
        self._version = 0
        self._written = 0

    def load(self) -> None:
        if not self.stats_path.exists():
            self.stats = StatisticsSnapshot()
            return

        try:
            self.stats = StatisticsSnapshot.model_validate_json(self.stats_path.read_text(encoding="utf-8"))
        except (ValueError, OSError) as e:
            logger.error("Could not read statistics {}: {}", self.stats_path, e)
            self.stats = StatisticsSnapshot()

    def record(
        self,
        success: bool,
        category: FileCategory,
        size: int = 0,
        duration_ms: float = 0.0,
    ) -> None:
        """Count one upload attempt. Only successes add bytes and category totals."""
        today = date.today().isoformat()
        daily = self.stats.daily.setdefault(today, DailyStats())

        self.stats.total_uploads += 1
        self.stats.total_duration_ms += duration_ms
        daily.uploads += 1

        if success:
            self.stats.successful_uploads += 1
            self.stats.total_size += size
            daily.successes += 1
            daily.size += size
            totals = self.stats.by_category[category.plural]
            totals.count += 1
            totals.size += size
        else:
            self.stats.failed_uploads += 1
            daily.failures += 1

        self.stats.last_updated = datetime.now()
        self._schedule_save()

    def snapshot(self) -> StatisticsSnapshot:
        return self.stats.model_copy(deep=True)

    def _schedule_save(self) -> None:
        if not self.persist:
            return

        self._version += 1
        version = self._version
        payload = self.stats.model_dump_json(indent=2)
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self._write_logged(payload, version)
            return

        task = loop.create_task(asyncio.to_thread(self._write_logged, payload, version))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    def _write_logged(self, payload: str, version: int) -> None:
        # Saves may finish out of order; never replace a newer snapshot
        with self._lock:
            if version <= self._written:
                return
            try:
                self._write(payload)
                self._written = version
            except OSError as e:
                logger.error("Error saving statistics {}: {}", self.stats_path, e)

    def _write(self, payload: str) -> None:
        self.stats_path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.stats_path.with_name(f"{self.stats_path.name}.tmp")
        tmp_path.write_text(payload, encoding="utf-8")
        os.replace(tmp_path, self.stats_path)

    async def flush(self) -> None:
        """Wait for scheduled saves to finish."""
        if self._pending:
            await asyncio.gather(*list(self._pending))
