from __future__ import annotations

import errno
import logging
import os
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Literal
from uuid import uuid4

from structlog.contextvars import bind_contextvars, reset_contextvars

from video_feed.repositories.common import utc_now
from video_feed.repositories.video_repository import VideoRepository
from video_feed.services.youtube_search_client import (
    SourceAuthError,
    SourceNetworkError,
    SourceUpstreamError,
    YouTubeSearchClient,
    normalize_search_item,
)
from video_feed.telemetry import TelemetryClient, elapsed_ms

LOGGER = logging.getLogger("video_feed.ingestion")
DEFAULT_LOOKBACK_SECONDS = 3600

try:
    import fcntl
except ImportError:  # pragma: no cover - non-POSIX fallback
    fcntl = None

SchedulerState = Literal["idle", "fetching"]
CycleOutcome = Literal[
    "ok",
    "partial",
    "skipped",
    "auth_error",
    "upstream_error",
    "network_error",
    "error",
]


@dataclass(frozen=True)
class IngestionCycleSummary:
    cycle_id: str
    outcome: CycleOutcome
    since: datetime | None = None
    fetched: int = 0
    inserted: int = 0
    updated: int = 0
    failed: int = 0

    @property
    def saved(self) -> int:
        return self.inserted + self.updated


class IngestionScheduler:
    def __init__(
        self,
        source_client: YouTubeSearchClient,
        repository: VideoRepository,
        *,
        search_query: str,
        poll_interval_seconds: float,
        lookback_seconds: int = DEFAULT_LOOKBACK_SECONDS,
        clock: Callable[[], datetime] = utc_now,
        telemetry: TelemetryClient | None = None,
        lock_path: Path | None = None,
    ) -> None:
        self._source_client = source_client
        self._repository = repository
        self._search_query = search_query
        self._poll_interval_seconds = max(1.0, poll_interval_seconds)
        self._lookback = timedelta(seconds=max(1, lookback_seconds))
        self._clock = clock
        self._telemetry = telemetry if telemetry is not None else TelemetryClient.disabled()
        self._cycle_lock = threading.Lock()
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None
        self._lock_path = lock_path
        self._lock_file: Any | None = None
        self._lock_acquired = False

    @property
    def state(self) -> SchedulerState:
        return "fetching" if self._cycle_lock.locked() else "idle"

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.is_running:
            if self._stop_event.is_set():
                LOGGER.warning("ingestion start ignored; previous loop is still stopping")
            return

        if not self._try_acquire_process_lock():
            return

        LOGGER.info(
            "starting background video fetching interval_seconds=%s query=%s",
            self._poll_interval_seconds,
            self._search_query,
        )
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run_loop, name="video-feed-ingestion")
        self._thread.daemon = True
        self._thread.start()

    def stop(self, *, timeout_seconds: float = 3.0) -> None:
        self._stop_event.set()
        thread = self._thread
        if thread is not None:
            thread.join(timeout=timeout_seconds)
            if thread.is_alive():
                # The loop exits once its in-flight cycle returns; the lock stays held until then.
                LOGGER.warning(
                    "ingestion thread did not stop within %ss; keeping process lock",
                    timeout_seconds,
                )
                return
            self._thread = None
        self._release_process_lock()

    def run_cycle(self) -> IngestionCycleSummary:
        """Run one fetch -> normalize -> upsert pass.

        A cycle requested while another is still in flight is skipped, not queued.
        Errors never propagate: they end the cycle and are reported in the summary.
        """
        cycle_id = uuid4().hex
        if not self._cycle_lock.acquire(blocking=False):
            LOGGER.warning("ingestion cycle skipped; previous cycle still fetching")
            self._telemetry.emit("ingestion.cycle.skipped", cycle_id=cycle_id)
            return IngestionCycleSummary(cycle_id=cycle_id, outcome="skipped")

        cycle_tokens = bind_contextvars(ingestion_cycle_id=cycle_id)
        started_at = time.perf_counter()
        try:
            self._telemetry.emit("ingestion.cycle.start", cycle_id=cycle_id)
            try:
                summary = self._fetch_and_store(cycle_id)
            except Exception as exc:
                LOGGER.exception("ingestion cycle failed unexpectedly")
                self._telemetry.emit(
                    "ingestion.cycle.error",
                    cycle_id=cycle_id,
                    duration_ms=elapsed_ms(started_at),
                    error_type=type(exc).__name__,
                )
                return IngestionCycleSummary(cycle_id=cycle_id, outcome="error")

            self._telemetry.emit(
                "ingestion.cycle.finish",
                cycle_id=cycle_id,
                duration_ms=elapsed_ms(started_at),
                outcome=summary.outcome,
                fetched=summary.fetched,
                inserted=summary.inserted,
                updated=summary.updated,
                failed=summary.failed,
            )
            return summary
        finally:
            reset_contextvars(**cycle_tokens)
            self._cycle_lock.release()

    def _fetch_and_store(self, cycle_id: str) -> IngestionCycleSummary:
        since = self._clock() - self._lookback
        try:
            items = self._source_client.fetch_recent(self._search_query, since)
        except SourceAuthError as exc:
            LOGGER.error("youtube credentials rejected; no videos fetched: %s", exc)
            return IngestionCycleSummary(cycle_id=cycle_id, outcome="auth_error", since=since)
        except SourceUpstreamError as exc:
            LOGGER.warning(
                "youtube search failed status=%s error=%s payload=%s",
                exc.status_code,
                exc,
                exc.payload,
            )
            return IngestionCycleSummary(cycle_id=cycle_id, outcome="upstream_error", since=since)
        except SourceNetworkError as exc:
            LOGGER.warning("youtube search unreachable: %s", exc)
            return IngestionCycleSummary(cycle_id=cycle_id, outcome="network_error", since=since)

        inserted = 0
        updated = 0
        failed = 0
        for raw_item in items:
            try:
                video = normalize_search_item(raw_item)
                if self._repository.upsert(video):
                    inserted += 1
                else:
                    updated += 1
            except Exception:
                failed += 1
                LOGGER.warning(
                    "failed to save fetched video item=%r",
                    raw_item.get("id"),
                    exc_info=True,
                )

        LOGGER.info(
            "fetched %s videos, saved/updated %s videos (inserted=%s updated=%s failed=%s)",
            len(items),
            inserted + updated,
            inserted,
            updated,
            failed,
        )
        return IngestionCycleSummary(
            cycle_id=cycle_id,
            outcome="partial" if failed else "ok",
            since=since,
            fetched=len(items),
            inserted=inserted,
            updated=updated,
            failed=failed,
        )

    def _run_loop(self) -> None:
        next_tick = 0.0
        while not self._stop_event.is_set():
            now = time.monotonic()
            if now >= next_tick:
                self.run_cycle()
                next_tick = now + self._poll_interval_seconds

            self._stop_event.wait(max(0.0, next_tick - time.monotonic()))

    def _try_acquire_process_lock(self) -> bool:
        if self._lock_path is None:
            return True

        if fcntl is None:
            LOGGER.warning(
                "ingestion single-instance lock unavailable on this platform; starting scheduler"
            )
            return True

        lock_path = self._lock_path
        lock_file: Any | None = None
        try:
            lock_path.parent.mkdir(parents=True, exist_ok=True)
            lock_file = lock_path.open("a+", encoding="utf-8")
            fcntl.flock(lock_file.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
        except OSError as exc:
            if lock_file is not None:
                try:
                    lock_file.close()
                except OSError:
                    pass
            if exc.errno in (errno.EACCES, errno.EAGAIN):
                LOGGER.info(
                    "ingestion start skipped; lock held by another process path=%s",
                    lock_path,
                )
                return False
            LOGGER.warning(
                "ingestion lock acquisition failed path=%s; starting scheduler anyway",
                lock_path,
                exc_info=True,
            )
            return True

        try:
            lock_file.seek(0)
            lock_file.truncate()
            lock_file.write(f"{os.getpid()}\n")
            lock_file.flush()
        except OSError:
            LOGGER.debug(
                "ingestion lock file metadata write failed path=%s", lock_path, exc_info=True
            )

        self._lock_file = lock_file
        self._lock_acquired = True
        return True

    def _release_process_lock(self) -> None:
        lock_file = self._lock_file
        if lock_file is None:
            self._lock_acquired = False
            return

        try:
            if self._lock_acquired and fcntl is not None:
                fcntl.flock(lock_file.fileno(), fcntl.LOCK_UN)
        except OSError:
            LOGGER.debug("ingestion lock release failed path=%s", self._lock_path, exc_info=True)
        finally:
            try:
                lock_file.close()
            except OSError:
                pass
            self._lock_file = None
            self._lock_acquired = False
