"""Lightweight metrics collection for wfgen."""

import threading
import time
from dataclasses import dataclass, field
from typing import Any, Optional


@dataclass
class RequestMetrics:
    """Aggregated statistics for calls made by the AI request client."""

    total_requests: int = 0
    streaming_requests: int = 0
    batched_requests: int = 0
    failed_requests: int = 0
    cancelled_requests: int = 0
    cache_hits: int = 0
    in_flight: int = 0
    queued: int = 0
    total_latency_ms: float = 0.0
    max_latency_ms: float = 0.0
    _completed: int = 0
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    def record_queued(self) -> None:
        with self._lock:
            self.queued += 1

    def record_started(self, streaming: bool = False, batched: bool = False) -> None:
        """Move a request from the queue to in-flight."""
        with self._lock:
            self.queued = max(0, self.queued - 1)
            self.in_flight += 1
            self.total_requests += 1
            if streaming:
                self.streaming_requests += 1
            if batched:
                self.batched_requests += 1

    def record_dequeued(self) -> None:
        """A queued request left before it got a slot (e.g. it was cancelled)."""
        with self._lock:
            self.queued = max(0, self.queued - 1)

    def record_finished(self, latency_ms: float, ok: bool, cancelled: bool = False) -> None:
        """Record the end of an in-flight request.

        Args:
            latency_ms: Wall time from slot acquisition to completion
            ok: Whether the request produced a usable response
            cancelled: Whether the caller cancelled it
        """
        with self._lock:
            self.in_flight = max(0, self.in_flight - 1)
            self._completed += 1
            self.total_latency_ms += latency_ms
            self.max_latency_ms = max(self.max_latency_ms, latency_ms)
            if cancelled:
                self.cancelled_requests += 1
            elif not ok:
                self.failed_requests += 1

    def record_cache_hit(self) -> None:
        with self._lock:
            self.cache_hits += 1

    @property
    def average_latency_ms(self) -> float:
        if not self._completed:
            return 0.0
        return self.total_latency_ms / self._completed

    @property
    def error_rate(self) -> float:
        if not self._completed:
            return 0.0
        return self.failed_requests / self._completed

    def get_summary(self) -> dict[str, Any]:
        """Return a JSON-friendly snapshot."""
        with self._lock:
            return {
                "total_requests": self.total_requests,
                "streaming_requests": self.streaming_requests,
                "batched_requests": self.batched_requests,
                "failed_requests": self.failed_requests,
                "cancelled_requests": self.cancelled_requests,
                "cache_hits": self.cache_hits,
                "in_flight": self.in_flight,
                "queued": self.queued,
                "avg_latency_ms": round(self.average_latency_ms, 2),
                "max_latency_ms": round(self.max_latency_ms, 2),
                "error_rate": round(self.error_rate, 4),
            }


@dataclass
class StageTimings:
    """Per-stage durations of one generation request."""

    start_time: float = field(default_factory=time.perf_counter)
    end_time: Optional[float] = None
    stages: dict[str, float] = field(default_factory=dict)

    def record_stage(self, stage: str, duration_ms: float) -> None:
        """Accumulate a stage duration; stages that run twice are summed."""
        self.stages[stage] = round(self.stages.get(stage, 0.0) + duration_ms, 2)

    def finish(self) -> None:
        self.end_time = time.perf_counter()

    def get_summary(self) -> dict[str, Any]:
        end = self.end_time if self.end_time is not None else time.perf_counter()
        return {
            "total_ms": round((end - self.start_time) * 1000, 2),
            "stages": dict(self.stages),
        }
