"""Tests for request metrics and stage timings."""

from wfgen.core.metrics import RequestMetrics, StageTimings


class TestRequestMetrics:
    def test_queue_then_start_then_finish(self):
        metrics = RequestMetrics()

        metrics.record_queued()
        assert metrics.queued == 1

        metrics.record_started(streaming=True)
        assert metrics.queued == 0
        assert metrics.in_flight == 1

        metrics.record_finished(120.0, ok=True)
        summary = metrics.get_summary()

        assert summary["in_flight"] == 0
        assert summary["total_requests"] == 1
        assert summary["streaming_requests"] == 1
        assert summary["avg_latency_ms"] == 120.0
        assert summary["error_rate"] == 0.0

    def test_error_rate_counts_failures_not_cancellations(self):
        metrics = RequestMetrics()
        for ok, cancelled in [(True, False), (False, False), (False, True), (True, False)]:
            metrics.record_queued()
            metrics.record_started()
            metrics.record_finished(10.0, ok=ok, cancelled=cancelled)

        assert metrics.failed_requests == 1
        assert metrics.cancelled_requests == 1
        assert metrics.error_rate == 0.25

    def test_dequeued_request_leaves_queue(self):
        metrics = RequestMetrics()
        metrics.record_queued()
        metrics.record_dequeued()

        assert metrics.queued == 0
        assert metrics.total_requests == 0

    def test_empty_metrics(self):
        summary = RequestMetrics().get_summary()

        assert summary["avg_latency_ms"] == 0.0
        assert summary["error_rate"] == 0.0


class TestStageTimings:
    def test_repeated_stages_are_summed(self):
        timings = StageTimings()
        timings.record_stage("validate", 1.5)
        timings.record_stage("validate", 2.0)
        timings.record_stage("layout", 0.25)
        timings.finish()

        summary = timings.get_summary()

        assert summary["stages"] == {"validate": 3.5, "layout": 0.25}
        assert summary["total_ms"] >= 0
