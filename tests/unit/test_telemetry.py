from __future__ import annotations

import threading
import unittest

from tabq.observability import telemetry
from tabq.observability.telemetry import (
    counter,
    counters,
    get_counter,
    get_latency_stats,
    reset_counters,
    reset_latencies,
    time_block,
)


class TelemetryTests(unittest.TestCase):
    def setUp(self):
        reset_latencies()
        reset_counters()

    def test_latency_is_stored_under_ms_name(self):
        with time_block("pipeline.remote.latency"):
            pass

        self.assertEqual(get_latency_stats("pipeline.remote.latency")["count"], 1)
        self.assertEqual(get_latency_stats("pipeline.remote.latency_ms")["count"], 1)

    def test_block_that_raises_is_still_timed(self):
        with self.assertRaises(RuntimeError):
            with time_block("storage.write"):
                raise RuntimeError("boom")

        self.assertEqual(get_latency_stats("storage.write")["count"], 1)

    def test_samples_are_capped(self):
        original = telemetry.MAX_LATENCY_SAMPLES
        telemetry.MAX_LATENCY_SAMPLES = 3
        try:
            for _ in range(5):
                with time_block("capped"):
                    pass
        finally:
            telemetry.MAX_LATENCY_SAMPLES = original

        self.assertEqual(get_latency_stats("capped")["count"], 3)

    def test_counters_by_prefix(self):
        counter("reconciler.created")
        counter("reconciler.removed", 2)
        counter("sync.corrections")

        self.assertEqual(counters("reconciler."), {"reconciler.created": 1, "reconciler.removed": 2})
        self.assertEqual(len(counters()), 3)

    def test_counter_is_thread_safe(self):
        def bump():
            for _ in range(1000):
                counter("storage.deferred")

        threads = [threading.Thread(target=bump) for _ in range(4)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        self.assertEqual(get_counter("storage.deferred"), 4000)

    def test_unknown_metric_is_empty(self):
        self.assertEqual(get_latency_stats("never.recorded")["count"], 0)


if __name__ == "__main__":
    unittest.main()
