"""
Unit tests for PublishMetrics.

Tests cover:
- flush(): CloudWatch put_metric_data with namespace, names, Count unit
- flush(): counts reset after each flush; nothing sent when idle
- flush(): CloudWatch failure is non-fatal
- record(): safe from many threads
"""

import os
import sys
import threading
from unittest.mock import patch

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "../../../src"))


class TestPublishMetrics:
    """Test counting and flushing."""

    def setup_method(self) -> None:
        with patch("boto3.client"):
            from cdr_amqp.metrics import PublishMetrics
            self.metrics = PublishMetrics(namespace="Telephony/CdrAmqp", region="us-east-1")

    def _sent(self) -> dict[str, float]:
        call_kwargs = self.metrics._cw.put_metric_data.call_args.kwargs
        return {m["MetricName"]: m["Value"] for m in call_kwargs["MetricData"]}

    def test_correct_namespace(self) -> None:
        self.metrics.record(True)
        self.metrics.flush()
        call_kwargs = self.metrics._cw.put_metric_data.call_args.kwargs
        assert call_kwargs["Namespace"] == "Telephony/CdrAmqp"

    def test_counts(self) -> None:
        for _ in range(3):
            self.metrics.record(True)
        self.metrics.record(False)
        self.metrics.flush()
        assert self._sent() == {"CdrsPublished": 3.0, "CdrsFailed": 1.0}

    def test_metric_unit_is_count(self) -> None:
        self.metrics.record(False)
        self.metrics.flush()
        for m in self.metrics._cw.put_metric_data.call_args.kwargs["MetricData"]:
            assert m["Unit"] == "Count"

    def test_counts_reset_after_flush(self) -> None:
        self.metrics.record(True)
        self.metrics.flush()
        self.metrics.record(False)
        self.metrics.flush()
        assert self._sent() == {"CdrsPublished": 0.0, "CdrsFailed": 1.0}

    def test_idle_flush_sends_nothing(self) -> None:
        self.metrics.flush()
        self.metrics._cw.put_metric_data.assert_not_called()

    def test_cloudwatch_failure_is_non_fatal(self) -> None:
        self.metrics._cw.put_metric_data.side_effect = Exception("CW unavailable")
        self.metrics.record(True)
        self.metrics.flush()  # should not raise

    def test_concurrent_record(self) -> None:
        def work() -> None:
            for _ in range(1000):
                self.metrics.record(True)

        threads = [threading.Thread(target=work) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        self.metrics.flush()
        assert self._sent()["CdrsPublished"] == 4000.0
