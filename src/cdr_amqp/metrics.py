"""
Publish outcome counters, flushed to CloudWatch.

Counting is cheap and lock-protected so every publishing thread can record;
flush() ships the totals since the previous flush as CdrsPublished /
CdrsFailed Count metrics. CloudWatch failures are logged and never reach the
publish path.
"""

import logging
import threading

import boto3

logger = logging.getLogger(__name__)


class PublishMetrics:
    """
    Thread-safe published/failed counters with a CloudWatch flush.

    Usage:
        metrics = PublishMetrics(namespace="Telephony/CdrAmqp", region="us-west-2")
        metrics.record(success=True)
        metrics.flush()
    """

    def __init__(self, namespace: str, region: str) -> None:
        self._namespace = namespace
        self._cw = boto3.client("cloudwatch", region_name=region)
        self._lock = threading.Lock()
        self._published = 0
        self._failed = 0

    def record(self, success: bool) -> None:
        with self._lock:
            if success:
                self._published += 1
            else:
                self._failed += 1

    def flush(self) -> None:
        """
        Publish the counts accumulated since the last flush and reset them.

        Nothing is sent when both counts are zero. On failure the counts are
        dropped rather than carried over.
        """
        with self._lock:
            published, failed = self._published, self._failed
            self._published = self._failed = 0

        if published == 0 and failed == 0:
            return

        try:
            self._cw.put_metric_data(
                Namespace=self._namespace,
                MetricData=[
                    {
                        "MetricName": "CdrsPublished",
                        "Value": float(published),
                        "Unit": "Count",
                    },
                    {
                        "MetricName": "CdrsFailed",
                        "Value": float(failed),
                        "Unit": "Count",
                    },
                ],
            )
        except Exception as exc:
            logger.warning("CloudWatch put_metric_data failed (non-fatal): %s", exc)
