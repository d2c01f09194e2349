"""
CDR AMQP backend: command line entry point.

Activates the backend, then reads newline-delimited JSON CDRs from stdin and
publishes each one to AMQP.

Environment variables:
    CDR_AMQP_CONFIG        cdr_amqp configuration file (default: config/cdr_amqp.yaml)
    AMQP_CONFIG            named AMQP connections (default: config/amqp.yaml)
    CDR_WORKERS            publishing threads (default: 8)
    CDR_METRICS_NAMESPACE  CloudWatch namespace; metrics are off when unset
    CDR_METRICS_INTERVAL   seconds between metric flushes (default: 60)
    AWS_REGION             AWS region for CloudWatch (default: us-west-2)

Signals:
    SIGHUP            reload configuration (failure keeps the running config)
    SIGTERM / SIGINT  stop reading, finish in-flight publishes, shut down
"""

import asyncio
import logging
import os
import signal
import sys
from typing import Optional

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s %(message)s",
    stream=sys.stdout,
)

logger = logging.getLogger(__name__)

from cdr_amqp.backend import CdrAmqpBackend  # noqa: E402
from cdr_amqp.config import ConfigLoader  # noqa: E402
from cdr_amqp.connections import ConnectionManager  # noqa: E402
from cdr_amqp.feed import CdrFeed  # noqa: E402
from cdr_amqp.metrics import PublishMetrics  # noqa: E402

DEFAULT_REGION = "us-west-2"


def build_metrics() -> Optional[PublishMetrics]:
    namespace = os.getenv("CDR_METRICS_NAMESPACE")
    if not namespace:
        return None
    return PublishMetrics(namespace=namespace, region=os.getenv("AWS_REGION", DEFAULT_REGION))


async def _stdin_reader() -> asyncio.StreamReader:
    loop = asyncio.get_running_loop()
    reader = asyncio.StreamReader()
    await loop.connect_read_pipe(lambda: asyncio.StreamReaderProtocol(reader), sys.stdin)
    return reader


async def serve(backend: CdrAmqpBackend, feed: CdrFeed) -> None:
    loop = asyncio.get_running_loop()

    def _handle_signal(sig: signal.Signals) -> None:
        if sig is signal.SIGHUP:
            feed.request_reload()
            return
        logger.info("Received %s — initiating graceful shutdown", sig.name)
        feed.shutdown()

    for sig in (signal.SIGTERM, signal.SIGINT, signal.SIGHUP):
        loop.add_signal_handler(sig, _handle_signal, sig)

    await feed.run(await _stdin_reader())


def main() -> None:
    """Activate the backend and publish CDRs from stdin until EOF or SIGTERM/SIGINT."""
    metrics = build_metrics()
    backend = CdrAmqpBackend(
        ConnectionManager(os.getenv("AMQP_CONFIG", ConnectionManager.DEFAULT_CONFIG_PATH)),
        config_path=os.getenv("CDR_AMQP_CONFIG", ConfigLoader.DEFAULT_CONFIG_PATH),
        metrics=metrics,
    )

    if not backend.initialize():
        sys.exit(1)

    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    try:
        feed = CdrFeed(
            backend,
            workers=int(os.getenv("CDR_WORKERS", str(CdrFeed.DEFAULT_WORKERS))),
            metrics=metrics,
            metrics_interval=float(
                os.getenv("CDR_METRICS_INTERVAL", str(CdrFeed.DEFAULT_METRICS_INTERVAL_SECONDS))
            ),
        )
        loop.run_until_complete(serve(backend, feed))
    except Exception as exc:
        logger.exception("CDR AMQP backend exited with error: %s", exc)
        sys.exit(1)
    finally:
        backend.shutdown()
        loop.close()
        logger.info("CDR AMQP backend stopped")


if __name__ == "__main__":
    main()
