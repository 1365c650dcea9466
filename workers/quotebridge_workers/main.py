from __future__ import annotations

import argparse
import asyncio
import logging
import random
import time

from opentelemetry import trace

from quotebridge_workers.core.config import Settings, get_settings
from quotebridge_workers.core.telemetry import (
    configure_worker_logging,
    setup_worker_telemetry,
    shutdown_worker_telemetry,
)
from quotebridge_workers.jobs.sweeper import is_due, run_digest_cycle, run_sweep_cycle
from quotebridge_workers.services.maintenance_client import MaintenanceClient

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


async def run_worker(*, once: bool = False) -> None:
    settings = get_settings()
    configure_worker_logging(settings.log_level, correlate=settings.otel_log_correlation)
    telemetry_runtime = setup_worker_telemetry(settings)
    client = MaintenanceClient(
        base_url=settings.api_base_url,
        module_id=settings.module_id,
        api_key=settings.api_key,
        timeout_seconds=settings.request_timeout_seconds,
    )

    backoff = settings.poll_interval_seconds
    last_sweep_at: float | None = None
    last_digest_at: float | None = None

    try:
        while True:
            try:
                with tracer.start_as_current_span("worker.maintenance_cycle"):
                    now = time.monotonic()
                    if once or is_due(last_sweep_at, settings.expiry_sweep_interval_seconds, now):
                        await run_sweep_cycle(
                            client,
                            batch_size=settings.expiry_sweep_batch_size,
                            max_batches=settings.expiry_sweep_max_batches,
                        )
                        last_sweep_at = now

                    if settings.job_digest_enabled and (
                        once or is_due(last_digest_at, settings.job_digest_interval_seconds, now)
                    ):
                        await run_digest_cycle(
                            client,
                            batch_size=settings.job_digest_batch_size,
                            max_pages=settings.job_digest_max_pages,
                        )
                        last_digest_at = now

                backoff = settings.poll_interval_seconds
                if once:
                    return
                await asyncio.sleep(settings.poll_interval_seconds)
            except Exception as exc:  # pragma: no cover - bootstrap robustness
                if once:
                    raise
                sleep_for = _next_backoff(backoff, settings)
                logger.exception("maintenance cycle failed: %s; retry in %.1fs", exc, sleep_for)
                await asyncio.sleep(sleep_for)
                backoff = sleep_for
    finally:
        shutdown_worker_telemetry(telemetry_runtime)


def _next_backoff(current: float, settings: Settings) -> float:
    jitter = random.uniform(0.0, 0.5)
    return min(current * (2.0 + jitter), settings.max_backoff_seconds)


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(description="Run quote expiry and job digest maintenance.")
    parser.add_argument("--once", action="store_true", help="run one sweep and digest cycle, then exit")
    args = parser.parse_args(argv)
    asyncio.run(run_worker(once=args.once))


if __name__ == "__main__":
    main()
