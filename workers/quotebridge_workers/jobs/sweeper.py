from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Protocol

from opentelemetry import trace

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


class MaintenanceApi(Protocol):
    async def expire_quotes(self, *, batch_size: int) -> dict[str, Any]:
        ...

    async def send_job_digest(self, *, limit: int, offset: int = 0) -> dict[str, Any]:
        ...


@dataclass(slots=True)
class SweepCycleResult:
    batches: int = 0
    expired: int = 0
    relisted: int = 0
    skipped: int = 0
    failures: int = 0
    drained: bool = True


@dataclass(slots=True)
class DigestCycleResult:
    pages: int = 0
    contractors: int = 0
    digests: int = 0


def is_due(last_run_at: float | None, interval_seconds: float, now: float) -> bool:
    return last_run_at is None or now - last_run_at >= interval_seconds


async def run_sweep_cycle(client: MaintenanceApi, *, batch_size: int, max_batches: int) -> SweepCycleResult:
    """Request expiry batches until the backlog is drained or ``max_batches`` is reached."""
    result = SweepCycleResult()
    with tracer.start_as_current_span("worker.expiry_sweep") as span:
        for _ in range(max(1, max_batches)):
            report = await client.expire_quotes(batch_size=batch_size)
            result.batches += 1
            result.expired += int(report.get("expired_count", 0))
            result.relisted += int(report.get("relisted_count", 0))
            result.skipped += int(report.get("skipped_count", 0))
            result.failures += len(report.get("failures") or [])

            if not report.get("has_more"):
                break
            if not report.get("expired_count"):
                # Nothing moved; the same quotes would be selected again.
                logger.warning("expiry sweep stalled batch=%s failures=%s", result.batches, result.failures)
                result.drained = False
                break
        else:
            result.drained = False

        span.set_attribute("sweep.batches", result.batches)
        span.set_attribute("sweep.expired", result.expired)
        span.set_attribute("sweep.relisted", result.relisted)

    logger.info(
        "expiry sweep cycle batches=%s expired=%s relisted=%s skipped=%s failures=%s drained=%s",
        result.batches,
        result.expired,
        result.relisted,
        result.skipped,
        result.failures,
        result.drained,
    )
    return result


async def run_digest_cycle(client: MaintenanceApi, *, batch_size: int, max_pages: int) -> DigestCycleResult:
    result = DigestCycleResult()
    offset = 0
    with tracer.start_as_current_span("worker.job_digest"):
        for _ in range(max(1, max_pages)):
            report = await client.send_job_digest(limit=batch_size, offset=offset)
            seen = int(report.get("contractors_seen", 0))
            result.pages += 1
            result.contractors += seen
            result.digests += int(report.get("digests_sent", 0))
            if not report.get("has_more") or seen == 0:
                break
            offset += seen

    logger.info(
        "job digest cycle pages=%s contractors=%s digests=%s",
        result.pages,
        result.contractors,
        result.digests,
    )
    return result
