from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import TYPE_CHECKING

from opentelemetry import trace

from quotebridge.services.errors import RepositoryError
from quotebridge.services.notifications import NotificationDispatcher

if TYPE_CHECKING:
    from quotebridge.services.repository import Repository

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


@dataclass(slots=True)
class SweepFailure:
    quote_id: str
    error: str


@dataclass(slots=True)
class SweepReport:
    cutoff: datetime
    batch_size: int
    expired_count: int = 0
    relisted_count: int = 0
    skipped_count: int = 0
    failures: list[SweepFailure] = field(default_factory=list)
    has_more: bool = False
    expired_quote_ids: list[str] = field(default_factory=list)
    relisted_job_ids: list[str] = field(default_factory=list)


def expiry_cutoff(now: datetime, *, expiry_days: float) -> datetime:
    return now - timedelta(days=expiry_days)


async def run_expiry_sweep(
    repository: Repository,
    dispatcher: NotificationDispatcher,
    *,
    now: datetime,
    expiry_days: float,
    batch_size: int,
    actor_id: str | None = None,
) -> SweepReport:
    """Expire pending quotes older than the window, relisting jobs left without bids.

    Each quote is expired in its own atomic unit that re-checks staleness under
    lock, so a quote revised or accepted after it was selected is skipped rather
    than expired. One failing quote never aborts the rest of the batch.
    """
    cutoff = expiry_cutoff(now, expiry_days=expiry_days)
    report = SweepReport(cutoff=cutoff, batch_size=batch_size)

    with tracer.start_as_current_span("lifecycle.expiry_sweep") as span:
        span.set_attribute("sweep.batch_size", batch_size)
        candidate_ids = await repository.list_expirable_quote_ids(cutoff=cutoff, limit=batch_size)
        report.has_more = len(candidate_ids) >= batch_size

        for quote_id in candidate_ids:
            try:
                plan = await repository.expire_quote(quote_id, now=now, cutoff=cutoff, actor_id=actor_id)
            except RepositoryError as exc:
                logger.warning("quote expiry failed quote_id=%s error=%s", quote_id, exc, exc_info=True)
                report.failures.append(SweepFailure(quote_id=quote_id, error=str(exc)))
                continue

            if plan is None:
                report.skipped_count += 1
                continue

            report.expired_count += 1
            report.expired_quote_ids.append(quote_id)
            if plan.relisted:
                report.relisted_count += 1
                report.relisted_job_ids.append(plan.job.id)
            dispatcher.dispatch(plan.notifications)

        span.set_attribute("sweep.expired_count", report.expired_count)
        span.set_attribute("sweep.relisted_count", report.relisted_count)
        span.set_attribute("sweep.failure_count", len(report.failures))

    logger.info(
        "expiry sweep finished cutoff=%s expired=%s relisted=%s skipped=%s failures=%s has_more=%s",
        cutoff.isoformat(),
        report.expired_count,
        report.relisted_count,
        report.skipped_count,
        len(report.failures),
        report.has_more,
    )
    return report
