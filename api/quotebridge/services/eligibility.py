from __future__ import annotations

import re
from collections.abc import Callable, Collection, Iterable

from quotebridge.services.records import OPEN_JOB_STATUSES, ContractorPreferenceRecord, JobRecord

COMMERCIAL_INDICATORS = ("commercial", "office", "retail", "industrial", "warehouse", "unit")
_COMMERCIAL_RE = re.compile(r"\b(?:" + "|".join(COMMERCIAL_INDICATORS) + r")(?:s|es)?\b", re.IGNORECASE)

JobClassifier = Callable[[JobRecord], str]


def classify_job(job: JobRecord) -> str:
    """Best-effort domestic/commercial split.

    An explicit ``job_type`` of ``commercial`` wins; otherwise the property type
    and address are scanned for commercial vocabulary. Anything else is domestic.
    """
    if (job.job_type or "").strip().lower() == "commercial":
        return "commercial"
    for text in (job.property_type, job.property_address):
        if text and _COMMERCIAL_RE.search(text):
            return "commercial"
    return "domestic"


def specialty_allows(specialty: str | None, classification: str) -> bool:
    normalized = (specialty or "domestic").strip().lower()
    if normalized == "both":
        return True
    return normalized == classification


def is_job_eligible(
    job: JobRecord,
    preferences: ContractorPreferenceRecord,
    *,
    active_quote_job_ids: Collection[str] = (),
    withdrawn_job_ids: Collection[str] = (),
    classifier: JobClassifier = classify_job,
) -> bool:
    if job.status not in OPEN_JOB_STATUSES:
        return False
    if job.id in active_quote_job_ids or job.id in withdrawn_job_ids:
        return False
    # An empty county set means the contractor covers every county.
    if preferences.service_counties and job.county not in preferences.service_counties:
        return False
    return specialty_allows(preferences.specialty, classifier(job))


def eligible_jobs(
    preferences: ContractorPreferenceRecord,
    open_jobs: Iterable[JobRecord],
    *,
    active_quote_job_ids: Collection[str] = (),
    withdrawn_job_ids: Collection[str] = (),
    classifier: JobClassifier = classify_job,
) -> list[JobRecord]:
    active_ids = set(active_quote_job_ids)
    withdrawn_ids = set(withdrawn_job_ids)
    visible = [
        job
        for job in open_jobs
        if is_job_eligible(
            job,
            preferences,
            active_quote_job_ids=active_ids,
            withdrawn_job_ids=withdrawn_ids,
            classifier=classifier,
        )
    ]
    visible.sort(key=lambda job: job.created_at, reverse=True)
    return visible
