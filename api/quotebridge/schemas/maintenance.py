from datetime import datetime

from pydantic import BaseModel, Field


class ExpireQuotesRequest(BaseModel):
    batch_size: int | None = Field(default=None, ge=1, le=10000)


class SweepFailureOut(BaseModel):
    quote_id: str
    error: str


class ExpireQuotesOut(BaseModel):
    cutoff: datetime
    batch_size: int
    expired_count: int
    relisted_count: int
    skipped_count: int
    failures: list[SweepFailureOut] = Field(default_factory=list)
    has_more: bool
    expired_quote_ids: list[str] = Field(default_factory=list)
    relisted_job_ids: list[str] = Field(default_factory=list)


class JobDigestRequest(BaseModel):
    limit: int | None = Field(default=None, ge=1, le=1000)
    offset: int = Field(default=0, ge=0)


class JobDigestOut(BaseModel):
    contractors_seen: int
    digests_sent: int
    has_more: bool
