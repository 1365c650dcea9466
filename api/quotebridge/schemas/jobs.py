from datetime import date, datetime
from decimal import Decimal
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from quotebridge.schemas.commands import Price
from quotebridge.services.records import County, JobStatus, JobType, QuoteStatus, WithdrawalReason


class JobCreateRequest(BaseModel):
    county: County
    town: str = Field(min_length=1, max_length=120)
    contact_email: str | None = Field(default=None, max_length=320)
    property_address: str | None = Field(default=None, max_length=500)
    property_type: str | None = Field(default=None, max_length=120)
    property_size: str | None = Field(default=None, max_length=120)
    bedrooms: int | None = Field(default=None, ge=0, le=100)
    job_type: JobType | None = None
    preferred_date: date | None = None
    preferred_time_window: str | None = Field(default=None, max_length=120)
    initial_status: Literal["live", "submitted"] = "live"


class JobOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    homeowner_id: str
    county: str
    town: str
    status: JobStatus
    property_address: str | None = None
    property_type: str | None = None
    property_size: str | None = None
    bedrooms: int | None = None
    job_type: str | None = None
    preferred_date: date | None = None
    preferred_time_window: str | None = None
    assigned_contractor_id: str | None = None
    scheduled_date: date | None = None
    certificate_ref: str | None = None
    completed_at: datetime | None = None
    created_at: datetime
    updated_at: datetime
    version: int


class EligibleJobOut(BaseModel):
    """Contractor-facing listing; owner contact details stay private until acceptance."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    county: str
    town: str
    status: JobStatus
    property_type: str | None = None
    property_size: str | None = None
    bedrooms: int | None = None
    job_type: str | None = None
    preferred_date: date | None = None
    preferred_time_window: str | None = None
    created_at: datetime


class QuoteSubmitRequest(BaseModel):
    price: Price
    notes: str | None = Field(default=None, max_length=4000)
    expected_version: int | None = Field(default=None, ge=1)


class QuoteAcceptRequest(BaseModel):
    expected_quote_version: int | None = Field(default=None, ge=1)


class QuoteOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    job_id: str
    contractor_id: str
    price: Decimal
    notes: str | None = None
    status: QuoteStatus
    created_at: datetime
    updated_at: datetime
    version: int


class QuoteSubmitOut(BaseModel):
    quote: QuoteOut
    job_status: JobStatus
    changed: bool


class QuoteAcceptOut(BaseModel):
    job: JobOut
    quote: QuoteOut
    changed: bool


class ScheduleRequest(BaseModel):
    scheduled_date: date


class CompleteRequest(BaseModel):
    certificate_ref: str = Field(min_length=1, max_length=500)


class JobTransitionOut(BaseModel):
    job: JobOut
    changed: bool


class WithdrawRequest(BaseModel):
    reason_code: WithdrawalReason


class WithdrawalOut(BaseModel):
    job_id: str
    contractor_id: str
    reason_code: WithdrawalReason
    created_at: datetime
    changed: bool


class RankedQuoteOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    quote_id: str
    contractor_id: str
    price: Decimal
    status: QuoteStatus
    is_competitive: bool


class RankingOut(BaseModel):
    job_id: str
    available: bool
    lowest_price: Decimal | None = None
    quotes: list[RankedQuoteOut] = Field(default_factory=list)
