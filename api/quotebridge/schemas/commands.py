from datetime import date
from decimal import Decimal
from typing import Annotated, Literal

from pydantic import BaseModel, ConfigDict, Field, StringConstraints

from quotebridge.services.records import County, JobType, WithdrawalReason

Identifier = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1, max_length=128)]
Price = Annotated[Decimal, Field(gt=0, max_digits=10, decimal_places=2)]


class CommandModel(BaseModel):
    model_config = ConfigDict(frozen=True, str_strip_whitespace=True, extra="forbid")


class CreateJobCommand(CommandModel):
    homeowner_id: Identifier
    county: County
    town: Annotated[str, StringConstraints(strip_whitespace=True, min_length=1, max_length=120)]
    contact_email: str | None = Field(default=None, max_length=320)
    property_address: str | None = Field(default=None, max_length=500)
    property_type: str | None = Field(default=None, max_length=120)
    property_size: str | None = Field(default=None, max_length=120)
    bedrooms: int | None = Field(default=None, ge=0, le=100)
    job_type: JobType | None = None
    preferred_date: date | None = None
    preferred_time_window: str | None = Field(default=None, max_length=120)
    initial_status: Literal["live", "submitted"] = "live"


class SubmitQuoteCommand(CommandModel):
    job_id: Identifier
    contractor_id: Identifier
    price: Price
    notes: str | None = Field(default=None, max_length=4000)
    expected_version: int | None = Field(default=None, ge=1)


class AcceptQuoteCommand(CommandModel):
    job_id: Identifier
    quote_id: Identifier
    homeowner_id: Identifier | None = None
    expected_quote_version: int | None = Field(default=None, ge=1)


class ScheduleInspectionCommand(CommandModel):
    job_id: Identifier
    contractor_id: Identifier
    scheduled_date: date


class CompleteJobCommand(CommandModel):
    job_id: Identifier
    contractor_id: Identifier
    certificate_ref: Annotated[str, StringConstraints(strip_whitespace=True, min_length=1, max_length=500)]


class WithdrawCommand(CommandModel):
    job_id: Identifier
    contractor_id: Identifier
    reason_code: WithdrawalReason
