from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Literal

JobStatus = Literal["live", "submitted", "pending_quote", "quote_accepted", "scheduled", "completed"]
QuoteStatus = Literal["pending", "accepted", "rejected"]
JobType = Literal["domestic", "commercial"]
Specialty = Literal["domestic", "commercial", "both"]
WithdrawalReason = Literal["too_far", "schedule_conflict", "out_of_scope", "not_interested", "other"]
County = Literal[
    "Carlow",
    "Cavan",
    "Clare",
    "Cork",
    "Donegal",
    "Dublin",
    "Galway",
    "Kerry",
    "Kildare",
    "Kilkenny",
    "Laois",
    "Leitrim",
    "Limerick",
    "Longford",
    "Louth",
    "Mayo",
    "Meath",
    "Monaghan",
    "Offaly",
    "Roscommon",
    "Sligo",
    "Tipperary",
    "Waterford",
    "Westmeath",
    "Wexford",
    "Wicklow",
]

OPEN_JOB_STATUSES = frozenset({"live", "submitted", "pending_quote"})
ASSIGNED_JOB_STATUSES = frozenset({"quote_accepted", "scheduled", "completed"})
ACTIVE_QUOTE_STATUSES = frozenset({"pending", "accepted"})


@dataclass(slots=True, frozen=True)
class JobRecord:
    id: str
    homeowner_id: str
    county: str
    town: str
    status: str
    created_at: datetime
    updated_at: datetime
    contact_email: str | None = None
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
    version: int = 1

    @property
    def is_open(self) -> bool:
        return self.status in OPEN_JOB_STATUSES


@dataclass(slots=True, frozen=True)
class QuoteRecord:
    id: str
    job_id: str
    contractor_id: str
    price: Decimal
    status: str
    created_at: datetime
    updated_at: datetime
    notes: str | None = None
    version: int = 1

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_QUOTE_STATUSES


@dataclass(slots=True, frozen=True)
class ContractorPreferenceRecord:
    contractor_id: str
    service_counties: frozenset[str] = frozenset()
    specialty: str = "domestic"
    email: str | None = None
    full_name: str | None = None
    is_active: bool = True


@dataclass(slots=True, frozen=True)
class WithdrawalRecord:
    job_id: str
    contractor_id: str
    reason_code: str
    created_at: datetime


@dataclass(slots=True, frozen=True)
class NotificationRequest:
    event_kind: str
    job_id: str | None
    recipient: str
    payload: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True, frozen=True)
class AuditEvent:
    entity_type: str
    entity_id: str
    event_type: str
    actor_type: str
    actor_id: str | None
    payload: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class MachineCredentialRecord:
    module_db_id: str
    module_id: str
    scopes: list[str]
    key_hash: str
