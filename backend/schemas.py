from __future__ import annotations

from datetime import date, datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .utils import (
    is_valid_email,
    normalize_appointment_status,
    normalize_packing_type,
    normalize_regime,
    normalize_role,
    normalize_sad_status,
    normalize_ticket_status,
)


def _strip_or_none(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = str(value).strip()
    return value or None


# ---------------------------------------------------------------- tickets


class TicketBase(BaseModel):
    truck_no: str = Field(..., min_length=1)
    sad_no: str = Field(..., min_length=1)
    operation: Optional[str] = None
    driver: Optional[str] = None
    consignee: Optional[str] = None
    container_no: Optional[str] = None
    scale_name: Optional[str] = "WBRIDGE1"
    flagged: bool = False

    @field_validator("truck_no", "sad_no", mode="before")
    @classmethod
    def _strip_required(cls, value: Optional[str]) -> Optional[str]:
        return value.strip() if isinstance(value, str) else value


class TicketCreate(TicketBase):
    ticket_no: Optional[str] = None
    gross: Optional[float] = None
    tare: Optional[float] = None
    net: Optional[float] = None
    date: Optional[datetime] = None
    save_tare: bool = False

    model_config = ConfigDict(allow_inf_nan=False)

    @field_validator("ticket_no", mode="before")
    @classmethod
    def _blank_ticket_no(cls, value: Optional[str]) -> Optional[str]:
        return _strip_or_none(value)


class TicketUpdate(BaseModel):
    truck_no: Optional[str] = None
    sad_no: Optional[str] = None
    operation: Optional[str] = None
    driver: Optional[str] = None
    consignee: Optional[str] = None
    container_no: Optional[str] = None
    gross: Optional[float] = None
    tare: Optional[float] = None
    net: Optional[float] = None
    status: Optional[str] = None
    flagged: Optional[bool] = None

    model_config = ConfigDict(allow_inf_nan=False)

    @field_validator("status", mode="before")
    @classmethod
    def _normalize_status(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        return normalize_ticket_status(value)


class TicketRead(TicketBase):
    id: int
    ticket_no: str
    # imported tickets may lack these
    truck_no: Optional[str] = None
    sad_no: Optional[str] = None
    flagged: Optional[bool] = False
    gross: Optional[float] = None
    tare: Optional[float] = None
    net: Optional[float] = None
    status: str
    manual: bool = False
    operator_id: Optional[int] = None
    file_url: Optional[str] = None
    file_name: Optional[str] = None
    date: Optional[datetime] = None
    submitted_at: Optional[datetime] = None
    out_of_range: List[str] = Field(default_factory=list)

    model_config = ConfigDict(from_attributes=True)


class TicketPage(BaseModel):
    items: List[TicketRead]
    total: int


class NextTicketNumber(BaseModel):
    next_ticket_no: str


class PendingDeletionRead(BaseModel):
    id: int
    resource: str
    resource_id: int
    execute_after: datetime

    model_config = ConfigDict(from_attributes=True)


# ---------------------------------------------------------------- SAD declarations


class SadDocument(BaseModel):
    name: str
    path: str
    url: Optional[str] = None
    tags: List[str] = Field(default_factory=list)


class SadCreate(BaseModel):
    sad_no: str = Field(..., min_length=1)
    regime: Optional[str] = None
    declared_weight: float = Field(..., gt=0)
    docs: List[SadDocument] = Field(default_factory=list)

    model_config = ConfigDict(allow_inf_nan=False)

    @field_validator("sad_no", mode="before")
    @classmethod
    def _strip_sad_no(cls, value: Optional[str]) -> Optional[str]:
        return value.strip() if isinstance(value, str) else value

    @field_validator("regime", mode="before")
    @classmethod
    def _normalize_regime(cls, value: Optional[str]) -> Optional[str]:
        return normalize_regime(value)


class SadRead(BaseModel):
    id: int
    sad_no: str
    regime: Optional[str] = None
    regime_label: Optional[str] = None
    declared_weight: float
    total_recorded_weight: float = 0.0
    ticket_count: int = 0
    discrepancy: float = 0.0
    discharge_complete: bool = False
    status: str
    docs: List[SadDocument] = Field(default_factory=list)
    manual_update: bool = False
    created_by: Optional[int] = None
    completed_by: Optional[int] = None
    completed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class SadPage(BaseModel):
    items: List[SadRead]
    total: int


class SadDetail(BaseModel):
    sad: SadRead
    tickets: List[TicketRead]
    manual_count: int
    uploaded_count: int


class SadStatusUpdate(BaseModel):
    status: str

    @field_validator("status", mode="before")
    @classmethod
    def _normalize_status(cls, value: Optional[str]) -> str:
        return normalize_sad_status(value)


class SadRenameRequest(BaseModel):
    new_sad_no: str = Field(..., min_length=1)

    @field_validator("new_sad_no", mode="before")
    @classmethod
    def _strip(cls, value: Optional[str]) -> Optional[str]:
        return value.strip() if isinstance(value, str) else value


class SadRenameResult(BaseModel):
    old_sad_no: str
    new_sad_no: str
    ok: bool
    steps_completed: List[str] = Field(default_factory=list)
    reverted: bool = False
    error: Optional[str] = None


class DiscrepancyRead(BaseModel):
    sad_no: str
    band: str
    declared: float
    recorded: float
    diff: float
    pct: float
    message: str


class AnomalyRead(BaseModel):
    sad_no: str
    ratio: float
    z: float


class AnomalyReportRead(BaseModel):
    mean: float
    std: float
    flagged: List[AnomalyRead]


class SadStats(BaseModel):
    total_sads: int
    total_declared: float
    total_recorded: float
    completed: int
    in_progress: int
    on_hold: int
    archived: int
    active_discrepancies: int
    completion_pct: int


class ActivityRead(BaseModel):
    id: int
    text: str
    meta: Optional[Dict[str, Any]] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


# ---------------------------------------------------------------- outgate


class OutgateConfirmRequest(BaseModel):
    ticket_id: int = Field(..., ge=1)
    driver: Optional[str] = None


class OutgateRead(BaseModel):
    id: int
    ticket_id: int
    ticket_no: Optional[str] = None
    vehicle_number: Optional[str] = None
    container_id: Optional[str] = None
    sad_no: Optional[str] = None
    driver: Optional[str] = None
    gross: Optional[float] = None
    tare: Optional[float] = None
    net: Optional[float] = None
    date: Optional[datetime] = None
    file_url: Optional[str] = None
    file_name: Optional[str] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class OutgatePage(BaseModel):
    items: List[OutgateRead]
    total: int


# ---------------------------------------------------------------- drivers & users


class DriverCreate(BaseModel):
    name: str = Field(..., min_length=1)
    phone: str = Field(..., min_length=1)
    license_number: Optional[str] = None

    @field_validator("name", "phone", mode="before")
    @classmethod
    def _strip_required(cls, value: Optional[str]) -> Optional[str]:
        return value.strip() if isinstance(value, str) else value

    @field_validator("license_number", mode="before")
    @classmethod
    def _strip_license(cls, value: Optional[str]) -> Optional[str]:
        return _strip_or_none(value)


class DriverUpdate(BaseModel):
    name: Optional[str] = None
    phone: Optional[str] = None
    license_number: Optional[str] = None

    @field_validator("name", "phone", "license_number", mode="before")
    @classmethod
    def _strip(cls, value: Optional[str]) -> Optional[str]:
        return _strip_or_none(value)


class DriverRead(BaseModel):
    id: int
    name: str
    phone: str
    license_number: Optional[str] = None
    picture_url: Optional[str] = None
    is_suspended: bool = False
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class DriverPage(BaseModel):
    items: List[DriverRead]
    total: int


class UserCreate(BaseModel):
    full_name: str = Field(..., min_length=1)
    email: str
    role: str

    @field_validator("email", mode="before")
    @classmethod
    def _check_email(cls, value: Optional[str]) -> str:
        email = (value or "").strip().lower()
        if not email:
            raise ValueError("Email is required")
        if not is_valid_email(email):
            raise ValueError("Email is invalid")
        return email

    @field_validator("role", mode="before")
    @classmethod
    def _normalize_role(cls, value: Optional[str]) -> str:
        return normalize_role(value)


class UserUpdate(BaseModel):
    full_name: Optional[str] = None
    email: Optional[str] = None
    role: Optional[str] = None

    @field_validator("email", mode="before")
    @classmethod
    def _check_email(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        email = value.strip().lower()
        if not is_valid_email(email):
            raise ValueError("Email is invalid")
        return email

    @field_validator("role", mode="before")
    @classmethod
    def _normalize_role(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        return normalize_role(value)


class UserRead(BaseModel):
    id: int
    full_name: str
    email: str
    username: str
    role: str
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class Preferences(BaseModel):
    muted: bool = False
    sound: str = Field("beep", pattern="^(beep|chime|ding|alarm)$")


# ---------------------------------------------------------------- vehicles & reports


class VehicleTareRead(BaseModel):
    truck_no: str
    tare: float
    avg_tare: float
    entry_count: int
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class VehicleHistory(BaseModel):
    truck_no: str
    tare: Optional[VehicleTareRead] = None
    tickets: List[TicketRead]
    exits: List[OutgateRead]


class ReportSummary(BaseModel):
    date_range: Dict[str, str]
    total_tickets: int
    pending: int
    exited: int
    manual: int
    total_gross: float
    total_net: float
    exits_confirmed: int
    exited_net: float
    sad: SadStats


# ---------------------------------------------------------------- notifications & sms


class NotificationOut(BaseModel):
    id: int
    ticket_id: Optional[int] = None
    message: str
    level: str
    meta: Optional[Dict[str, Any]] = None
    flagged: bool = False
    created_at: datetime
    is_read: bool = False
    dismissed: bool = False


class SmsRequest(BaseModel):
    to: Optional[str] = None
    phone: Optional[str] = None
    message: Optional[str] = None
    text: Optional[str] = None
    sender: Optional[str] = Field(default=None, alias="from")
    recipients: Optional[Dict[str, Any]] = None

    model_config = ConfigDict(populate_by_name=True)

    @property
    def recipient(self) -> str:
        nested = self.recipients or {}
        return str(self.to or self.phone or nested.get("phone") or nested.get("driverPhone") or "")

    @property
    def body(self) -> str:
        return str(self.message or self.text or "")


class SmsResult(BaseModel):
    ok: bool
    provider: str = "comium"
    result: Optional[Any] = None


# ---------------------------------------------------------------- appointments


class T1RecordIn(BaseModel):
    sad_no: str = Field(..., min_length=1)
    packing_type: str
    container_no: Optional[str] = None

    @field_validator("sad_no", mode="before")
    @classmethod
    def _strip_sad_no(cls, value: Optional[str]) -> Optional[str]:
        return value.strip() if isinstance(value, str) else value

    @field_validator("packing_type", mode="before")
    @classmethod
    def _normalize_packing(cls, value: Optional[str]) -> str:
        return normalize_packing_type(value)

    @field_validator("container_no", mode="before")
    @classmethod
    def _strip_container(cls, value: Optional[str]) -> Optional[str]:
        return _strip_or_none(value)


class T1RecordRead(BaseModel):
    id: int
    sad_no: str
    packing_type: str
    container_no: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class AppointmentCreate(BaseModel):
    agent_tin: str = Field(..., min_length=1)
    agent_name: str = Field(..., min_length=1)
    warehouse_location: str = Field(..., min_length=1)
    pickup_date: date
    consolidated: str = Field("N", pattern="^[YN]$")
    truck_number: str = Field(..., min_length=1)
    driver_name: str = Field(..., min_length=1)
    driver_license_no: str = Field(..., min_length=1)
    total_documented_weight: Optional[float] = Field(default=None, ge=0)
    regime: Optional[str] = None
    t1s: List[T1RecordIn] = Field(default_factory=list)

    model_config = ConfigDict(allow_inf_nan=False)

    @field_validator(
        "agent_tin",
        "agent_name",
        "warehouse_location",
        "truck_number",
        "driver_name",
        "driver_license_no",
        mode="before",
    )
    @classmethod
    def _strip_required(cls, value: Optional[str]) -> Optional[str]:
        return value.strip() if isinstance(value, str) else value

    @field_validator("consolidated", mode="before")
    @classmethod
    def _upper_flag(cls, value: Optional[str]) -> str:
        return str(value or "N").strip().upper()

    @field_validator("regime", mode="before")
    @classmethod
    def _normalize_regime(cls, value: Optional[str]) -> Optional[str]:
        return normalize_regime(value)


class AppointmentRead(BaseModel):
    id: int
    appointment_number: str
    weighbridge_number: str
    agent_tin: str
    agent_name: str
    warehouse_location: str
    pickup_date: date
    consolidated: str
    truck_number: str
    driver_name: str
    driver_license_no: str
    total_t1s: int = 0
    total_documented_weight: Optional[float] = None
    regime: Optional[str] = None
    status: str
    created_by: Optional[int] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    t1_records: List[T1RecordRead] = Field(default_factory=list)
    alerts: List[str] = Field(default_factory=list)

    model_config = ConfigDict(from_attributes=True)


class AppointmentPage(BaseModel):
    items: List[AppointmentRead]
    total: int


class AppointmentStatusUpdate(BaseModel):
    status: str

    @field_validator("status", mode="before")
    @classmethod
    def _normalize_status(cls, value: Optional[str]) -> str:
        return normalize_appointment_status(value)


class AppointmentComment(BaseModel):
    message: str = Field(..., min_length=1)

    @field_validator("message", mode="before")
    @classmethod
    def _strip(cls, value: Optional[str]) -> Optional[str]:
        return value.strip() if isinstance(value, str) else value


class AppointmentLogRead(BaseModel):
    id: int
    appointment_id: int
    changed_by: Optional[int] = None
    action: str
    message: Optional[str] = None
    before: Optional[Dict[str, Any]] = None
    after: Optional[Dict[str, Any]] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class AppointmentDetail(BaseModel):
    appointment: AppointmentRead
    logs: List[AppointmentLogRead]


class AppointmentStats(BaseModel):
    total: int
    posted: int
    completed: int
    overdue: int
    unique_sads: int


# ---------------------------------------------------------------- audit


class AuditLogRead(BaseModel):
    id: int
    action: str
    ticket_id: Optional[int] = None
    ticket_no: Optional[str] = None
    user_id: Optional[int] = None
    username: Optional[str] = None
    details: Optional[Dict[str, Any]] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class ReportGeneratedRead(BaseModel):
    id: int
    report_type: str
    generated_by: Optional[int] = None
    filename: Optional[str] = None
    filters: Optional[Dict[str, Any]] = None
    generated_at: datetime

    model_config = ConfigDict(from_attributes=True)
