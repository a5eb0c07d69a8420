from pydantic import BaseModel, Field, field_validator
from typing import Optional, Literal
from datetime import datetime
from uuid import UUID

from datetime_utils import as_utc, parse_iso_datetime

AssignmentStatus = Literal["in_field", "returned", "maintenance"]
EquipmentStatus = Literal["AVAILABLE", "IN_USE", "MAINTENANCE", "RETIRED", "LOST", "RENTED"]
ErrorKind = Literal["validation", "conflict", "not_found", "store"]

ASSIGNABLE_ROLES = ("EMPLOYEE", "ADMIN", "SUPER_ADMIN")


def blank_to_none(value):
    if isinstance(value, str) and value.strip() == "":
        return None
    return value


def require_uuid(value, message: str) -> str:
    try:
        return str(UUID(str(value)))
    except (ValueError, TypeError):
        raise ValueError(message) from None


# ---------- Commands ----------
class AssignmentIn(BaseModel):
    equipment_id: str
    employee_id: str
    client_id: Optional[str] = None
    expected_return: Optional[datetime] = None
    location: Optional[str] = Field(default=None, min_length=1, max_length=255)
    notes: Optional[str] = Field(default=None, max_length=1000)

    @field_validator("client_id", "location", "notes", "expected_return", mode="before")
    @classmethod
    def _blank_optional(cls, v):
        return blank_to_none(v)

    @field_validator("equipment_id", mode="before")
    @classmethod
    def _equipment_uuid(cls, v):
        return require_uuid(v, "Invalid equipment ID")

    @field_validator("employee_id", mode="before")
    @classmethod
    def _employee_uuid(cls, v):
        return require_uuid(v, "Invalid employee ID")

    @field_validator("client_id")
    @classmethod
    def _client_uuid(cls, v):
        if v is None:
            return None
        return require_uuid(v, "Invalid client ID")

    @field_validator("expected_return", mode="before")
    @classmethod
    def _parse_expected_return(cls, v):
        v = blank_to_none(v)
        if v is None:
            return None
        if isinstance(v, datetime):
            return as_utc(v)
        if not isinstance(v, str):
            raise ValueError("Invalid date format")
        try:
            return parse_iso_datetime(v)
        except ValueError:
            raise ValueError("Invalid date format") from None


class QuickReturnIn(BaseModel):
    assignment_id: str
    notes: Optional[str] = Field(default=None, max_length=500)

    @field_validator("assignment_id", mode="before")
    @classmethod
    def _assignment_uuid(cls, v):
        return require_uuid(v, "Invalid assignment ID")

    @field_validator("notes", mode="before")
    @classmethod
    def _blank_notes(cls, v):
        return blank_to_none(v)


class ReturnRequest(BaseModel):
    notes: Optional[str] = None


class CommandResult(BaseModel):
    success: bool
    error: Optional[str] = None
    kind: Optional[ErrorKind] = None
    assignment_id: Optional[str] = None


# ---------- Triad view ----------
class EmployeeRef(BaseModel):
    id: str
    full_name: Optional[str] = None
    email: str
    role: str


class EquipmentRef(BaseModel):
    id: str
    name: str
    serial_number: str
    status: EquipmentStatus
    category: Optional[str] = None


class ClientRef(BaseModel):
    id: str
    name: str
    email: str
    phone: Optional[str] = None


class ActiveAssignment(BaseModel):
    id: str
    status: AssignmentStatus
    location: Optional[str] = None
    notes: Optional[str] = None
    assigned_at: datetime
    expected_return: Optional[datetime] = None
    returned_at: Optional[datetime] = None

    employee: EmployeeRef
    equipment: EquipmentRef
    client: Optional[ClientRef] = None

    is_overdue: bool = False


class DeploymentGroup(BaseModel):
    employee: EmployeeRef
    assignments: list[ActiveAssignment] = []
    total_items: int = 0
    has_overdue: bool = False


class DeploymentSummary(BaseModel):
    total_deployments: int
    active_employees: int
    overdue_count: int


class AssignmentFormData(BaseModel):
    employees: list[EmployeeRef] = []
    equipment: list[EquipmentRef] = []
    clients: list[ClientRef] = []


class AssignmentHistoryEntry(BaseModel):
    id: str
    status: AssignmentStatus
    assigned_at: datetime
    expected_return: Optional[datetime] = None
    returned_at: Optional[datetime] = None
    location: Optional[str] = None
    notes: Optional[str] = None
    employee: EmployeeRef
    client: Optional[ClientRef] = None
    assigned_by: Optional[str] = None
