from __future__ import annotations

import logging
from datetime import datetime

from typing import Optional
from uuid import uuid4

from sqlalchemy import select, update, func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, joinedload

from datetime_utils import as_utc, utcnow
from errors import ConflictError, NotFoundError, StoreError, ValidationError
from models import (
    ASSIGNABLE_ROLES,
    ActiveAssignment,
    AssignmentHistoryEntry,
    AssignmentIn,
    ClientRef,
    EmployeeRef,
    EquipmentRef,
)
from orm import AssignmentORM, CategoryORM, ClientORM, EmployeeORM, EquipmentORM

logger = logging.getLogger(__name__)

CONFLICT_MESSAGE = "This equipment already has an active assignment"
NOT_FOUND_MESSAGE = "Assignment not found or already returned"
MISSING_REFERENCE_MESSAGE = "Referenced equipment, employee or client does not exist"

def persist(db: Session, *, commit: bool) -> None:
    if commit:
        db.commit()
    else:
        db.flush()

def _employee_to_schema(e: EmployeeORM) -> EmployeeRef:
    return EmployeeRef(id=e.id, full_name=e.full_name, email=e.email, role=e.role)

def _equipment_to_schema(q: EquipmentORM) -> EquipmentRef:
    return EquipmentRef(
        id=q.id,
        name=q.name,
        serial_number=q.serial_number,
        status=q.status,  # type: ignore
        category=q.category.name if q.category else None,
    )

def _client_to_schema(c: ClientORM | None) -> ClientRef | None:
    if c is None:
        return None
    return ClientRef(id=c.id, name=c.name, email=c.email, phone=c.phone)

def _assignment_to_schema(a: AssignmentORM) -> ActiveAssignment:
    return ActiveAssignment(
        id=a.id,
        status=a.status,  # type: ignore
        location=a.location,
        notes=a.notes,
        assigned_at=as_utc(a.assigned_at),
        expected_return=as_utc(a.expected_return),
        returned_at=as_utc(a.returned_at),
        employee=_employee_to_schema(a.employee),
        equipment=_equipment_to_schema(a.equipment),
        client=_client_to_schema(a.client),
    )

def _history_to_schema(a: AssignmentORM) -> AssignmentHistoryEntry:
    return AssignmentHistoryEntry(
        id=a.id,
        status=a.status,  # type: ignore
        assigned_at=as_utc(a.assigned_at),
        expected_return=as_utc(a.expected_return),
        returned_at=as_utc(a.returned_at),
        location=a.location,
        notes=a.notes,
        employee=_employee_to_schema(a.employee),
        client=_client_to_schema(a.client),
        assigned_by=a.assigned_by,
    )

def _triad_options():
    return (
        joinedload(AssignmentORM.equipment).joinedload(EquipmentORM.category),
        joinedload(AssignmentORM.employee),
        joinedload(AssignmentORM.client),
    )

OPEN_ASSIGNMENT_INDEX = "uq_assignments_open_equipment"

def is_open_assignment_violation(exc: IntegrityError) -> bool:
    """True only when the open-assignment index rejected the write."""
    orig = exc.orig
    diag = getattr(orig, "diag", None)
    if diag is not None and getattr(diag, "constraint_name", None):
        return diag.constraint_name == OPEN_ASSIGNMENT_INDEX
    return "UNIQUE constraint failed: assignments.equipment_id" in str(orig)

def is_foreign_key_violation(exc: IntegrityError) -> bool:
    orig = exc.orig
    if getattr(orig, "pgcode", None) == "23503" or getattr(orig, "sqlstate", None) == "23503":
        return True
    return "FOREIGN KEY constraint failed" in str(orig)


# ---------- Reference data (owned by inventory / HR / client modules) ----------
def create_category(db: Session, *, name: str, commit: bool = True) -> str:
    now = utcnow()
    c = CategoryORM(id=str(uuid4()), name=name.strip(), created_at=now, updated_at=now)
    db.add(c)
    persist(db, commit=commit)
    return c.id

def get_or_create_category_id(db: Session, name: str | None) -> str | None:
    name = (name or "").strip()
    if not name:
        return None
    c = db.execute(select(CategoryORM).where(CategoryORM.name == name)).scalar_one_or_none()
    if c:
        return c.id
    return create_category(db, name=name, commit=False)

def create_equipment(
    db: Session,
    *,
    name: str,
    serial_number: str,
    category: str | None = None,
    status: str = "AVAILABLE",
    commit: bool = True,
) -> str:
    now = utcnow()
    q = EquipmentORM(
        id=str(uuid4()),
        name=name,
        serial_number=serial_number,
        category_id=get_or_create_category_id(db, category),
        status=status,
        created_at=now,
        updated_at=now,
    )
    db.add(q)
    persist(db, commit=commit)
    return q.id

def create_employee(
    db: Session,
    *,
    email: str,
    full_name: str | None = None,
    role: str = "EMPLOYEE",
    commit: bool = True,
) -> str:
    now = utcnow()
    e = EmployeeORM(id=str(uuid4()), email=email, full_name=full_name, role=role, created_at=now, updated_at=now)
    db.add(e)
    persist(db, commit=commit)
    return e.id

def create_client(
    db: Session,
    *,
    name: str,
    email: str,
    phone: str | None = None,
    commit: bool = True,
) -> str:
    now = utcnow()
    c = ClientORM(id=str(uuid4()), name=name, email=email, phone=phone, created_at=now, updated_at=now)
    db.add(c)
    persist(db, commit=commit)
    return c.id

def soft_delete(db: Session, model, row_id: str, *, commit: bool = True) -> bool:
    row = db.get(model, row_id)
    if not row or row.deleted_at is not None:
        return False
    now = utcnow()
    row.deleted_at = now
    row.updated_at = now
    persist(db, commit=commit)
    return True

def find_equipment_by_serial(db: Session, serial_number: str) -> Optional[str]:
    row = db.execute(select(EquipmentORM.id).where(EquipmentORM.serial_number == serial_number)).first()
    return row[0] if row else None

def find_employee_by_email(db: Session, email: str) -> Optional[str]:
    row = db.execute(select(EmployeeORM.id).where(EmployeeORM.email == email)).first()
    return row[0] if row else None

def find_client_by_email(db: Session, email: str) -> Optional[str]:
    row = db.execute(select(ClientORM.id).where(ClientORM.email == email)).first()
    return row[0] if row else None


# ---------- Assignment form pickers ----------
def list_assignable_employees(db: Session) -> list[EmployeeRef]:
    rows = db.execute(
        select(EmployeeORM)
        .where(EmployeeORM.deleted_at.is_(None), EmployeeORM.role.in_(ASSIGNABLE_ROLES))
        .order_by(EmployeeORM.full_name.asc(), EmployeeORM.email.asc())
    ).scalars().all()
    return [_employee_to_schema(e) for e in rows]

def list_available_equipment(db: Session) -> list[EquipmentRef]:
    rows = db.execute(
        select(EquipmentORM)
        .options(joinedload(EquipmentORM.category))
        .where(EquipmentORM.deleted_at.is_(None), EquipmentORM.status == "AVAILABLE")
        .order_by(EquipmentORM.name.asc())
    ).scalars().all()
    return [_equipment_to_schema(q) for q in rows]

def list_active_clients(db: Session) -> list[ClientRef]:
    rows = db.execute(
        select(ClientORM)
        .where(ClientORM.deleted_at.is_(None))
        .order_by(ClientORM.name.asc())
    ).scalars().all()
    return [_client_to_schema(c) for c in rows]


# ---------- Assignment ----------
def get_assignment(db: Session, assignment_id: str) -> Optional[ActiveAssignment]:
    row = db.execute(
        select(AssignmentORM).options(*_triad_options()).where(AssignmentORM.id == assignment_id)
    ).scalars().first()
    return _assignment_to_schema(row) if row else None

def count_open_assignments(db: Session, equipment_id: str) -> int:
    stmt = (
        select(func.count())
        .select_from(AssignmentORM)
        .where(AssignmentORM.equipment_id == equipment_id, AssignmentORM.returned_at.is_(None))
    )
    return int(db.execute(stmt).scalar_one())

def list_open_assignments(db: Session) -> list[ActiveAssignment]:
    """Open assignments with their triad joined, newest custody event first."""
    stmt = (
        select(AssignmentORM)
        .options(*_triad_options())
        .where(AssignmentORM.returned_at.is_(None))
        .order_by(AssignmentORM.assigned_at.desc())
    )
    try:
        rows = db.execute(stmt).scalars().all()
    except SQLAlchemyError as exc:
        logger.error("list_open_assignments failed: %s", exc)
        raise StoreError("Failed to fetch active deployments") from exc
    return [_assignment_to_schema(a) for a in rows]

def list_assignment_history(db: Session, equipment_id: str) -> list[AssignmentHistoryEntry]:
    stmt = (
        select(AssignmentORM)
        .options(*_triad_options())
        .where(AssignmentORM.equipment_id == equipment_id)
        .order_by(AssignmentORM.assigned_at.desc())
    )
    rows = db.execute(stmt).scalars().all()
    return [_history_to_schema(a) for a in rows]

def _reject_deleted(db: Session, model, row_id: str | None, label: str) -> None:
    if row_id is None:
        return
    row = db.get(model, row_id)
    # missing rows are left to the foreign key
    if row is not None and row.deleted_at is not None:
        raise ValidationError(f"{label} has been deleted")

def insert_assignment(
    db: Session,
    body: AssignmentIn,
    *,
    assigned_by: str,
    now: datetime | None = None,
    commit: bool = True,
) -> str:
    """Write a new in_field assignment.

    The partial unique index on open assignments is the only guard against
    double custody; its violation is raised as ConflictError. Any failure
    rolls back the whole session, including work a caller flushed earlier
    under commit=False.
    """
    now = now or utcnow()
    try:
        _reject_deleted(db, EquipmentORM, body.equipment_id, "Equipment")
        _reject_deleted(db, EmployeeORM, body.employee_id, "Employee")
        _reject_deleted(db, ClientORM, body.client_id, "Client")

        a = AssignmentORM(
            id=str(uuid4()),
            equipment_id=body.equipment_id,
            employee_id=body.employee_id,
            client_id=body.client_id,
            status="in_field",
            location=body.location,
            notes=body.notes,
            assigned_at=now,
            expected_return=body.expected_return,
            returned_at=None,
            assigned_by=assigned_by,
            created_at=now,
            updated_at=now,
        )
        db.add(a)
        persist(db, commit=commit)
    except ValidationError:
        db.rollback()
        raise
    except IntegrityError as exc:
        db.rollback()
        if is_open_assignment_violation(exc):
            raise ConflictError(CONFLICT_MESSAGE) from exc
        if is_foreign_key_violation(exc):
            raise ValidationError(MISSING_REFERENCE_MESSAGE) from exc
        logger.error("insert_assignment integrity failure: %s", exc)
        raise StoreError("Failed to create assignment") from exc
    except SQLAlchemyError as exc:
        db.rollback()
        logger.error("insert_assignment failed: %s", exc)
        raise StoreError("Failed to create assignment") from exc
    return a.id

def close_assignment(
    db: Session,
    assignment_id: str,
    *,
    notes: str | None = None,
    now: datetime | None = None,
    commit: bool = True,
) -> dict:
    """Stamp returned_at on an open assignment; returns the pre-return snapshot.

    The UPDATE itself is conditioned on returned_at IS NULL, so a concurrent
    return that already landed leaves zero matched rows. As with
    insert_assignment, a failure rolls back the whole session.
    """
    now = now or utcnow()
    try:
        current = db.execute(
            select(AssignmentORM.id, AssignmentORM.status, AssignmentORM.notes)
            .where(AssignmentORM.id == assignment_id, AssignmentORM.returned_at.is_(None))
        ).first()
        if current is None:
            raise NotFoundError(NOT_FOUND_MESSAGE)

        values = {"returned_at": now, "status": "returned", "updated_at": now}
        if notes:
            values["notes"] = notes
        result = db.execute(
            update(AssignmentORM)
            .where(AssignmentORM.id == assignment_id, AssignmentORM.returned_at.is_(None))
            .values(**values)
        )
        if result.rowcount == 0:
            raise NotFoundError(NOT_FOUND_MESSAGE)
        persist(db, commit=commit)
    except NotFoundError:
        db.rollback()
        raise
    except SQLAlchemyError as exc:
        db.rollback()
        logger.error("close_assignment failed: %s", exc)
        raise StoreError("Failed to mark equipment as returned") from exc
    return {"id": current.id, "status": current.status, "notes": current.notes}
