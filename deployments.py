"""Field deployment tracking: who holds which equipment, for which client.

Two commands mutate custody (``create_assignment`` and ``quick_return``);
both return a ``CommandResult`` instead of raising, and publish an
invalidation notice for the deployments view on success. The read side
(``get_active_deployments``) groups open assignments by custodian and
derives overdue state against the supplied clock.
"""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Mapping, Optional, Union

import pydantic
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

import crud
from audit import write_audit_log
from datetime_utils import as_utc, utcnow
from errors import DeploymentError
from invalidation import DEPLOYMENTS_PATH, InvalidationHub, hub
from models import (
    ActiveAssignment,
    AssignmentFormData,
    AssignmentHistoryEntry,
    AssignmentIn,
    CommandResult,
    DeploymentGroup,
    DeploymentSummary,
    QuickReturnIn,
)

logger = logging.getLogger(__name__)


# ---------- Lifecycle rules ----------
def is_overdue(expected_return: Optional[datetime], status: str, now: datetime) -> bool:
    # strict: a deadline equal to now is not yet overdue
    if expected_return is None or status != "in_field":
        return False
    return as_utc(expected_return) < as_utc(now)


def with_overdue(assignment: ActiveAssignment, now: datetime) -> ActiveAssignment:
    flag = is_overdue(assignment.expected_return, assignment.status, now)
    return assignment.model_copy(update={"is_overdue": flag})


# ---------- Triad view ----------
def group_by_custodian(assignments: list[ActiveAssignment], now: datetime) -> list[DeploymentGroup]:
    """Bucket assignments per employee, overdue custodians first.

    Groups are emitted in order of first appearance, which keeps the
    newest-first ordering of the input; the final sort only partitions on
    ``has_overdue`` and is stable.
    """
    groups: dict[str, DeploymentGroup] = {}
    for assignment in assignments:
        enriched = with_overdue(assignment, now)
        group = groups.get(enriched.employee.id)
        if group is None:
            group = DeploymentGroup(employee=enriched.employee, assignments=[])
            groups[enriched.employee.id] = group
        group.assignments.append(enriched)
        group.total_items += 1
        if enriched.is_overdue:
            group.has_overdue = True

    return sorted(groups.values(), key=lambda g: not g.has_overdue)


def get_active_deployments(db: Session, *, now: Optional[datetime] = None) -> list[DeploymentGroup]:
    # StoreError propagates: a stale dashboard is worse than an error page
    rows = crud.list_open_assignments(db)
    return group_by_custodian(rows, now or utcnow())


def summarize(groups: list[DeploymentGroup]) -> DeploymentSummary:
    return DeploymentSummary(
        total_deployments=sum(g.total_items for g in groups),
        active_employees=len(groups),
        overdue_count=sum(1 for g in groups for a in g.assignments if a.is_overdue),
    )


def get_assignment_form_data(db: Session) -> AssignmentFormData:
    return AssignmentFormData(
        employees=crud.list_assignable_employees(db),
        equipment=crud.list_available_equipment(db),
        clients=crud.list_active_clients(db),
    )


def get_assignment_history(db: Session, equipment_id: str) -> list[AssignmentHistoryEntry]:
    try:
        return crud.list_assignment_history(db, equipment_id)
    except SQLAlchemyError as exc:
        logger.warning("assignment history query failed equipment_id=%s: %s", equipment_id, exc)
        return []


# ---------- Commands ----------
def validation_message(exc: pydantic.ValidationError) -> str:
    messages: list[str] = []
    for err in exc.errors():
        ctx_error = (err.get("ctx") or {}).get("error")
        msg = str(ctx_error) if isinstance(ctx_error, ValueError) else err["msg"]
        if msg not in messages:
            messages.append(msg)
    return ", ".join(messages) or "Validation failed"


def _failure(exc: DeploymentError) -> CommandResult:
    return CommandResult(success=False, error=exc.message, kind=exc.kind)  # type: ignore[arg-type]


def create_assignment(
    db: Session,
    data: Union[AssignmentIn, Mapping[str, Any]],
    *,
    acting_user_id: Optional[str],
    now: Optional[datetime] = None,
    invalidation: InvalidationHub = hub,
) -> CommandResult:
    if not acting_user_id:
        return CommandResult(success=False, error="Unauthorized", kind="validation")

    if isinstance(data, AssignmentIn):
        body = data
    else:
        try:
            body = AssignmentIn.model_validate(dict(data))
        except pydantic.ValidationError as exc:
            return CommandResult(success=False, error=validation_message(exc), kind="validation")

    try:
        assignment_id = crud.insert_assignment(db, body, assigned_by=acting_user_id, now=now)
    except DeploymentError as exc:
        if exc.kind == "conflict":
            logger.info("equipment %s already assigned", body.equipment_id)
        else:
            logger.warning("create assignment rejected kind=%s: %s", exc.kind, exc.message)
        return _failure(exc)

    logger.info(
        "assignment created id=%s equipment_id=%s employee_id=%s by=%s",
        assignment_id,
        body.equipment_id,
        body.employee_id,
        acting_user_id,
    )
    write_audit_log(
        db,
        action="ASSIGN_EQUIPMENT",
        table_name="assignments",
        record_id=assignment_id,
        user_id=acting_user_id,
        new_data=body.model_dump(),
    )
    invalidation.publish(DEPLOYMENTS_PATH)
    return CommandResult(success=True, assignment_id=assignment_id)


def quick_return(
    db: Session,
    assignment_id: str,
    notes: Optional[str] = None,
    *,
    acting_user_id: Optional[str] = None,
    now: Optional[datetime] = None,
    invalidation: InvalidationHub = hub,
) -> CommandResult:
    try:
        body = QuickReturnIn(assignment_id=assignment_id, notes=notes)
    except pydantic.ValidationError as exc:
        return CommandResult(success=False, error=validation_message(exc), kind="validation")

    stamp = now or utcnow()
    try:
        previous = crud.close_assignment(db, body.assignment_id, notes=body.notes, now=stamp)
    except DeploymentError as exc:
        logger.info("quick return rejected kind=%s id=%s", exc.kind, body.assignment_id)
        return _failure(exc)

    logger.info("assignment returned id=%s", body.assignment_id)
    write_audit_log(
        db,
        action="RETURN_EQUIPMENT",
        table_name="assignments",
        record_id=body.assignment_id,
        user_id=acting_user_id,
        old_data=previous,
        new_data={"status": "returned", "returned_at": stamp, "notes": body.notes or previous.get("notes")},
    )
    invalidation.publish(DEPLOYMENTS_PATH)
    return CommandResult(success=True, assignment_id=body.assignment_id)
