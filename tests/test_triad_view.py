from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy.exc import OperationalError

import crud
import deployments
from errors import StoreError
from models import ActiveAssignment, EmployeeRef, EquipmentRef
from orm import ClientORM, EmployeeORM

ACTOR = "7d0c2b8e-2a4f-4a55-9c77-0f7e0c5b3a11"
NOW = datetime(2026, 3, 14, 9, 30, tzinfo=timezone.utc)


def _row(n, employee_id, *, expected_return=None, status="in_field"):
    return ActiveAssignment(
        id=f"a{n}",
        status=status,
        assigned_at=NOW - timedelta(minutes=n),
        expected_return=expected_return,
        employee=EmployeeRef(id=employee_id, full_name=employee_id.upper(), email=f"{employee_id}@x.test", role="EMPLOYEE"),
        equipment=EquipmentRef(id=f"q{n}", name=f"Item {n}", serial_number=f"S-{n}", status="AVAILABLE"),
    )


def _assign(db, equipment_id, employee_id, *, now, **extra):
    result = deployments.create_assignment(
        db,
        {"equipment_id": equipment_id, "employee_id": employee_id, **extra},
        acting_user_id=ACTOR,
        now=now,
    )
    assert result.success, result.error
    return result.assignment_id


# ---------- grouping (pure) ----------
def test_groups_follow_first_appearance_and_keep_row_order():
    rows = [_row(1, "ann"), _row(2, "bob"), _row(3, "ann"), _row(4, "cy")]
    groups = deployments.group_by_custodian(rows, NOW)

    assert [g.employee.id for g in groups] == ["ann", "bob", "cy"]
    assert [a.id for a in groups[0].assignments] == ["a1", "a3"]
    assert [g.total_items for g in groups] == [2, 1, 1]
    assert sum(g.total_items for g in groups) == len(rows)


def test_overdue_groups_are_partitioned_first_and_stably():
    late = NOW - timedelta(hours=1)
    rows = [
        _row(1, "ann"),
        _row(2, "bob", expected_return=late),
        _row(3, "cy"),
        _row(4, "dee", expected_return=late),
        _row(5, "eve", expected_return=late, status="maintenance"),
    ]
    groups = deployments.group_by_custodian(rows, NOW)

    assert [g.employee.id for g in groups] == ["bob", "dee", "ann", "cy", "eve"]
    assert [g.has_overdue for g in groups] == [True, True, False, False, False]


def test_one_overdue_item_flags_the_whole_group():
    rows = [_row(1, "ann"), _row(2, "ann", expected_return=NOW - timedelta(seconds=1))]
    (group,) = deployments.group_by_custodian(rows, NOW)

    assert group.has_overdue is True
    assert [a.is_overdue for a in group.assignments] == [False, True]


def test_summary_counts():
    late = NOW - timedelta(hours=2)
    rows = [_row(1, "ann", expected_return=late), _row(2, "ann", expected_return=late), _row(3, "bob")]
    summary = deployments.summarize(deployments.group_by_custodian(rows, NOW))

    assert summary.total_deployments == 3
    assert summary.active_employees == 2
    assert summary.overdue_count == 2


def test_empty_view():
    assert deployments.group_by_custodian([], NOW) == []
    assert deployments.summarize([]).total_deployments == 0


# ---------- store-backed view ----------
def test_scenario_walkthrough(db_session, studio):
    # 1. CAM-1 to E1, nothing due
    cam1 = _assign(db_session, studio["cam1"], studio["e1"], now=NOW)
    groups = deployments.get_active_deployments(db_session, now=NOW)
    assert len(groups) == 1
    assert groups[0].employee.id == studio["e1"]
    assert groups[0].total_items == 1
    assert groups[0].has_overdue is False

    # 2. CAM-1 to E2 is refused
    refused = deployments.create_assignment(
        db_session, {"equipment_id": studio["cam1"], "employee_id": studio["e2"]}, acting_user_id=ACTOR
    )
    assert refused.kind == "conflict"

    # E2 holds something on time, E1 gets an overdue CAM-2
    tripod = crud.create_equipment(db_session, name="Tripod", serial_number="SUP-1")
    _assign(db_session, tripod, studio["e2"], now=NOW + timedelta(minutes=1))
    _assign(
        db_session,
        studio["cam2"],
        studio["e1"],
        now=NOW + timedelta(minutes=2),
        expected_return=(NOW + timedelta(minutes=2) - timedelta(hours=1)).isoformat(),
        client_id=studio["client"],
    )
    view_time = NOW + timedelta(minutes=3)
    groups = deployments.get_active_deployments(db_session, now=view_time)
    assert [g.employee.id for g in groups] == [studio["e1"], studio["e2"]]
    assert groups[0].has_overdue is True
    assert [a.equipment.serial_number for a in groups[0].assignments] == ["CAM-2", "CAM-1"]
    assert groups[0].assignments[0].client.name == "Northwind Weddings"
    assert groups[0].assignments[0].equipment.category == "Camera"

    # 4. return CAM-1, it leaves the view and can go to E2
    assert deployments.quick_return(db_session, cam1, now=view_time).success
    groups = deployments.get_active_deployments(db_session, now=view_time)
    ids = [a.id for g in groups for a in g.assignments]
    assert cam1 not in ids
    assert sum(g.total_items for g in groups) == 2
    _assign(db_session, studio["cam1"], studio["e2"], now=view_time + timedelta(minutes=1))

    # 5. returning CAM-1's first assignment again changes nothing
    again = deployments.quick_return(db_session, cam1, now=view_time + timedelta(hours=1))
    assert again.kind == "not_found"


def test_overdue_flips_exactly_after_the_deadline(db_session, studio):
    deadline = NOW + timedelta(hours=4)
    _assign(db_session, studio["cam1"], studio["e1"], now=NOW, expected_return=deadline.isoformat())

    def flagged(at):
        return deployments.get_active_deployments(db_session, now=at)[0].has_overdue

    assert flagged(deadline - timedelta(seconds=1)) is False
    assert flagged(deadline) is False
    assert flagged(deadline + timedelta(seconds=1)) is True


def test_timestamps_come_back_as_utc(db_session, studio):
    _assign(db_session, studio["cam1"], studio["e1"], now=NOW, expected_return="2026-03-15T18:00:00Z")
    (group,) = deployments.get_active_deployments(db_session, now=NOW)
    assignment = group.assignments[0]

    assert assignment.assigned_at == NOW
    assert assignment.expected_return == datetime(2026, 3, 15, 18, 0, tzinfo=timezone.utc)
    assert assignment.assigned_at.tzinfo is not None


def test_query_failure_is_a_hard_failure(db_session, monkeypatch):
    def broken_execute(*args, **kwargs):
        raise OperationalError("SELECT", {}, Exception("unable to open database file"))

    monkeypatch.setattr(db_session, "execute", broken_execute)
    with pytest.raises(StoreError):
        deployments.get_active_deployments(db_session, now=NOW)


# ---------- pickers & history ----------
def test_form_data_lists_only_assignable_rows(db_session, studio):
    crud.create_equipment(db_session, name="Old flash", serial_number="LGT-2", status="RETIRED")
    crud.create_employee(db_session, email="guest@studio.test", full_name="Guest", role="CLIENT")
    gone = crud.create_employee(db_session, email="gone@studio.test", full_name="Gone")
    crud.soft_delete(db_session, EmployeeORM, gone)
    crud.soft_delete(db_session, ClientORM, studio["client"])

    form = deployments.get_assignment_form_data(db_session)

    assert [q.serial_number for q in form.equipment] == ["CAM-1", "CAM-2"]
    assert [e.full_name for e in form.employees] == ["Ava Stone", "Ben Cole"]
    assert form.clients == []


def test_history_keeps_closed_assignments_newest_first(db_session, studio):
    first = _assign(db_session, studio["cam1"], studio["e1"], now=NOW)
    deployments.quick_return(db_session, first, now=NOW + timedelta(hours=1))
    second = _assign(db_session, studio["cam1"], studio["e2"], now=NOW + timedelta(hours=2))

    history = deployments.get_assignment_history(db_session, studio["cam1"])

    assert [h.id for h in history] == [second, first]
    assert history[1].status == "returned"
    assert history[1].returned_at == NOW + timedelta(hours=1)
    assert history[0].assigned_by == ACTOR


def test_history_failure_degrades_to_empty(db_session, monkeypatch):
    def broken_execute(*args, **kwargs):
        raise OperationalError("SELECT", {}, Exception("no such table"))

    monkeypatch.setattr(db_session, "execute", broken_execute)
    assert deployments.get_assignment_history(db_session, "whatever") == []
