from fastapi import APIRouter, Depends, Response
from sqlalchemy.orm import Session

import deployments
from dependencies import get_actor_id, get_db
from models import (
    AssignmentFormData,
    AssignmentHistoryEntry,
    CommandResult,
    DeploymentGroup,
    DeploymentSummary,
    ReturnRequest,
)

router = APIRouter()

ERROR_STATUS = {
    "validation": 422,
    "conflict": 409,
    "not_found": 404,
    "store": 503,
}


def _status_for(result: CommandResult, success_status: int) -> int:
    if result.success:
        return success_status
    return ERROR_STATUS.get(result.kind or "", 400)


@router.get("/deployments", response_model=list[DeploymentGroup])
def list_deployments_api(db: Session = Depends(get_db)):
    return deployments.get_active_deployments(db)


@router.get("/deployments/summary", response_model=DeploymentSummary)
def deployments_summary_api(db: Session = Depends(get_db)):
    return deployments.summarize(deployments.get_active_deployments(db))


@router.get("/deployments/form-data", response_model=AssignmentFormData)
def assignment_form_data_api(db: Session = Depends(get_db)):
    return deployments.get_assignment_form_data(db)


@router.post("/assignments", response_model=CommandResult, status_code=201)
def create_assignment_api(
    body: dict,
    response: Response,
    actor_id: str = Depends(get_actor_id),
    db: Session = Depends(get_db),
):
    # validated inside the command so messages match every other caller
    result = deployments.create_assignment(db, body, acting_user_id=actor_id)
    response.status_code = _status_for(result, 201)
    return result


@router.post("/assignments/{assignment_id}/return", response_model=CommandResult)
def quick_return_api(
    assignment_id: str,
    response: Response,
    body: ReturnRequest | None = None,
    actor_id: str = Depends(get_actor_id),
    db: Session = Depends(get_db),
):
    notes = body.notes if body else None
    result = deployments.quick_return(db, assignment_id, notes, acting_user_id=actor_id)
    response.status_code = _status_for(result, 200)
    return result


@router.get("/equipment/{equipment_id}/assignments", response_model=list[AssignmentHistoryEntry])
def assignment_history_api(equipment_id: str, db: Session = Depends(get_db)):
    return deployments.get_assignment_history(db, equipment_id)
