from typing import Optional
from urllib.parse import urlencode

from fastapi import APIRouter, Depends, Form, Request
from fastapi.responses import HTMLResponse, RedirectResponse
from sqlalchemy.orm import Session

import deployments
from dependencies import get_db, get_optional_actor_id
from models import CommandResult

router = APIRouter()
DEPLOYMENTS_UI = "/ui/deployments"
UNAUTHORIZED = CommandResult(success=False, error="Unauthorized", kind="validation")


def _redirect(result: CommandResult) -> RedirectResponse:
    url = DEPLOYMENTS_UI
    if not result.success and result.error:
        url = f"{DEPLOYMENTS_UI}?{urlencode({'error': result.error})}"
    return RedirectResponse(url=url, status_code=303)


@router.get("/ui/deployments", response_class=HTMLResponse)
def deployments_ui(
    request: Request,
    error: Optional[str] = None,
    db: Session = Depends(get_db),
):
    groups = deployments.get_active_deployments(db)
    summary = deployments.summarize(groups)
    form_data = deployments.get_assignment_form_data(db)

    templates = request.app.state.templates
    return templates.TemplateResponse(
        request,
        "deployments.html",
        {
            "groups": groups,
            "summary": summary,
            "form": form_data,
            "error": error or "",
        },
    )


@router.post("/ui/deployments")
def create_assignment_ui(
    equipment_id: str = Form(...),
    employee_id: str = Form(...),
    client_id: Optional[str] = Form(None),
    expected_return: Optional[str] = Form(None),
    location: Optional[str] = Form(None),
    notes: Optional[str] = Form(None),
    actor_id: Optional[str] = Depends(get_optional_actor_id),
    db: Session = Depends(get_db),
):
    result = deployments.create_assignment(
        db,
        {
            "equipment_id": equipment_id,
            "employee_id": employee_id,
            "client_id": client_id,
            "expected_return": expected_return,
            "location": location,
            "notes": notes,
        },
        acting_user_id=actor_id,
    )
    return _redirect(result)


@router.post("/ui/assignments/{assignment_id}/return")
def quick_return_ui(
    assignment_id: str,
    notes: Optional[str] = Form(None),
    actor_id: Optional[str] = Depends(get_optional_actor_id),
    db: Session = Depends(get_db),
):
    if not actor_id:
        return _redirect(UNAUTHORIZED)
    result = deployments.quick_return(db, assignment_id, notes, acting_user_id=actor_id)
    return _redirect(result)
