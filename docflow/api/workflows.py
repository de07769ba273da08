"""
Workflow endpoints
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query, status

from .auth import DocflowSystem, get_current_user, get_docflow_system
from .schemas import (
    ApproveStepRequest, CancelWorkflowRequest, CreateWorkflowRequest, RejectWorkflowRequest
)


router = APIRouter()


@router.get("/")
def list_workflows(
    page: int = Query(1),
    limit: Optional[int] = Query(None),
    status: Optional[str] = None,
    priority: Optional[str] = None,
    assigned_to_me: bool = False,
    user_id: str = Depends(get_current_user),
    system: DocflowSystem = Depends(get_docflow_system)
):
    """List workflows visible to the caller, newest first"""
    result = system.workflow_engine.list_workflows(
        user_id,
        status=status,
        priority=priority,
        assigned_to_me=assigned_to_me,
        page=page,
        limit=limit
    )
    return {
        "workflows": [workflow.to_dict() for workflow in result.workflows],
        "pagination": {
            "page": result.page,
            "limit": result.limit,
            "total": result.total,
            "total_pages": result.total_pages
        }
    }


@router.get("/stats/overview")
def get_workflow_stats(
    user_id: str = Depends(get_current_user),
    system: DocflowSystem = Depends(get_docflow_system)
):
    """Workflow counts per status"""
    return {"stats": system.workflow_engine.get_statistics(user_id)}


@router.get("/{workflow_id}")
def get_workflow(
    workflow_id: str,
    user_id: str = Depends(get_current_user),
    system: DocflowSystem = Depends(get_docflow_system)
):
    """Get a workflow with its steps"""
    details = system.workflow_engine.get_workflow(workflow_id, user_id)
    return {
        "workflow": details.workflow.to_dict(),
        "steps": [step.to_dict() for step in details.steps]
    }


@router.post("/", status_code=status.HTTP_201_CREATED)
def create_workflow(
    request: CreateWorkflowRequest,
    user_id: str = Depends(get_current_user),
    system: DocflowSystem = Depends(get_docflow_system)
):
    """Start an approval workflow for a document"""
    workflow = system.workflow_engine.create_workflow(
        document_id=request.document_id,
        approver_ids=request.approver_ids,
        requester_id=user_id,
        workflow_type=request.workflow_type,
        priority=request.priority,
        due_date=request.due_date,
        comments=request.comments
    )
    return {"message": "Workflow created", "workflow": workflow.to_dict()}


@router.post("/{workflow_id}/approve")
def approve_step(
    workflow_id: str,
    request: ApproveStepRequest,
    user_id: str = Depends(get_current_user),
    system: DocflowSystem = Depends(get_docflow_system)
):
    """Approve the caller's step"""
    result = system.workflow_engine.approve_step(workflow_id, user_id, request.comments)
    return {
        "message": "Workflow approved" if result.is_completed else "Step approved",
        "workflow": result.workflow.to_dict(),
        "is_completed": result.is_completed
    }


@router.post("/{workflow_id}/reject")
def reject_workflow(
    workflow_id: str,
    request: RejectWorkflowRequest,
    user_id: str = Depends(get_current_user),
    system: DocflowSystem = Depends(get_docflow_system)
):
    """Reject the workflow at the caller's step"""
    workflow = system.workflow_engine.reject_workflow(workflow_id, user_id, request.comments)
    return {"message": "Workflow rejected", "workflow": workflow.to_dict()}


@router.post("/{workflow_id}/cancel")
def cancel_workflow(
    workflow_id: str,
    request: CancelWorkflowRequest,
    user_id: str = Depends(get_current_user),
    system: DocflowSystem = Depends(get_docflow_system)
):
    """Cancel an active workflow"""
    workflow = system.workflow_engine.cancel_workflow(workflow_id, user_id, request.reason)
    return {"message": "Workflow cancelled", "workflow": workflow.to_dict()}
