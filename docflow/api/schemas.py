"""
Pydantic schemas for API requests
"""

from datetime import datetime
from typing import List, Optional
from pydantic import BaseModel, Field


class CreateWorkflowRequest(BaseModel):
    document_id: str
    approver_ids: List[str] = Field(..., description="Approvers in the order they must act")
    workflow_type: str = Field("approval", description="Workflow type (approval, review, signature)")
    priority: str = Field("medium", description="Priority (low, medium, high, urgent)")
    due_date: Optional[datetime] = None
    comments: Optional[str] = None


class ApproveStepRequest(BaseModel):
    comments: Optional[str] = None


class RejectWorkflowRequest(BaseModel):
    comments: str = Field(..., description="Reason for the rejection")


class CancelWorkflowRequest(BaseModel):
    reason: str
