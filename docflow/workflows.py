"""
Workflow Engine Module

Sequential multi-approver document approval. A workflow walks an ordered
chain of approvers; each approval hands the document to the next approver,
the last approval approves the document, and a single rejection or a
cancellation ends the chain.

Every mutation re-asserts the state it validated with a conditional write
(compare-and-swap on status and current approver), so a lost race surfaces as
InvalidStateError instead of a corrupted workflow. Audit records and
notifications hang off domain events published after the write commits.
"""

import math
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Type, Union

from .audit import AuditEventType, AuditTrail
from .config import DocflowConfig, get_config
from .documents import Document, DocumentStatus, DocumentStore
from .errors import (
    ConflictError, ForbiddenError, InvalidStateError, NotFoundError,
    PersistenceError, ValidationError
)
from .events import DomainEvent, EventDispatcher, EventPayload
from .logging_config import get_logger, log_action
from .rbac import AccessPolicy
from .storage import StorageInterface, StorageRecord, parse_datetime


class WorkflowType(Enum):
    """Kinds of workflow; informational only"""
    APPROVAL = "approval"
    REVIEW = "review"
    SIGNATURE = "signature"


class WorkflowStatus(Enum):
    """Status of a workflow"""
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    APPROVED = "approved"
    REJECTED = "rejected"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self not in ACTIVE_STATUSES


ACTIVE_STATUSES = (WorkflowStatus.PENDING, WorkflowStatus.IN_PROGRESS)


class WorkflowPriority(Enum):
    """Priority used for sorting and filtering"""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


class StepStatus(Enum):
    """Status of one approver's step"""
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


@dataclass
class Workflow(StorageRecord):
    """A document moving through an approval chain"""
    document_id: str
    workflow_type: WorkflowType
    status: WorkflowStatus
    requester_id: str
    current_approver_id: Optional[str]
    priority: WorkflowPriority = WorkflowPriority.MEDIUM
    due_date: Optional[datetime] = None
    comments: Optional[str] = None
    completed_at: Optional[datetime] = None

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES

    def is_overdue(self, now: Optional[datetime] = None) -> bool:
        now = now or datetime.now(timezone.utc)
        return self.is_active and self.due_date is not None and self.due_date < now

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Workflow':
        data = dict(data)
        data['workflow_type'] = WorkflowType(data['workflow_type'])
        data['status'] = WorkflowStatus(data['status'])
        data['priority'] = WorkflowPriority(data['priority'])
        data['due_date'] = parse_datetime(data.get('due_date'))
        data['completed_at'] = parse_datetime(data.get('completed_at'))
        return super().from_dict(data)


@dataclass
class WorkflowStep(StorageRecord):
    """One approver's slot in a workflow's chain"""
    workflow_id: str
    step_order: int
    approver_id: str
    status: StepStatus = StepStatus.PENDING
    comments: Optional[str] = None
    decision_date: Optional[datetime] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'WorkflowStep':
        data = dict(data)
        data['status'] = StepStatus(data['status'])
        data['decision_date'] = parse_datetime(data.get('decision_date'))
        return super().from_dict(data)


@dataclass
class ApprovalResult:
    """Outcome of approving a step"""
    workflow: Workflow
    is_completed: bool


@dataclass
class WorkflowDetails:
    """A workflow with its steps in chain order"""
    workflow: Workflow
    steps: List[WorkflowStep] = field(default_factory=list)


@dataclass
class WorkflowPage:
    """One page of a workflow listing"""
    workflows: List[Workflow]
    page: int
    limit: int
    total: int

    @property
    def total_pages(self) -> int:
        return math.ceil(self.total / self.limit) if self.total else 0


AUDIT_EVENT_TYPES = {
    DomainEvent.WORKFLOW_CREATED: AuditEventType.WORKFLOW_CREATED,
    DomainEvent.WORKFLOW_STEP_APPROVED: AuditEventType.WORKFLOW_STEP_APPROVED,
    DomainEvent.WORKFLOW_APPROVED: AuditEventType.WORKFLOW_STEP_APPROVED,
    DomainEvent.WORKFLOW_REJECTED: AuditEventType.WORKFLOW_REJECTED,
    DomainEvent.WORKFLOW_CANCELLED: AuditEventType.WORKFLOW_CANCELLED,
}


def _coerce_enum(enum_cls: Type[Enum], value: Union[Enum, str], field_name: str):
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(value)
    except ValueError:
        allowed = ", ".join(member.value for member in enum_cls)
        raise ValidationError(f"Invalid {field_name} '{value}' (expected one of: {allowed})")


class WorkflowEngine:
    """Approval state machine over the storage gateway"""

    WORKFLOWS_TABLE = "workflows"
    STEPS_TABLE = "workflow_steps"

    def __init__(
        self,
        storage: StorageInterface,
        documents: DocumentStore,
        access: AccessPolicy,
        audit_manager: Optional[AuditTrail] = None,
        event_dispatcher: Optional[EventDispatcher] = None,
        config: Optional[DocflowConfig] = None
    ):
        self.storage = storage
        self.documents = documents
        self.access = access
        self.audit = audit_manager
        self.events = event_dispatcher or EventDispatcher()
        self.config = config or get_config()
        self.logger = get_logger("docflow.workflows")

        if self.audit and self.config.enable_audit_logging:
            self.events.subscribe_all(self._record_audit)

    # Creation

    def create_workflow(
        self,
        document_id: str,
        approver_ids: List[str],
        requester_id: str,
        workflow_type: Union[WorkflowType, str] = WorkflowType.APPROVAL,
        priority: Union[WorkflowPriority, str] = WorkflowPriority.MEDIUM,
        due_date: Optional[datetime] = None,
        comments: Optional[str] = None
    ) -> Workflow:
        """
        Start a workflow for a document with an ordered chain of approvers.

        Raises:
            ValidationError: empty/duplicate/unknown approvers or bad fields
            NotFoundError: document does not exist
            ForbiddenError: caller may not start a workflow for the document
            ConflictError: the document already has an active workflow
            PersistenceError: the workflow could not be stored
        """
        workflow_type = _coerce_enum(WorkflowType, workflow_type, "workflow type")
        priority = _coerce_enum(WorkflowPriority, priority, "priority")
        if not approver_ids:
            raise ValidationError("At least one approver is required")
        if len(set(approver_ids)) != len(approver_ids):
            raise ValidationError("An approver can appear only once in a chain")
        comments = self._check_length(comments, "Comments", maximum=self.config.max_comment_length)
        if due_date is not None and due_date.tzinfo is None:
            due_date = due_date.replace(tzinfo=timezone.utc)

        document = self.documents.get_document(document_id)
        if not document:
            raise NotFoundError(f"Document {document_id} not found")
        self.access.ensure_can_create(requester_id, document)
        self.access.resolve_approvers(approver_ids)

        if document.status == DocumentStatus.PENDING or self._active_workflows_for(document_id):
            raise ConflictError(
                "An active workflow already exists for this document",
                details={'document_id': document_id}
            )

        now = datetime.now(timezone.utc)
        workflow = Workflow(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            document_id=document_id,
            workflow_type=workflow_type,
            status=WorkflowStatus.PENDING,
            requester_id=requester_id,
            current_approver_id=approver_ids[0],
            priority=priority,
            due_date=due_date,
            comments=comments
        )
        steps = [
            WorkflowStep(
                id=str(uuid.uuid4()),
                created_at=now,
                updated_at=now,
                workflow_id=workflow.id,
                step_order=order,
                approver_id=approver_id
            )
            for order, approver_id in enumerate(approver_ids, start=1)
        ]

        # Only one concurrent creator can move the document out of the status it read
        if not self.documents.claim_for_review(document_id, document.status):
            raise ConflictError(
                "An active workflow already exists for this document",
                details={'document_id': document_id}
            )
        self._insert_workflow(workflow, steps, document)

        log_action(
            self.logger, "info", "Workflow created",
            user_id=requester_id, action="create_workflow", resource=f"workflow:{workflow.id}",
            extra={'document_id': document_id, 'approvers': len(approver_ids)}
        )
        self._publish(
            DomainEvent.WORKFLOW_CREATED, workflow, requester_id,
            recipients=[approver_ids[0]],
            details={
                'document_id': document_id,
                'workflow_type': workflow_type.value,
                'approvers_count': len(approver_ids)
            }
        )
        return workflow

    def _insert_workflow(self, workflow: Workflow, steps: List[WorkflowStep],
                         previous_document: Document) -> None:
        """
        Write the workflow and its full step set. Backends with transactions
        roll back on their own; for the others the rows written so far are
        deleted. Either way the document is put back as it was before
        the failure is reported.
        """
        try:
            with self.storage.atomic():
                self.storage.save(self.WORKFLOWS_TABLE, workflow.id, workflow.to_dict())
                for step in steps:
                    self.storage.save(self.STEPS_TABLE, step.id, step.to_dict())
        except Exception as e:
            self.logger.error(f"Creating steps for workflow {workflow.id} failed: {e}")
            self._discard_workflow(workflow, steps, previous_document)
            raise PersistenceError(
                "Error creating workflow steps",
                details={'document_id': workflow.document_id}
            ) from e

    def _discard_workflow(self, workflow: Workflow, steps: List[WorkflowStep],
                          previous_document: Document) -> None:
        try:
            for step in steps:
                self.storage.delete(self.STEPS_TABLE, step.id)
            self.storage.delete(self.WORKFLOWS_TABLE, workflow.id)
            self.documents.restore(previous_document)
        except Exception:
            self.logger.exception(f"Could not discard workflow {workflow.id}")

    # Transitions

    def approve_step(self, workflow_id: str, user_id: str,
                     comments: Optional[str] = None) -> ApprovalResult:
        """
        Approve the caller's step and hand the workflow to the next approver,
        or approve the document if this was the last step.
        """
        comments = self._check_length(comments, "Comments", maximum=self.config.max_comment_length)
        workflow, step = self._load_for_decision(workflow_id, user_id)

        next_step = self._next_pending_step(workflow.id, step.step_order)
        now = datetime.now(timezone.utc)
        if next_step:
            updates = {
                'status': WorkflowStatus.IN_PROGRESS.value,
                'current_approver_id': next_step.approver_id,
            }
        else:
            updates = {
                'status': WorkflowStatus.APPROVED.value,
                'current_approver_id': None,
                'completed_at': now.isoformat(),
            }
        is_completed = next_step is None

        with self.storage.atomic():
            updated = self._claim_transition(workflow, updates, now)
            self._decide_step(workflow, step, StepStatus.APPROVED, comments, now)
            if is_completed:
                self.documents.set_status(workflow.document_id, DocumentStatus.APPROVED, user_id)

        log_action(
            self.logger, "info", "Workflow step approved",
            user_id=user_id, action="approve_step", resource=f"workflow:{workflow.id}",
            extra={'step_order': step.step_order, 'completed': is_completed}
        )
        if is_completed:
            self._publish(
                DomainEvent.WORKFLOW_APPROVED, updated, user_id,
                recipients=[updated.requester_id],
                details={
                    'step_order': step.step_order,
                    'comments': comments,
                    'workflow_status': updated.status.value,
                    'is_completed': True
                }
            )
        else:
            self._publish(
                DomainEvent.WORKFLOW_STEP_APPROVED, updated, user_id,
                recipients=[next_step.approver_id],
                details={
                    'step_order': step.step_order,
                    'comments': comments,
                    'workflow_status': updated.status.value,
                    'is_completed': False
                }
            )
        return ApprovalResult(workflow=updated, is_completed=is_completed)

    def reject_workflow(self, workflow_id: str, user_id: str, comments: str) -> Workflow:
        """
        Reject the workflow at the caller's step. Always terminal; later steps
        keep their pending status.
        """
        comments = self._check_length(
            comments, "Rejection comments",
            minimum=self.config.rejection_min_length,
            maximum=self.config.max_comment_length
        )
        workflow, step = self._load_for_decision(workflow_id, user_id)

        now = datetime.now(timezone.utc)
        updates = {
            'status': WorkflowStatus.REJECTED.value,
            'current_approver_id': None,
            'completed_at': now.isoformat(),
        }
        with self.storage.atomic():
            updated = self._claim_transition(workflow, updates, now)
            self._decide_step(workflow, step, StepStatus.REJECTED, comments, now)
            self.documents.set_status(workflow.document_id, DocumentStatus.REJECTED, user_id)

        log_action(
            self.logger, "info", "Workflow rejected",
            user_id=user_id, action="reject_workflow", resource=f"workflow:{workflow.id}",
            extra={'step_order': step.step_order}
        )
        self._publish(
            DomainEvent.WORKFLOW_REJECTED, updated, user_id,
            recipients=[updated.requester_id],
            details={'step_order': step.step_order, 'comments': comments}
        )
        return updated

    def cancel_workflow(self, workflow_id: str, user_id: str, reason: str) -> Workflow:
        """
        Cancel an active workflow and return the document to draft. The reason
        is appended to the workflow comments.
        """
        reason = self._check_length(
            reason, "Cancellation reason",
            minimum=self.config.cancellation_min_length,
            maximum=self.config.max_reason_length
        )
        workflow = self._load_workflow(workflow_id)
        self.access.ensure_can_cancel(user_id, workflow)
        if not workflow.is_active:
            raise InvalidStateError(
                "Workflow cannot be cancelled in its current state",
                details={'workflow_id': workflow_id, 'status': workflow.status.value}
            )

        note = f"CANCELLED: {reason}"
        now = datetime.now(timezone.utc)
        updates = {
            'status': WorkflowStatus.CANCELLED.value,
            'current_approver_id': None,
            'completed_at': now.isoformat(),
            'comments': f"{workflow.comments}\n\n{note}" if workflow.comments else note,
        }
        with self.storage.atomic():
            updated = self._claim_transition(
                workflow, updates, now, extra_expected={'comments': workflow.comments}
            )
            self.documents.set_status(workflow.document_id, DocumentStatus.DRAFT, user_id)

        pending_approvers = [
            step.approver_id for step in self.get_steps(workflow.id)
            if step.status == StepStatus.PENDING
        ]

        log_action(
            self.logger, "info", "Workflow cancelled",
            user_id=user_id, action="cancel_workflow", resource=f"workflow:{workflow.id}"
        )
        self._publish(
            DomainEvent.WORKFLOW_CANCELLED, updated, user_id,
            recipients=pending_approvers,
            details={'reason': reason}
        )
        return updated

    # Queries

    def get_workflow(self, workflow_id: str, user_id: Optional[str] = None) -> WorkflowDetails:
        """Get a workflow and its ordered steps; with a user, visibility is enforced"""
        workflow = self._load_workflow(workflow_id)
        if user_id is not None and not self.access.can_view(user_id, workflow):
            raise ForbiddenError(
                "You are not allowed to view this workflow",
                details={'workflow_id': workflow_id}
            )
        return WorkflowDetails(workflow=workflow, steps=self.get_steps(workflow_id))

    def get_steps(self, workflow_id: str) -> List[WorkflowStep]:
        rows = self.storage.find(self.STEPS_TABLE, {'workflow_id': workflow_id})
        steps = [WorkflowStep.from_dict(row) for row in rows]
        return sorted(steps, key=lambda s: s.step_order)

    def list_workflows(
        self,
        user_id: str,
        status: Optional[Union[WorkflowStatus, str]] = None,
        priority: Optional[Union[WorkflowPriority, str]] = None,
        assigned_to_me: bool = False,
        page: int = 1,
        limit: Optional[int] = None
    ) -> WorkflowPage:
        """
        List workflows visible to the user, newest first.

        Users without VIEW_ALL_WORKFLOWS only see workflows they requested or
        currently have to act on; assigned_to_me narrows to the latter.
        """
        limit = self.config.default_page_size if limit is None else limit
        if page < 1:
            raise ValidationError("Page must be at least 1")
        if not 1 <= limit <= self.config.max_page_size:
            raise ValidationError(f"Limit must be between 1 and {self.config.max_page_size}")

        filters = {}
        if status is not None:
            filters['status'] = _coerce_enum(WorkflowStatus, status, "status").value
        if priority is not None:
            filters['priority'] = _coerce_enum(WorkflowPriority, priority, "priority").value

        workflows = [Workflow.from_dict(row) for row in self.storage.find(self.WORKFLOWS_TABLE, filters)]

        if assigned_to_me:
            workflows = [w for w in workflows if w.current_approver_id == user_id]
        elif not self.access.sees_all_workflows(user_id):
            workflows = [w for w in workflows if user_id in (w.requester_id, w.current_approver_id)]

        workflows.sort(key=lambda w: (w.created_at, w.id), reverse=True)
        offset = (page - 1) * limit
        return WorkflowPage(
            workflows=workflows[offset:offset + limit],
            page=page,
            limit=limit,
            total=len(workflows)
        )

    def list_overdue(self, now: Optional[datetime] = None) -> List[Workflow]:
        """Active workflows whose due date has passed, most overdue first"""
        now = now or datetime.now(timezone.utc)
        overdue = [w for w in self._all_workflows() if w.is_overdue(now)]
        return sorted(overdue, key=lambda w: w.due_date)

    def get_statistics(self, user_id: str, now: Optional[datetime] = None) -> Dict[str, int]:
        """Workflow counts per status plus the number of overdue workflows"""
        self.access.ensure_can_view_stats(user_id)
        now = now or datetime.now(timezone.utc)
        workflows = self._all_workflows()

        stats = {'total': len(workflows)}
        for status in WorkflowStatus:
            stats[status.value] = sum(1 for w in workflows if w.status == status)
        stats['overdue'] = sum(1 for w in workflows if w.is_overdue(now))
        return stats

    # Private helper methods

    def _load_workflow(self, workflow_id: str) -> Workflow:
        data = self.storage.load(self.WORKFLOWS_TABLE, workflow_id)
        if not data:
            raise NotFoundError(f"Workflow {workflow_id} not found")
        return Workflow.from_dict(data)

    def _all_workflows(self) -> List[Workflow]:
        return [Workflow.from_dict(row) for row in self.storage.load_all(self.WORKFLOWS_TABLE)]

    def _active_workflows_for(self, document_id: str) -> List[Workflow]:
        rows = self.storage.find(self.WORKFLOWS_TABLE, {'document_id': document_id})
        return [w for w in (Workflow.from_dict(row) for row in rows) if w.is_active]

    def _load_for_decision(self, workflow_id: str, user_id: str):
        """Preconditions shared by approve and reject"""
        workflow = self._load_workflow(workflow_id)
        if workflow.current_approver_id != user_id:
            raise ForbiddenError(
                "You are not the current approver of this workflow",
                details={'workflow_id': workflow_id}
            )
        if not workflow.is_active:
            raise InvalidStateError(
                "Workflow is not in a state that allows a decision",
                details={'workflow_id': workflow_id, 'status': workflow.status.value}
            )

        rows = self.storage.find(self.STEPS_TABLE, {
            'workflow_id': workflow_id,
            'approver_id': user_id,
            'status': StepStatus.PENDING.value,
        })
        if len(rows) != 1:
            raise InvalidStateError(
                "No pending step found for this user",
                details={'workflow_id': workflow_id}
            )
        return workflow, WorkflowStep.from_dict(rows[0])

    def _next_pending_step(self, workflow_id: str, after_order: int) -> Optional[WorkflowStep]:
        rows = self.storage.find(self.STEPS_TABLE, {
            'workflow_id': workflow_id,
            'status': StepStatus.PENDING.value,
        })
        later = [WorkflowStep.from_dict(row) for row in rows if row['step_order'] > after_order]
        return min(later, key=lambda s: s.step_order) if later else None

    def _claim_transition(self, workflow: Workflow, updates: Dict[str, Any], now: datetime,
                          extra_expected: Optional[Dict[str, Any]] = None) -> Workflow:
        """Write the workflow only if status and current approver are still what we validated"""
        expected = {
            'status': workflow.status.value,
            'current_approver_id': workflow.current_approver_id,
        }
        if extra_expected:
            expected.update(extra_expected)

        updated = self.storage.compare_and_swap(
            self.WORKFLOWS_TABLE, workflow.id, expected,
            dict(updates, updated_at=now.isoformat())
        )
        if updated is None:
            raise InvalidStateError(
                "Workflow was modified concurrently; reload it and try again",
                details={'workflow_id': workflow.id}
            )
        return Workflow.from_dict(updated)

    def _decide_step(self, workflow: Workflow, step: WorkflowStep, decision: StepStatus,
                     comments: Optional[str], now: datetime) -> None:
        decided = self.storage.compare_and_swap(
            self.STEPS_TABLE, step.id,
            {'status': StepStatus.PENDING.value, 'approver_id': step.approver_id},
            {
                'status': decision.value,
                'comments': comments,
                'decision_date': now.isoformat(),
                'updated_at': now.isoformat(),
            }
        )
        if decided is None:
            raise InvalidStateError(
                "Step was decided concurrently; reload the workflow and try again",
                details={'workflow_id': workflow.id, 'step_order': step.step_order}
            )

    def _check_length(self, value: Optional[str], label: str,
                      minimum: int = 0, maximum: Optional[int] = None) -> Optional[str]:
        if value is not None:
            value = value.strip()
        length = len(value) if value else 0
        if length < minimum:
            raise ValidationError(f"{label} must be at least {minimum} characters")
        if maximum is not None and length > maximum:
            raise ValidationError(f"{label} must be at most {maximum} characters")
        return value or None

    def _publish(self, event_type: DomainEvent, workflow: Workflow, actor_id: str,
                 recipients: List[str], details: Dict[str, Any]) -> None:
        """Publish a post-commit event; delivery problems never reach the caller"""
        try:
            self.events.publish(EventPayload(
                event_type=event_type,
                entity_type='workflow',
                entity_id=workflow.id,
                data={
                    'actor_id': actor_id,
                    'document_id': workflow.document_id,
                    'requester_id': workflow.requester_id,
                    'status': workflow.status.value,
                    'recipients': recipients,
                    'details': details,
                }
            ))
        except Exception as e:
            self.logger.error(f"Error publishing event {event_type.value}: {e}")

    def _record_audit(self, event: EventPayload) -> None:
        audit_type = AUDIT_EVENT_TYPES.get(event.event_type)
        if audit_type is None:
            return
        self.audit.log_event(
            audit_type,
            event.entity_type,
            event.entity_id,
            event.data.get('details', {}),
            event.data.get('actor_id')
        )
