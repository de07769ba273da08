"""
Role-Based Access Control (RBAC) Module

Users, roles and permissions, plus the AccessPolicy the workflow engine
consults before every mutation. Authentication itself happens upstream.
"""

import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Optional, Set, TYPE_CHECKING

from .audit import AuditEventType, AuditTrail
from .errors import ForbiddenError, ValidationError, NotFoundError
from .storage import StorageInterface, StorageRecord

if TYPE_CHECKING:
    from .documents import Document
    from .workflows import Workflow


class Role(Enum):
    """User roles"""
    ADMIN = "admin"
    EDITOR = "editor"
    VIEWER = "viewer"


class Permission(Enum):
    """System permissions"""
    CREATE_WORKFLOW = "create_workflow"
    CANCEL_ANY_WORKFLOW = "cancel_any_workflow"
    VIEW_ALL_WORKFLOWS = "view_all_workflows"
    VIEW_WORKFLOW_STATS = "view_workflow_stats"


ROLE_PERMISSIONS: Dict[Role, Set[Permission]] = {
    Role.ADMIN: set(Permission),
    Role.EDITOR: {Permission.CREATE_WORKFLOW, Permission.VIEW_WORKFLOW_STATS},
    Role.VIEWER: set(),
}


@dataclass
class User(StorageRecord):
    """System user"""
    username: str
    email: str
    full_name: str
    role: Role = Role.VIEWER
    is_active: bool = True

    @property
    def permissions(self) -> Set[Permission]:
        return ROLE_PERMISSIONS[self.role]

    def has_permission(self, permission: Permission) -> bool:
        return self.is_active and permission in self.permissions

    @classmethod
    def from_dict(cls, data) -> 'User':
        data = dict(data)
        data['role'] = Role(data['role'])
        return super().from_dict(data)


class RBACManager:
    """Manages users and answers permission questions"""

    def __init__(self, storage: StorageInterface, audit_manager: Optional[AuditTrail] = None):
        self.storage = storage
        self.audit = audit_manager
        self.table_name = "users"

    def create_user(self, username: str, email: str, full_name: str,
                    role: Role = Role.VIEWER, user_id: Optional[str] = None,
                    created_by: str = "system") -> User:
        """Create a new user"""
        if not username or not username.strip():
            raise ValidationError("Username is required")
        if self.get_user_by_username(username):
            raise ValidationError(f"Username '{username}' already exists")

        now = datetime.now(timezone.utc)
        user = User(
            id=user_id or str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            username=username,
            email=email,
            full_name=full_name,
            role=role
        )
        self.storage.save(self.table_name, user.id, user.to_dict())

        if self.audit:
            self.audit.log_event(
                AuditEventType.USER_CREATED,
                'user',
                user.id,
                {'username': username, 'role': role.value},
                created_by
            )

        return user

    def get_user(self, user_id: str) -> Optional[User]:
        data = self.storage.load(self.table_name, user_id)
        if not data:
            return None
        return User.from_dict(data)

    def get_user_by_username(self, username: str) -> Optional[User]:
        found = self.storage.find(self.table_name, {'username': username})
        return User.from_dict(found[0]) if found else None

    def list_users(self, role: Optional[Role] = None, is_active: Optional[bool] = None) -> List[User]:
        filters = {}
        if role is not None:
            filters['role'] = role.value
        if is_active is not None:
            filters['is_active'] = is_active
        users = [User.from_dict(data) for data in self.storage.find(self.table_name, filters)]
        return sorted(users, key=lambda u: u.username)

    def deactivate_user(self, user_id: str) -> User:
        updated = self.storage.compare_and_swap(
            self.table_name, user_id, {},
            {'is_active': False, 'updated_at': datetime.now(timezone.utc).isoformat()}
        )
        if updated is None:
            raise NotFoundError(f"User {user_id} not found")
        return User.from_dict(updated)

    def check_permission(self, user_id: str, permission: Permission) -> bool:
        user = self.get_user(user_id)
        return bool(user and user.has_permission(permission))

    def is_admin(self, user_id: str) -> bool:
        user = self.get_user(user_id)
        return bool(user and user.is_active and user.role == Role.ADMIN)


class AccessPolicy:
    """Authorization rules for workflow operations"""

    def __init__(self, rbac: RBACManager):
        self.rbac = rbac

    def require_active_user(self, user_id: str) -> User:
        """Resolve the calling user; unknown or inactive callers are forbidden"""
        user = self.rbac.get_user(user_id) if user_id else None
        if not user or not user.is_active:
            raise ForbiddenError("Unknown or inactive user", details={'user_id': user_id})
        return user

    def resolve_approvers(self, approver_ids: List[str]) -> List[User]:
        """Approvers must be known, active users; malformed ids are a validation error"""
        users = []
        for approver_id in approver_ids:
            if not isinstance(approver_id, str) or not approver_id.strip():
                raise ValidationError("Approver ids must be non-empty strings")
            user = self.rbac.get_user(approver_id)
            if not user or not user.is_active:
                raise ValidationError(
                    f"Approver {approver_id} is not an active user",
                    details={'approver_id': approver_id}
                )
            users.append(user)
        return users

    def ensure_can_create(self, user_id: str, document: 'Document') -> None:
        user = self.require_active_user(user_id)
        if not user.has_permission(Permission.CREATE_WORKFLOW):
            raise ForbiddenError("You are not allowed to create workflows")
        if user.role != Role.ADMIN and document.created_by != user.id:
            raise ForbiddenError(
                "You are not allowed to create workflows for this document",
                details={'document_id': document.id}
            )

    def ensure_can_cancel(self, user_id: str, workflow: 'Workflow') -> None:
        user = self.require_active_user(user_id)
        if workflow.requester_id != user.id and not user.has_permission(Permission.CANCEL_ANY_WORKFLOW):
            raise ForbiddenError(
                "Only the requester or an administrator can cancel this workflow",
                details={'workflow_id': workflow.id}
            )

    def sees_all_workflows(self, user_id: str) -> bool:
        return self.rbac.check_permission(user_id, Permission.VIEW_ALL_WORKFLOWS)

    def can_view(self, user_id: str, workflow: 'Workflow') -> bool:
        if self.sees_all_workflows(user_id):
            return True
        return user_id in (workflow.requester_id, workflow.current_approver_id)

    def ensure_can_view_stats(self, user_id: str) -> None:
        user = self.require_active_user(user_id)
        if not user.has_permission(Permission.VIEW_WORKFLOW_STATS):
            raise ForbiddenError("You are not allowed to view workflow statistics")
