"""
Tests for users, roles and the workflow access policy
"""

import pytest
from datetime import datetime, timezone

from docflow.storage import InMemoryStorage
from docflow.audit import AuditTrail, AuditEventType
from docflow.documents import Document
from docflow.errors import ForbiddenError, NotFoundError, ValidationError
from docflow.rbac import AccessPolicy, Permission, RBACManager, Role, ROLE_PERMISSIONS
from docflow.workflows import Workflow, WorkflowPriority, WorkflowStatus, WorkflowType


@pytest.fixture
def storage():
    return InMemoryStorage()


@pytest.fixture
def audit_manager(storage):
    return AuditTrail(storage)


@pytest.fixture
def rbac_manager(storage, audit_manager):
    return RBACManager(storage, audit_manager)


@pytest.fixture
def policy(rbac_manager):
    rbac_manager.create_user("admin", "admin@example.com", "Admin", Role.ADMIN, user_id="admin")
    rbac_manager.create_user("owner", "owner@example.com", "Owner", Role.EDITOR, user_id="owner")
    rbac_manager.create_user("editor2", "editor2@example.com", "Other Editor", Role.EDITOR, user_id="editor2")
    rbac_manager.create_user("alice", "alice@example.com", "Alice", Role.VIEWER, user_id="alice")
    return AccessPolicy(rbac_manager)


def _document(created_by="owner"):
    now = datetime.now(timezone.utc)
    return Document(id="doc_1", created_at=now, updated_at=now, title="Contract", created_by=created_by)


def _workflow(requester_id="owner", current_approver_id="alice"):
    now = datetime.now(timezone.utc)
    return Workflow(
        id="wf_1",
        created_at=now,
        updated_at=now,
        document_id="doc_1",
        workflow_type=WorkflowType.APPROVAL,
        status=WorkflowStatus.PENDING,
        requester_id=requester_id,
        current_approver_id=current_approver_id,
        priority=WorkflowPriority.MEDIUM
    )


class TestRoles:
    """Role to permission mapping"""

    def test_admin_has_every_permission(self):
        assert ROLE_PERMISSIONS[Role.ADMIN] == set(Permission)

    def test_editor_can_create_and_view_stats(self):
        assert ROLE_PERMISSIONS[Role.EDITOR] == {Permission.CREATE_WORKFLOW, Permission.VIEW_WORKFLOW_STATS}

    def test_viewer_has_no_permissions(self):
        assert ROLE_PERMISSIONS[Role.VIEWER] == set()


class TestRBACManager:
    """User management"""

    def test_create_user(self, rbac_manager, audit_manager):
        user = rbac_manager.create_user("jdoe", "jdoe@example.com", "John Doe", Role.EDITOR)

        assert user.id
        assert user.role == Role.EDITOR
        assert user.is_active
        assert rbac_manager.get_user(user.id).username == "jdoe"

        events = audit_manager.get_events_by_type(AuditEventType.USER_CREATED)
        assert events[0].entity_id == user.id
        assert events[0].metadata == {"username": "jdoe", "role": "editor"}

    def test_duplicate_username_rejected(self, rbac_manager):
        rbac_manager.create_user("jdoe", "jdoe@example.com", "John Doe")
        with pytest.raises(ValidationError, match="already exists"):
            rbac_manager.create_user("jdoe", "other@example.com", "Other")

    def test_empty_username_rejected(self, rbac_manager):
        with pytest.raises(ValidationError):
            rbac_manager.create_user("  ", "x@example.com", "Nobody")

    def test_get_user_by_username(self, rbac_manager):
        created = rbac_manager.create_user("jdoe", "jdoe@example.com", "John Doe")
        assert rbac_manager.get_user_by_username("jdoe").id == created.id
        assert rbac_manager.get_user_by_username("nobody") is None

    def test_list_users_filters(self, rbac_manager):
        rbac_manager.create_user("b_editor", "b@example.com", "B", Role.EDITOR)
        rbac_manager.create_user("a_editor", "a@example.com", "A", Role.EDITOR)
        viewer = rbac_manager.create_user("viewer", "v@example.com", "V")
        rbac_manager.deactivate_user(viewer.id)

        assert [u.username for u in rbac_manager.list_users(role=Role.EDITOR)] == ["a_editor", "b_editor"]
        assert [u.username for u in rbac_manager.list_users(is_active=False)] == ["viewer"]

    def test_deactivate_user(self, rbac_manager):
        user = rbac_manager.create_user("admin", "admin@example.com", "Admin", Role.ADMIN)

        rbac_manager.deactivate_user(user.id)

        assert not rbac_manager.get_user(user.id).is_active
        assert not rbac_manager.check_permission(user.id, Permission.VIEW_ALL_WORKFLOWS)
        assert not rbac_manager.is_admin(user.id)

    def test_deactivate_missing_user(self, rbac_manager):
        with pytest.raises(NotFoundError):
            rbac_manager.deactivate_user("missing")

    def test_check_permission_unknown_user(self, rbac_manager):
        assert not rbac_manager.check_permission("ghost", Permission.CREATE_WORKFLOW)


class TestAccessPolicy:
    """Authorization rules the workflow engine relies on"""

    def test_require_active_user(self, policy, rbac_manager):
        assert policy.require_active_user("alice").username == "alice"
        with pytest.raises(ForbiddenError):
            policy.require_active_user("ghost")

        rbac_manager.deactivate_user("alice")
        with pytest.raises(ForbiddenError):
            policy.require_active_user("alice")

    def test_resolve_approvers(self, policy, rbac_manager):
        assert [u.id for u in policy.resolve_approvers(["alice", "owner"])] == ["alice", "owner"]

        with pytest.raises(ValidationError):
            policy.resolve_approvers(["ghost"])
        with pytest.raises(ValidationError):
            policy.resolve_approvers([""])

        rbac_manager.deactivate_user("alice")
        with pytest.raises(ValidationError, match="not an active user"):
            policy.resolve_approvers(["alice"])

    def test_owner_can_create(self, policy):
        policy.ensure_can_create("owner", _document())

    def test_admin_can_create_for_any_document(self, policy):
        policy.ensure_can_create("admin", _document(created_by="someone"))

    def test_other_editor_cannot_create(self, policy):
        with pytest.raises(ForbiddenError, match="this document"):
            policy.ensure_can_create("editor2", _document())

    def test_viewer_cannot_create(self, policy):
        with pytest.raises(ForbiddenError):
            policy.ensure_can_create("alice", _document(created_by="alice"))

    def test_cancel_rules(self, policy):
        workflow = _workflow()
        policy.ensure_can_cancel("owner", workflow)
        policy.ensure_can_cancel("admin", workflow)
        with pytest.raises(ForbiddenError):
            policy.ensure_can_cancel("alice", workflow)
        with pytest.raises(ForbiddenError):
            policy.ensure_can_cancel("editor2", workflow)

    def test_visibility(self, policy):
        workflow = _workflow()
        assert policy.can_view("admin", workflow)
        assert policy.can_view("owner", workflow)
        assert policy.can_view("alice", workflow)
        assert not policy.can_view("editor2", workflow)

    def test_stats_permission(self, policy):
        policy.ensure_can_view_stats("admin")
        policy.ensure_can_view_stats("owner")
        with pytest.raises(ForbiddenError):
            policy.ensure_can_view_stats("alice")
