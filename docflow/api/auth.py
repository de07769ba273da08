"""
Authentication and system dependencies
"""

from typing import Optional

import jwt
from fastapi import Depends, Header, HTTPException
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from ..audit import AuditTrail
from ..config import DocflowConfig, get_config
from ..documents import DocumentStore
from ..events import EventDispatcher
from ..notifications import NotificationEngine, WorkflowNotifier
from ..rbac import AccessPolicy, RBACManager
from ..storage import StorageInterface, create_storage
from ..workflows import WorkflowEngine


class DocflowSystem:
    """Document workflow system with all components initialized"""

    def __init__(self, config: Optional[DocflowConfig] = None,
                 storage: Optional[StorageInterface] = None):
        self.config = config or get_config()
        self.storage = storage or create_storage(self.config.database_url)

        self.audit_trail = AuditTrail(self.storage)
        self.event_dispatcher = EventDispatcher()
        self.rbac_manager = RBACManager(self.storage, self.audit_trail)
        self.access_policy = AccessPolicy(self.rbac_manager)
        self.document_store = DocumentStore(self.storage, self.audit_trail)
        self.notification_engine = NotificationEngine(self.storage, self.config)
        self.workflow_engine = WorkflowEngine(
            self.storage, self.document_store, self.access_policy,
            self.audit_trail, self.event_dispatcher, self.config
        )

        self.workflow_notifier = None
        if self.config.enable_notifications:
            self.workflow_notifier = WorkflowNotifier(self.notification_engine, self.event_dispatcher)


# Global system instance, built on first use
docflow_system: Optional[DocflowSystem] = None


def get_docflow_system() -> DocflowSystem:
    global docflow_system
    if docflow_system is None:
        docflow_system = DocflowSystem()
    return docflow_system


security = HTTPBearer(auto_error=False)


def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    x_user_id: Optional[str] = Header(None),
    system: DocflowSystem = Depends(get_docflow_system)
) -> str:
    """
    Resolve the calling user id. With auth enabled it is the `sub` claim of
    a bearer JWT; without, the X-User-Id header is trusted.
    """
    if not system.config.auth_enabled:
        if not x_user_id:
            raise HTTPException(status_code=401, detail="Not authenticated")
        return x_user_id

    if not credentials:
        raise HTTPException(status_code=401, detail="Not authenticated")
    try:
        payload = jwt.decode(
            credentials.credentials,
            system.config.jwt_secret,
            algorithms=[system.config.jwt_algorithm]
        )
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token expired")
    except jwt.InvalidTokenError:
        raise HTTPException(status_code=401, detail="Invalid token")

    user_id = payload.get("sub")
    if not user_id:
        raise HTTPException(status_code=401, detail="Invalid token")
    return user_id
