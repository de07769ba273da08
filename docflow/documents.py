"""
Document Store Module

The documents under review. Workflows only read a document's owner and
overwrite its status; everything else about documents lives elsewhere.
"""

import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from .audit import AuditEventType, AuditTrail
from .errors import NotFoundError, ValidationError
from .storage import StorageInterface, StorageRecord, parse_datetime


class DocumentStatus(Enum):
    """Review status of a document"""
    DRAFT = "draft"
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


@dataclass
class Document(StorageRecord):
    """Document under review"""
    title: str
    created_by: str
    status: DocumentStatus = DocumentStatus.DRAFT
    approved_by: Optional[str] = None
    approved_at: Optional[datetime] = None

    @classmethod
    def from_dict(cls, data) -> 'Document':
        data = dict(data)
        data['status'] = DocumentStatus(data['status'])
        data['approved_at'] = parse_datetime(data.get('approved_at'))
        return super().from_dict(data)


class DocumentStore:
    """Reads documents and applies the status changes workflows drive"""

    def __init__(self, storage: StorageInterface, audit_manager: Optional[AuditTrail] = None):
        self.storage = storage
        self.audit = audit_manager
        self.table_name = "documents"

    def create_document(self, title: str, created_by: str) -> Document:
        if not title or not title.strip():
            raise ValidationError("Document title is required")

        now = datetime.now(timezone.utc)
        document = Document(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            title=title.strip(),
            created_by=created_by
        )
        self.storage.save(self.table_name, document.id, document.to_dict())

        if self.audit:
            self.audit.log_event(
                AuditEventType.DOCUMENT_CREATED,
                'document',
                document.id,
                {'title': document.title},
                created_by
            )

        return document

    def get_document(self, document_id: str) -> Optional[Document]:
        data = self.storage.load(self.table_name, document_id)
        if not data:
            return None
        return Document.from_dict(data)

    def set_status(self, document_id: str, status: DocumentStatus,
                   actor_id: Optional[str] = None) -> Document:
        """
        Overwrite a document's status. Approval stamps the approver and time;
        any other status clears them.
        """
        now = datetime.now(timezone.utc)
        updates = {
            'status': status.value,
            'updated_at': now.isoformat(),
            'approved_by': None,
            'approved_at': None,
        }
        if status == DocumentStatus.APPROVED:
            updates['approved_by'] = actor_id
            updates['approved_at'] = now.isoformat()

        updated = self.storage.compare_and_swap(self.table_name, document_id, {}, updates)
        if updated is None:
            raise NotFoundError(f"Document {document_id} not found")
        return Document.from_dict(updated)

    def claim_for_review(self, document_id: str, observed_status: DocumentStatus) -> bool:
        """
        Move a document to pending only if it still has the status the caller
        observed. At most one concurrent claimant succeeds.
        """
        updated = self.storage.compare_and_swap(
            self.table_name, document_id,
            {'status': observed_status.value},
            {
                'status': DocumentStatus.PENDING.value,
                'updated_at': datetime.now(timezone.utc).isoformat(),
                'approved_by': None,
                'approved_at': None,
            }
        )
        return updated is not None

    def restore(self, document: Document) -> None:
        """Write back a previously read document as-is"""
        self.storage.save(self.table_name, document.id, document.to_dict())
