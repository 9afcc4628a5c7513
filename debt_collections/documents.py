"""
Legal Documents Module

Metadata for legal documents attached to collections tasks, and the
Document Store boundary that holds the actual content. The task only keeps
metadata plus the store's opaque document reference.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timezone
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple
from enum import Enum
import threading
import uuid


class DocumentType(Enum):
    """Kinds of legal document"""
    DEMAND_LETTER = "demand_letter"
    NOTICE_OF_DEFAULT = "notice_of_default"
    PAYMENT_AGREEMENT = "payment_agreement"
    COURT_FILING = "court_filing"
    JUDGMENT = "judgment"
    CORRESPONDENCE = "correspondence"
    OTHER = "other"


class DocumentStatus(Enum):
    """Document lifecycle status"""
    ACTIVE = "active"
    ARCHIVED = "archived"
    EXPIRED = "expired"


@dataclass(frozen=True)
class LegalDocument:
    """Legal document metadata"""
    id: str
    document_ref: str
    document_type: DocumentType
    original_name: str
    uploaded_by: str
    uploaded_at: datetime
    status: DocumentStatus = DocumentStatus.ACTIVE
    expires_at: Optional[datetime] = None
    description: Optional[str] = None
    tags: Tuple[str, ...] = field(default_factory=tuple)

    def effective_status(self, as_of: Optional[datetime] = None) -> DocumentStatus:
        """Stored status, with active documents past expires_at reported as expired"""
        if self.status == DocumentStatus.ACTIVE and self.expires_at is not None:
            now = as_of or datetime.now(timezone.utc)
            if self.expires_at <= now:
                return DocumentStatus.EXPIRED
        return self.status

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'document_ref': self.document_ref,
            'document_type': self.document_type.value,
            'original_name': self.original_name,
            'uploaded_by': self.uploaded_by,
            'uploaded_at': self.uploaded_at.isoformat(),
            'status': self.status.value,
            'expires_at': self.expires_at.isoformat() if self.expires_at else None,
            'description': self.description,
            'tags': list(self.tags)
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'LegalDocument':
        expires_at = None
        if data.get('expires_at'):
            expires_at = datetime.fromisoformat(data['expires_at'])
        return cls(
            id=data['id'],
            document_ref=data['document_ref'],
            document_type=DocumentType(data['document_type']),
            original_name=data['original_name'],
            uploaded_by=data['uploaded_by'],
            uploaded_at=datetime.fromisoformat(data['uploaded_at']),
            status=DocumentStatus(data.get('status', 'active')),
            expires_at=expires_at,
            description=data.get('description'),
            tags=tuple(data.get('tags', []))
        )

    def to_snapshot(self) -> Dict[str, Any]:
        return self.to_dict()


class DocumentStore(ABC):
    """Document Store boundary: owns document content"""

    @abstractmethod
    def store_document(self, task_id: str, metadata: Dict[str, Any], blob_handle: Any) -> str:
        """
        Store document content

        Args:
            task_id: Owning task
            metadata: Document metadata (type, name, uploader)
            blob_handle: Content or a handle to it

        Returns:
            Opaque document reference
        """
        pass

    @abstractmethod
    def fetch_document(self, document_ref: str) -> Any:
        """Return the content stored under document_ref"""
        pass


class InMemoryDocumentStore(DocumentStore):
    """In-memory document store for testing"""

    def __init__(self):
        self._documents: Dict[str, Dict[str, Any]] = {}
        self._lock = threading.Lock()

    def store_document(self, task_id: str, metadata: Dict[str, Any], blob_handle: Any) -> str:
        document_ref = f"doc:{uuid.uuid4()}"
        with self._lock:
            self._documents[document_ref] = {
                'task_id': task_id,
                'metadata': dict(metadata),
                'blob': blob_handle
            }
        return document_ref

    def fetch_document(self, document_ref: str) -> Any:
        with self._lock:
            if document_ref not in self._documents:
                raise KeyError(f"Document {document_ref} not found")
            return self._documents[document_ref]['blob']

    def __len__(self) -> int:
        return len(self._documents)
