"""
Tests for legal document metadata and the in-memory document store
"""

import pytest
from datetime import datetime, timezone, timedelta

from debt_collections.documents import (
    DocumentStatus, DocumentType, InMemoryDocumentStore, LegalDocument
)


NOW = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)


def make_document(**overrides):
    values = dict(
        id="doc-1",
        document_ref="doc:abc",
        document_type=DocumentType.DEMAND_LETTER,
        original_name="demand.pdf",
        uploaded_by="staff-1",
        uploaded_at=NOW,
    )
    values.update(overrides)
    return LegalDocument(**values)


class TestLegalDocument:
    """Test document metadata"""

    def test_defaults(self):
        document = make_document()
        assert document.status == DocumentStatus.ACTIVE
        assert document.tags == ()

    def test_effective_status_reports_expiry(self):
        document = make_document(expires_at=NOW + timedelta(days=30))

        assert document.effective_status(NOW) == DocumentStatus.ACTIVE
        assert document.effective_status(NOW + timedelta(days=30)) == DocumentStatus.EXPIRED
        # Stored status is unchanged
        assert document.status == DocumentStatus.ACTIVE

    def test_archived_documents_stay_archived(self):
        document = make_document(status=DocumentStatus.ARCHIVED, expires_at=NOW - timedelta(days=1))
        assert document.effective_status(NOW) == DocumentStatus.ARCHIVED

    def test_dict_round_trip(self):
        document = make_document(expires_at=NOW + timedelta(days=1), tags=("court", "2024"),
                                 description="First demand")
        assert LegalDocument.from_dict(document.to_dict()) == document


class TestInMemoryDocumentStore:
    """Test the in-memory document store"""

    def test_store_and_fetch(self):
        store = InMemoryDocumentStore()
        ref = store.store_document("task-1", {"original_name": "demand.pdf"}, b"%PDF-1.4")

        assert ref.startswith("doc:")
        assert store.fetch_document(ref) == b"%PDF-1.4"
        assert len(store) == 1

    def test_refs_are_unique(self):
        store = InMemoryDocumentStore()
        assert store.store_document("task-1", {}, b"a") != store.store_document("task-1", {}, b"a")

    def test_unknown_ref(self):
        with pytest.raises(KeyError):
            InMemoryDocumentStore().fetch_document("doc:missing")
