from datetime import datetime, timezone

from disclosure.modules.information_requests.projector import (
    normalize_document, normalize_documents, project_shared_profile, split_media,
)
from disclosure.modules.information_requests.schemas import EffectivePermissionSet
from disclosure.platform.ports.profile_store import ProfileSnapshot


def perms(*fields):
    return EffectivePermissionSet(target_id="u2", viewer_id="u1", permissions=list(fields))


def snapshot():
    return ProfileSnapshot(
        user={"phone": "+63 917 555 0202", "address": None, "email": "bea@example.com"},
        profile={
            "address": "12 Mabini St, Makati",
            "background_check_status": "cleared",
            "emergency_contacts": [{"name": "Lito"}],
            "documents": [
                {"id": "d1", "type": "image/png", "fileName": "id.png"},
                {"id": "d2", "documentType": "certificate", "name": "cpr.pdf", "isVerified": False, "status": "verified"},
                {"id": "d3", "fileName": "intro.MOV"},
                "not-a-document",
            ],
        },
    )


def test_only_granted_fields_are_projected():
    out = project_shared_profile(perms("phone"), snapshot())
    assert out.shared == {"phone": "+63 917 555 0202"}
    assert out.documents == [] and out.media == []


def test_address_falls_back_to_profile():
    out = project_shared_profile(perms("address", "background_check"), snapshot())
    assert out.shared == {"address": "12 Mabini St, Makati", "background_check_status": "cleared"}


def test_documents_split_into_media():
    out = project_shared_profile(perms("documents"), snapshot())
    assert [d.id for d in out.media] == ["d1", "d3"]
    assert [d.id for d in out.documents] == ["d2"]
    assert "documents" not in out.shared


def test_nothing_granted_means_nothing_projected():
    out = project_shared_profile(perms(), snapshot())
    assert out.shared == {} and out.documents == []
    assert project_shared_profile(perms("phone"), None).shared == {}


def test_normalize_document_fallbacks():
    doc = normalize_document({
        "documentId": 42,
        "category": "license",
        "name": "license.pdf",
        "fileUrl": "https://cdn.example.com/license.pdf",
        "approved": True,
        "uploaded_at": "2026-01-05T08:30:00Z",
    })
    assert doc.id == "42"
    assert doc.type == "license"
    assert doc.label == "license.pdf"
    assert doc.url == "https://cdn.example.com/license.pdf"
    assert doc.verified is True
    assert doc.uploaded_at == datetime(2026, 1, 5, 8, 30, tzinfo=timezone.utc)


def test_verified_flag_precedence():
    # explicit isVerified beats status
    assert normalize_document({"isVerified": False, "status": "verified"}).verified is False
    assert normalize_document({"status": "verified"}).verified is True
    assert normalize_document({}).verified is False
    assert normalize_document({}).label == "Document"


def test_bad_timestamp_is_dropped():
    assert normalize_document({"uploadedAt": "yesterday"}).uploaded_at is None
    assert normalize_document({"timestamp": 0}).uploaded_at == datetime(1970, 1, 1, tzinfo=timezone.utc)


def test_split_media_heuristics():
    docs = normalize_documents([
        {"fileName": "a.HEIC"},
        {"type": "video/mp4", "fileName": "clip"},
        {"label": "resume.docx"},
    ])
    media, others = split_media(docs)
    assert len(media) == 2
    assert [d.label for d in others] == ["resume.docx"]
    assert normalize_documents(None) == []
