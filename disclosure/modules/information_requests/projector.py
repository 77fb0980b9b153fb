from datetime import datetime, timezone
from typing import Any, Callable
from disclosure.platform.ports.profile_store import ProfileSnapshot
from disclosure.modules.information_requests.fields import FieldKey
from disclosure.modules.information_requests.schemas import DocumentOut, EffectivePermissionSet, SharedProfileOut

IMAGE_EXTENSIONS = (".png", ".jpg", ".jpeg", ".gif", ".bmp", ".webp", ".heic", ".heif")
VIDEO_EXTENSIONS = (".mp4", ".mov", ".avi", ".mkv", ".webm")

def _from_user(col: str, default=None) -> Callable[[ProfileSnapshot], Any]:
    return lambda s: s.user.get(col) or default

def _from_profile(col: str, default=None) -> Callable[[ProfileSnapshot], Any]:
    return lambda s: s.profile.get(col) or default

# field key -> (output key, extractor). Documents are projected separately.
FIELD_PROJECTIONS: dict[FieldKey, tuple[str, Callable[[ProfileSnapshot], Any]]] = {
    FieldKey.PHONE: ("phone", _from_user("phone")),
    FieldKey.EMAIL: ("email", _from_user("email")),
    FieldKey.ADDRESS: ("address", lambda s: s.user.get("address") or s.profile.get("address")),
    FieldKey.PROFILE_IMAGE: ("profile_image", _from_user("profile_image")),
    FieldKey.BACKGROUND_CHECK: ("background_check_status", _from_profile("background_check_status")),
    FieldKey.EMERGENCY_CONTACTS: ("emergency_contacts", _from_profile("emergency_contacts", [])),
    FieldKey.AGE_CARE_RANGES: ("age_care_ranges", _from_profile("age_care_ranges", [])),
    FieldKey.PORTFOLIO: ("portfolio", _from_profile("portfolio")),
    FieldKey.AVAILABILITY: ("availability", _from_profile("availability")),
    FieldKey.LANGUAGES: ("languages", _from_profile("languages", [])),
    FieldKey.REFERENCES: ("references", _from_profile("references", [])),
    FieldKey.RATE_HISTORY: ("rate_history", _from_profile("rate_history", [])),
    FieldKey.WORK_HISTORY: ("work_history", _from_profile("work_history", [])),
    FieldKey.CHILD_MEDICAL_INFO: ("child_medical_info", _from_profile("child_medical_info", [])),
    FieldKey.CHILD_ALLERGIES: ("child_allergies", _from_profile("child_allergies", [])),
    FieldKey.CHILD_BEHAVIOR_NOTES: ("child_behavior_notes", _from_profile("child_behavior_notes", [])),
    FieldKey.FINANCIAL_INFO: ("financial_info", _from_profile("financial_info")),
}

def _first(doc: dict, *keys):
    for key in keys:
        value = doc.get(key)
        if value not in (None, ""):
            return value
    return None

def _parse_timestamp(value) -> datetime | None:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, (int, float)):
        # epoch milliseconds
        return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
    try:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)

def _verified(doc: dict) -> bool:
    if isinstance(doc.get("verified"), bool):
        return doc["verified"]
    for key in ("isVerified", "approved"):
        if doc.get(key) is not None:
            return bool(doc[key])
    return doc.get("status") == "verified"

def normalize_document(doc) -> DocumentOut | None:
    if not isinstance(doc, dict):
        return None
    doc_id = _first(doc, "id", "documentId", "uuid", "url")
    metadata = doc.get("metadata")
    return DocumentOut(
        id=str(doc_id) if doc_id is not None else None,
        type=_first(doc, "type", "documentType", "category"),
        label=_first(doc, "label", "name", "fileName") or "Document",
        file_name=_first(doc, "fileName", "file_name", "name"),
        url=_first(doc, "url", "fileUrl", "href"),
        verified=_verified(doc),
        uploaded_at=_parse_timestamp(_first(doc, "uploadedAt", "uploaded_at", "createdAt", "created_at", "timestamp")),
        metadata=metadata if isinstance(metadata, dict) else None,
    )

def normalize_documents(documents) -> list[DocumentOut]:
    if not isinstance(documents, list):
        return []
    return [d for d in (normalize_document(doc) for doc in documents) if d is not None]

def is_media(document: DocumentOut) -> bool:
    kind = (document.type or "").lower()
    if "image" in kind or "video" in kind:
        return True
    name = (document.file_name or document.label or "").lower()
    return name.endswith(IMAGE_EXTENSIONS) or name.endswith(VIDEO_EXTENSIONS)

def split_media(documents: list[DocumentOut]) -> tuple[list[DocumentOut], list[DocumentOut]]:
    media = [d for d in documents if is_media(d)]
    others = [d for d in documents if not is_media(d)]
    return media, others

def project_shared_profile(permissions: EffectivePermissionSet, snapshot: ProfileSnapshot | None) -> SharedProfileOut:
    """Keep only what the viewer holds a grant for. Never looks anything up."""
    out = SharedProfileOut(target_id=permissions.target_id, viewer_id=permissions.viewer_id, permissions=permissions)
    if snapshot is None or not permissions.permissions:
        return out

    for field, (key, extract) in FIELD_PROJECTIONS.items():
        if permissions.allows(field.value):
            out.shared[key] = extract(snapshot)

    if permissions.allows(FieldKey.DOCUMENTS.value):
        out.media, out.documents = split_media(normalize_documents(snapshot.profile.get("documents")))
    return out
