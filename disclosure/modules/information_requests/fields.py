import re
from dataclasses import dataclass
from enum import Enum
from typing import Iterable


class FieldKey(str, Enum):
    PHONE = "phone"
    EMAIL = "email"
    ADDRESS = "address"
    PROFILE_IMAGE = "profile_image"
    DOCUMENTS = "documents"
    BACKGROUND_CHECK = "background_check"
    EMERGENCY_CONTACTS = "emergency_contacts"
    AGE_CARE_RANGES = "age_care_ranges"
    PORTFOLIO = "portfolio"
    AVAILABILITY = "availability"
    LANGUAGES = "languages"
    REFERENCES = "references"
    RATE_HISTORY = "rate_history"
    WORK_HISTORY = "work_history"
    CHILD_MEDICAL_INFO = "child_medical_info"
    CHILD_ALLERGIES = "child_allergies"
    CHILD_BEHAVIOR_NOTES = "child_behavior_notes"
    FINANCIAL_INFO = "financial_info"


@dataclass(frozen=True)
class UnknownField:
    """A key outside the FieldKey vocabulary, kept in canonical form."""
    key: str

    @property
    def value(self) -> str:
        return self.key


# UI labelling only. Access is decided by grants alone.
SENSITIVE_FIELDS = frozenset({
    FieldKey.DOCUMENTS,
    FieldKey.BACKGROUND_CHECK,
    FieldKey.EMERGENCY_CONTACTS,
    FieldKey.AGE_CARE_RANGES,
    FieldKey.CHILD_MEDICAL_INFO,
    FieldKey.CHILD_ALLERGIES,
    FieldKey.CHILD_BEHAVIOR_NOTES,
    FieldKey.FINANCIAL_INFO,
})

_CAMEL_BOUNDARY = re.compile(r"([a-z\d])([A-Z])")
_NON_KEY = re.compile(r"[^a-zA-Z\d_]+")
_REPEATED_UNDERSCORE = re.compile(r"__+")
_SNAKE_SEGMENT = re.compile(r"_([a-z\d])")
_KNOWN = {f.value: f for f in FieldKey}


def normalize_field(raw) -> str:
    text = str(raw if raw is not None else "").strip()
    text = _CAMEL_BOUNDARY.sub(r"\1_\2", text)
    text = _NON_KEY.sub("_", text)
    text = _REPEATED_UNDERSCORE.sub("_", text)
    return text.strip("_").lower()


def denormalize_field(key) -> str:
    """Canonical key -> camelCase display form (child_medical_info -> childMedicalInfo)."""
    key = key.value if isinstance(key, (FieldKey, UnknownField)) else str(key)
    return _SNAKE_SEGMENT.sub(lambda m: m.group(1).upper(), key)


def parse_field(raw) -> FieldKey | UnknownField:
    if isinstance(raw, (FieldKey, UnknownField)):
        return raw
    key = normalize_field(raw)
    return _KNOWN.get(key) or UnknownField(key)


def normalize_fields(raw_fields: Iterable | None) -> list[FieldKey | UnknownField]:
    seen: dict[str, FieldKey | UnknownField] = {}
    for raw in raw_fields or []:
        parsed = parse_field(raw)
        if parsed.value and parsed.value not in seen:
            seen[parsed.value] = parsed
    return list(seen.values())


def is_sensitive(key) -> bool:
    return parse_field(key) in SENSITIVE_FIELDS
