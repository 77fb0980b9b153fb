import pytest

from disclosure.modules.information_requests.fields import (
    FieldKey, SENSITIVE_FIELDS, UnknownField,
    denormalize_field, is_sensitive, normalize_field, normalize_fields, parse_field,
)


@pytest.mark.parametrize("raw,expected", [
    ("phone", "phone"),
    ("PHONE", "phone"),
    ("  phone  ", "phone"),
    ("emergencyContacts", "emergency_contacts"),
    ("Emergency Contacts", "emergency_contacts"),
    ("emergency-contacts", "emergency_contacts"),
    ("background__check", "background_check"),
    ("_child.medical.info_", "child_medical_info"),
    ("ageCareRanges", "age_care_ranges"),
    ("", ""),
])
def test_normalize_field(raw, expected):
    assert normalize_field(raw) == expected


def test_normalize_is_idempotent():
    for raw in ["childBehaviorNotes", "Financial Info", "profile-image", "rate_history"]:
        once = normalize_field(raw)
        assert normalize_field(once) == once


@pytest.mark.parametrize("key", list(FieldKey))
def test_round_trip_over_vocabulary(key):
    canonical = normalize_field(key.value)
    assert normalize_field(denormalize_field(canonical)) == canonical
    assert parse_field(denormalize_field(key)) is key


def test_denormalize_is_injective_over_vocabulary():
    camel = {denormalize_field(k) for k in FieldKey}
    assert len(camel) == len(FieldKey)
    assert denormalize_field("child_medical_info") == "childMedicalInfo"


def test_parse_field_unknown_variant():
    parsed = parse_field("Shoe Size")
    assert isinstance(parsed, UnknownField)
    assert parsed.key == "shoe_size"
    assert parse_field("backgroundCheck") is FieldKey.BACKGROUND_CHECK


def test_normalize_fields_dedupes_and_keeps_order():
    parsed = normalize_fields(["phone", "Address", "PHONE", "", "  ", "address"])
    assert [p.value for p in parsed] == ["phone", "address"]


def test_sensitive_classifier():
    assert SENSITIVE_FIELDS == {
        FieldKey.DOCUMENTS, FieldKey.BACKGROUND_CHECK, FieldKey.EMERGENCY_CONTACTS,
        FieldKey.AGE_CARE_RANGES, FieldKey.CHILD_MEDICAL_INFO, FieldKey.CHILD_ALLERGIES,
        FieldKey.CHILD_BEHAVIOR_NOTES, FieldKey.FINANCIAL_INFO,
    }
    assert is_sensitive("childAllergies")
    assert is_sensitive("documents")
    assert not is_sensitive("phone")
    assert not is_sensitive("shoe_size")
