"""Tests for the offline RESTlet validation simulator."""

from opms_sync.services.restlet_simulator import SIMULATED_ID, RestletValidationSimulator

VALID = {
    "itemId": "1234-5678",
    "upcCode": "012345678905",
    "taxScheduleId": "1",
    "custitem_opms_prod_id": 10,
    "custitem_opms_item_id": 102,
    "displayname": "Belmont Velvet: Navy",
}


def test_valid_payload_would_succeed() -> None:
    result = RestletValidationSimulator().simulate(VALID)

    assert result.would_succeed is True
    assert result.errors == []
    assert all(result.checks.values())
    assert result.response["id"] == SIMULATED_ID
    assert result.response["customFields"] == {
        "custitem_opms_prod_id": 10,
        "custitem_opms_item_id": 102,
    }


def test_missing_required_fields_listed_together() -> None:
    payload = {k: v for k, v in VALID.items() if k not in ("upcCode", "taxScheduleId")}

    result = RestletValidationSimulator().simulate(payload)

    assert result.would_succeed is False
    assert result.errors == ["Missing required fields: upcCode, taxScheduleId"]
    assert result.checks["required_fields"] is False
    assert result.response["success"] is False


def test_length_limits() -> None:
    result = RestletValidationSimulator().simulate({**VALID, "itemId": "X" * 41})

    assert result.would_succeed is False
    assert result.checks["field_lengths"] is False
    assert "itemId exceeds 40 characters (got 41)" in result.errors


def test_ids_must_be_integers() -> None:
    result = RestletValidationSimulator().simulate({**VALID, "custitem_opms_item_id": "102"})

    assert result.checks["integer_ids"] is False


def test_optional_field_types() -> None:
    result = RestletValidationSimulator().simulate(
        {**VALID, "usebins": "T", "vendor": True}
    )

    assert result.checks["field_types"] is False
    assert len(result.errors) == 2
