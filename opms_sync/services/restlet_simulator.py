"""Offline approximation of the NetSuite item RESTlet's input validation.

Dry-run captures run every payload through this simulator so operators can
see whether a live push would likely have been accepted, without calling
NetSuite. The checks mirror the RESTlet's own guards: required fields,
field length limits, integer ids and the types of optional flag/number
fields.
"""

from dataclasses import dataclass, field
from typing import Any

REQUIRED_FIELDS: tuple[str, ...] = (
    "itemId",
    "upcCode",
    "taxScheduleId",
    "custitem_opms_prod_id",
    "custitem_opms_item_id",
)

FIELD_MAX_LENGTHS: dict[str, int] = {"itemId": 40, "upcCode": 20}

INTEGER_FIELDS: tuple[str, ...] = ("custitem_opms_prod_id", "custitem_opms_item_id")

BOOLEAN_FIELDS: tuple[str, ...] = (
    "usebins",
    "matchbilltoreceipt",
    "custitem_aln_1_auto_numbered",
    "custitem_is_repeat",
)

NUMBER_FIELDS: tuple[str, ...] = (
    "unitstype",
    "custitem_aln_2_number_format",
    "custitem_aln_3_initial_sequence",
    "vendor",
)

SIMULATED_ID = "[SIMULATED - No actual NetSuite ID]"


def _is_missing(value: Any) -> bool:
    return value is None or value == ""


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


@dataclass
class SimulationResult:
    """Verdict of one simulated RESTlet call."""

    would_succeed: bool
    errors: list[str] = field(default_factory=list)
    checks: dict[str, bool] = field(default_factory=dict)
    response: dict[str, Any] = field(default_factory=dict)


class RestletValidationSimulator:
    """Validates an item payload the way the RESTlet would."""

    def validate(self, payload: dict[str, Any]) -> tuple[list[str], dict[str, bool]]:
        """Run every check and return (errors, per-check pass map)."""
        errors: list[str] = []
        checks: dict[str, bool] = {}

        missing = [name for name in REQUIRED_FIELDS if _is_missing(payload.get(name))]
        checks["required_fields"] = not missing
        if missing:
            errors.append(f"Missing required fields: {', '.join(missing)}")

        lengths_ok = True
        for name, limit in FIELD_MAX_LENGTHS.items():
            value = payload.get(name)
            if isinstance(value, str) and len(value) > limit:
                lengths_ok = False
                errors.append(f"{name} exceeds {limit} characters (got {len(value)})")
        checks["field_lengths"] = lengths_ok

        ids_ok = True
        for name in INTEGER_FIELDS:
            value = payload.get(name)
            if _is_missing(value):
                continue
            if isinstance(value, bool) or not isinstance(value, int):
                ids_ok = False
                errors.append(f"{name} must be an integer (got {value!r})")
        checks["integer_ids"] = ids_ok

        types_ok = True
        for name in BOOLEAN_FIELDS:
            if name in payload and not isinstance(payload[name], bool):
                types_ok = False
                errors.append(f"{name} must be a boolean (got {payload[name]!r})")
        for name in NUMBER_FIELDS:
            if name in payload and not _is_number(payload[name]):
                types_ok = False
                errors.append(f"{name} must be a number (got {payload[name]!r})")
        checks["field_types"] = types_ok

        return errors, checks

    def simulate(self, payload: dict[str, Any]) -> SimulationResult:
        """Validate a payload and build the response the RESTlet would send.

        Args:
            payload: The RESTlet request body.

        Returns:
            SimulationResult with would_succeed, errors, checks and a mock
            response body.
        """
        errors, checks = self.validate(payload)
        if errors:
            response = {
                "success": False,
                "error": "; ".join(errors),
                "validationErrors": errors,
            }
            return SimulationResult(
                would_succeed=False, errors=errors, checks=checks, response=response
            )

        response = {
            "success": True,
            "operation": "SIMULATED_UPSERT",
            "message": "Validation passed - would likely succeed",
            "itemId": payload.get("itemId"),
            "id": SIMULATED_ID,
            "displayName": payload.get("displayname"),
            "opmsProductId": payload.get("custitem_opms_prod_id"),
            "customFields": {
                name: value
                for name, value in payload.items()
                if name.startswith("custitem_")
            },
            "note": "Dry-run simulation; no record was written to NetSuite",
        }
        return SimulationResult(would_succeed=True, checks=checks, response=response)
