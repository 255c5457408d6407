"""NetSuite -> OPMS pricing sync unit of work.

Applies the four pricing fields of a NetSuite item onto the OPMS customer
price (T_PRODUCT_PRICE) and vendor cost (T_PRODUCT_PRICE_COST) records as
one all-or-nothing operation:

1. Skip flag first. A flagged item is never read, validated or written.
2. Validate every field before touching the store.
3. Resolve the item by code; unknown codes fail before any transaction.
4. Upsert both records in a single transaction; any exception rolls back.

The operation is a pure upsert, so re-applying a payload is a no-op.

Field map:
    price_1_                 -> T_PRODUCT_PRICE.p_res_cut
    itemPriceLine2_itemPrice -> T_PRODUCT_PRICE.p_hosp_roll
    cost                     -> T_PRODUCT_PRICE_COST.cost_cut
    custitem_f3_rollprice    -> T_PRODUCT_PRICE_COST.cost_roll
"""

import logging
import math
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any

from sqlalchemy.exc import SQLAlchemyError

from opms_sync.errors import NotFoundError, ValidationError, classify_exception
from opms_sync.services.catalog_store import SYNC_USER_ID, CatalogStore
from opms_sync.services.payloads import PricingSnapshot, PricingSyncFields

logger = logging.getLogger(__name__)

SKIP_FLAG_FIELD = "custitemf3_lisa_item"
SKIP_REASON = f"Lisa Slayman item - pricing sync disabled ({SKIP_FLAG_FIELD})"

MAX_PRICE = 999999.99
MIN_POSITIVE_PRICE = 0.01

PRICING_FIELD_MAP: dict[str, str] = {
    "price_1_": "p_res_cut",
    "itemPriceLine2_itemPrice": "p_hosp_roll",
    "cost": "cost_cut",
    "custitem_f3_rollprice": "cost_roll",
}
# Older webhook scripts sent the roll price as price level 1, line 5
LEGACY_FIELD_ALIASES: dict[str, str] = {"price_1_5": "itemPriceLine2_itemPrice"}

_TRUE_STRINGS = frozenset({"t", "true", "y", "yes", "1"})


class PricingOutcome(str, Enum):
    """Result of a pricing apply."""

    updated = "updated"
    skipped = "skipped"
    error = "error"


def parse_flag(value: Any) -> bool:
    """Interpret a NetSuite checkbox value (bool, 'T'/'F', 'true', 1)."""
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value == 1
    if isinstance(value, str):
        return value.strip().lower() in _TRUE_STRINGS
    return False


@dataclass
class PricingRecord:
    """Pricing-relevant slice of a NetSuite item record.

    Attributes:
        item_code: NetSuite itemid, which equals the OPMS item code.
        skip_flag: Value of custitemf3_lisa_item.
        values: Raw incoming values keyed by NetSuite field name. Only
            fields present in the record are included.
        netsuite_internal_id: NetSuite internal id, when sent.
        last_modified: NetSuite lastmodifieddate, when sent.
    """

    item_code: str
    skip_flag: bool = False
    values: dict[str, Any] = field(default_factory=dict)
    netsuite_internal_id: str | None = None
    last_modified: str | None = None

    @classmethod
    def from_item_data(cls, item_data: dict[str, Any]) -> "PricingRecord":
        """Build a record from a webhook ``itemData`` object.

        Raises:
            ValidationError: If itemid is missing or blank.
        """
        code = item_data.get("itemid")
        if not isinstance(code, str) or not code.strip():
            raise ValidationError("itemData.itemid is required", field="itemid")

        values: dict[str, Any] = {}
        for ns_field in PRICING_FIELD_MAP:
            if ns_field in item_data:
                values[ns_field] = item_data[ns_field]
        for legacy, ns_field in LEGACY_FIELD_ALIASES.items():
            if ns_field not in values and legacy in item_data:
                values[ns_field] = item_data[legacy]

        internal_id = item_data.get("internalid") or item_data.get("id")
        return cls(
            item_code=code.strip(),
            skip_flag=parse_flag(item_data.get(SKIP_FLAG_FIELD)),
            values=values,
            netsuite_internal_id=str(internal_id) if internal_id is not None else None,
            last_modified=item_data.get("lastmodifieddate"),
        )


@dataclass
class PricingSyncResult:
    """Outcome of PricingSyncEngine.apply()."""

    result: PricingOutcome
    item_code: str
    reason: str | None = None
    error_code: str | None = None
    is_retryable: bool = False
    warnings: list[str] = field(default_factory=list)
    sync_fields: PricingSyncFields | None = None
    pricing_before: PricingSnapshot | None = None
    pricing_after: PricingSnapshot | None = None
    opms_item_id: int | None = None
    opms_product_id: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "result": self.result.value,
            "itemCode": self.item_code,
            "reason": self.reason,
            "errorCode": self.error_code,
            "warnings": self.warnings,
            "syncFields": self.sync_fields.model_dump() if self.sync_fields else None,
            "pricingBefore": self.pricing_before.model_dump() if self.pricing_before else None,
            "pricingAfter": self.pricing_after.model_dump() if self.pricing_after else None,
            "opmsItemId": self.opms_item_id,
            "opmsProductId": self.opms_product_id,
        }


def _coerce_amount(ns_field: str, raw: Any) -> tuple[float | None, str | None]:
    """Convert one raw value to a float, returning (value, error)."""
    if raw is None or (isinstance(raw, str) and not raw.strip()):
        return 0.0, None
    if isinstance(raw, bool):
        return None, f"{ns_field}: Must be a valid number (got: {raw!r})"
    if isinstance(raw, (int, float, Decimal)):
        try:
            value = float(raw)
        except OverflowError:
            return None, f"{ns_field}: Must be a finite number (got: {raw!r})"
    elif isinstance(raw, str):
        try:
            value = float(Decimal(raw.strip()))
        except (InvalidOperation, ValueError):
            return None, f"{ns_field}: Must be a valid number (got: {raw!r})"
    else:
        return None, f"{ns_field}: Must be a valid number (got: {raw!r})"

    if not math.isfinite(value):
        return None, f"{ns_field}: Must be a finite number (got: {raw!r})"
    if value < 0:
        return None, f"{ns_field}: Must be non-negative (got: {value})"
    if value > 0 and (value < MIN_POSITIVE_PRICE or value > MAX_PRICE):
        return None, f"{ns_field}: Price out of reasonable range (got: {value})"
    return round(value, 2), None


def validate_pricing(record: PricingRecord) -> tuple[PricingSyncFields, list[str]]:
    """Validate and convert a record's values into the OPMS field set.

    Blank or null values become 0, matching how NetSuite clears a price.

    Returns:
        Tuple of (fields to apply, business-rule warnings).

    Raises:
        ValidationError: Listing every invalid field.
    """
    errors: list[str] = []
    first_bad_field: str | None = None
    converted: dict[str, float] = {}

    for ns_field, column in PRICING_FIELD_MAP.items():
        if ns_field not in record.values:
            continue
        value, error = _coerce_amount(ns_field, record.values[ns_field])
        if error:
            errors.append(error)
            first_bad_field = first_bad_field or ns_field
        else:
            converted[column] = value

    if errors:
        raise ValidationError("; ".join(errors), field=first_bad_field)

    warnings: list[str] = []
    if converted.get("p_res_cut") and converted.get("cost_cut"):
        if converted["p_res_cut"] <= converted["cost_cut"]:
            warnings.append(
                "Selling price (p_res_cut) is not higher than cost (cost_cut)"
            )
    if converted.get("p_hosp_roll") and converted.get("cost_roll"):
        if converted["p_hosp_roll"] <= converted["cost_roll"]:
            warnings.append(
                "Roll selling price (p_hosp_roll) is not higher than roll cost (cost_roll)"
            )

    return PricingSyncFields(**converted), warnings


class PricingSyncEngine:
    """Applies NetSuite pricing to the OPMS catalog.

    Attributes:
        catalog: Catalog store used for lookup and the transactional upsert.
        user_id: Legacy user id stamped on written rows.
    """

    def __init__(self, catalog: CatalogStore, user_id: int = SYNC_USER_ID) -> None:
        self.catalog = catalog
        self.user_id = user_id

    def apply(self, record: PricingRecord) -> PricingSyncResult:
        """Apply one pricing record.

        Args:
            record: Parsed NetSuite pricing record.

        Returns:
            PricingSyncResult with result updated, skipped or error. Errors
            carry a registry code and whether a retry could help.
        """
        if record.skip_flag:
            logger.info("Pricing sync skipped for %s: %s", record.item_code, SKIP_REASON)
            return PricingSyncResult(
                result=PricingOutcome.skipped,
                item_code=record.item_code,
                reason=SKIP_REASON,
            )

        target = None
        try:
            fields, warnings = validate_pricing(record)

            target = self.catalog.find_pricing_target(record.item_code)
            if target is None:
                raise NotFoundError("Item", record.item_code)

            with self.catalog.transaction():
                after = self.catalog.upsert_pricing(target, fields, self.user_id)
        except (ValidationError, NotFoundError, SQLAlchemyError) as e:
            error = classify_exception(e)
            log = logger.exception if isinstance(e, SQLAlchemyError) else logger.warning
            log("Pricing sync failed for %s: %s", record.item_code, error)
            return PricingSyncResult(
                result=PricingOutcome.error,
                item_code=record.item_code,
                reason=error.message,
                error_code=error.code,
                is_retryable=error.is_retryable,
                pricing_before=target.before if target else None,
                opms_item_id=target.item_id if target else None,
                opms_product_id=target.product_id if target else None,
            )

        for warning in warnings:
            logger.warning("Pricing warning for %s: %s", record.item_code, warning)
        logger.info(
            "Pricing updated for %s (product %s)", record.item_code, target.product_id
        )
        return PricingSyncResult(
            result=PricingOutcome.updated,
            item_code=record.item_code,
            warnings=warnings,
            sync_fields=fields,
            pricing_before=target.before,
            pricing_after=after,
            opms_item_id=target.item_id,
            opms_product_id=target.product_id,
        )
