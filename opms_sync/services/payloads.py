"""Typed shapes for the JSON columns of the sync tables.

Queue event data, applied field sets and pricing snapshots are stored as
JSON text. They are validated here when written and parsed here when
read, so the rest of the engine works with typed objects.
"""

import json
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

# trigger_source values that bypass the global sync-enabled switch
MANUAL_TRIGGER_SOURCES = frozenset({"MANUAL_API", "MANUAL_PRODUCT_API"})


class QueueEventData(BaseModel):
    """Event data attached to an opms_sync_queue entry (version 1)."""

    model_config = ConfigDict(extra="forbid")

    version: Literal[1] = 1
    trigger_source: str | None = None
    triggered_by: str | None = None
    reason: str | None = None
    live_sync: bool = True
    changed_fields: list[str] = Field(default_factory=list)

    @property
    def is_manual(self) -> bool:
        return self.trigger_source in MANUAL_TRIGGER_SOURCES

    def to_json(self) -> str:
        return self.model_dump_json(exclude_none=True)

    @classmethod
    def from_json(cls, raw: str | None) -> "QueueEventData":
        if not raw:
            return cls()
        return cls.model_validate_json(raw)

    @classmethod
    def coerce(cls, value: "QueueEventData | dict | None") -> "QueueEventData":
        """Validate a caller-supplied dict (or pass through an instance)."""
        if value is None:
            return cls()
        if isinstance(value, cls):
            return value
        return cls.model_validate(value)


class PricingSnapshot(BaseModel):
    """The four OPMS pricing columns at a point in time."""

    p_res_cut: float | None = None
    p_hosp_roll: float | None = None
    cost_cut: float | None = None
    cost_roll: float | None = None


class PricingSyncFields(BaseModel):
    """Fields applied by an ERP -> OPMS pricing sync."""

    kind: Literal["pricing"] = "pricing"
    p_res_cut: float | None = None
    p_hosp_roll: float | None = None
    cost_cut: float | None = None
    cost_roll: float | None = None


class ItemPushFields(BaseModel):
    """Mapped field set pushed to NetSuite for an OPMS item."""

    kind: Literal["item_push"] = "item_push"
    itemId: str
    displayname: str | None = None
    custitem_opms_item_id: int | None = None
    custitem_opms_prod_id: int | None = None
    taxScheduleId: str | None = None
    upcCode: str | None = None

    def to_payload(self) -> dict[str, Any]:
        """Return the RESTlet request body."""
        return self.model_dump(exclude={"kind"}, exclude_none=True)


def dump_json(value: BaseModel | dict | list | None) -> str | None:
    """Serialize a model or plain structure for a Text JSON column."""
    if value is None:
        return None
    if isinstance(value, BaseModel):
        return value.model_dump_json()
    return json.dumps(value, default=str)


def load_json(raw: str | None) -> Any:
    """Parse a Text JSON column, tolerating legacy non-JSON values."""
    if raw is None:
        return None
    try:
        return json.loads(raw)
    except (json.JSONDecodeError, TypeError):
        return raw
