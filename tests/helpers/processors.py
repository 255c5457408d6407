"""Test doubles for the dispatcher's processor and the NetSuite clients."""

from collections.abc import Callable
from typing import Any

from opms_sync.services.erp_client import ErpPushResult
from opms_sync.services.item_sync_processor import ItemOutcome, ItemSyncResult
from opms_sync.services.payloads import ItemPushFields


class StubProcessor:
    """ItemProcessor whose behavior is a plain function of the entry.

    Records every entry id it was handed.
    """

    def __init__(self, handler: Callable[[Any], ItemSyncResult] | None = None) -> None:
        self.handler = handler or (
            lambda entry: ItemSyncResult(
                outcome=ItemOutcome.success,
                opms_item_id=entry.item_id,
                opms_product_id=entry.product_id,
            )
        )
        self.seen: list[int] = []

    def process(self, entry: Any) -> ItemSyncResult:
        self.seen.append(entry.id)
        return self.handler(entry)


class FakeErpClient:
    """ErpClient that returns a canned result and records pushed payloads."""

    def __init__(self, result: ErpPushResult | None = None, error: Exception | None = None) -> None:
        self.result = result or ErpPushResult(success=True, external_id="4242")
        self.error = error
        self.pushed: list[dict] = []

    def push_item(self, fields: ItemPushFields) -> ErpPushResult:
        self.pushed.append(fields.to_payload())
        if self.error is not None:
            raise self.error
        return self.result


class FakeItemSource:
    """ErpItemSource serving item records from a dict keyed by itemid.

    ``search_error`` is raised by fetch_updated_items; ``item_errors`` maps
    an itemid to the exception get_item raises for it.
    """

    def __init__(
        self,
        items: list[dict[str, Any]] | None = None,
        search_error: Exception | None = None,
        item_errors: dict[str, Exception] | None = None,
    ) -> None:
        self.items = list(items or [])
        self.search_error = search_error
        self.item_errors = item_errors or {}
        self.searches: list[tuple[str | None, int]] = []
        self.lookups: list[str] = []
        self.closed = False

    def fetch_updated_items(self, modified_since: str | None = None, limit: int = 100) -> list[dict[str, Any]]:
        self.searches.append((modified_since, limit))
        if self.search_error is not None:
            raise self.search_error
        return self.items[:limit]

    def get_item(self, item_code: str) -> dict[str, Any] | None:
        self.lookups.append(item_code)
        if item_code in self.item_errors:
            raise self.item_errors[item_code]
        return next((item for item in self.items if item.get("itemid") == item_code), None)

    def close(self) -> None:
        self.closed = True
