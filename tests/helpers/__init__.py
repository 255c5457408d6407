"""Shared test helpers."""

from tests.helpers.catalog import (
    DIGITAL_ITEM_ID,
    DIGITAL_PRODUCT_ID,
    NO_CODE_ITEM_ID,
    PHYSICAL_ITEM_ID,
    PRICING_ITEM_ID,
    PRODUCT_ID,
    SECOND_ITEM_ID,
    seed_catalog,
    stored_pricing,
)
from tests.helpers.processors import FakeErpClient, FakeItemSource, StubProcessor

__all__ = [
    "PRODUCT_ID",
    "DIGITAL_PRODUCT_ID",
    "PRICING_ITEM_ID",
    "PHYSICAL_ITEM_ID",
    "SECOND_ITEM_ID",
    "DIGITAL_ITEM_ID",
    "NO_CODE_ITEM_ID",
    "seed_catalog",
    "stored_pricing",
    "StubProcessor",
    "FakeErpClient",
    "FakeItemSource",
]
