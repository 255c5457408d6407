"""Access to the legacy OPMS catalog tables.

The sync engine treats the catalog as an external collaborator: it needs
to look items up by code or id, read and upsert the two pricing records of
a product, and run those upserts inside a transaction it controls. The
CatalogStore protocol captures exactly that surface; SqlCatalogStore
implements it over T_ITEM, T_PRODUCT, T_PRODUCT_PRICE and
T_PRODUCT_PRICE_COST.
"""

from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Protocol

from sqlalchemy.orm import Session

from opms_sync.db.models import Item, Product, ProductPrice, ProductPriceCost
from opms_sync.services.payloads import PricingSnapshot, PricingSyncFields

# Customer price rows are keyed by (product_id, product_type)
DEFAULT_PRODUCT_TYPE = "R"
# Legacy user id recorded on rows written by the sync service
SYNC_USER_ID = 1


@dataclass
class CatalogItem:
    """Read-only view of an OPMS item joined to its product."""

    item_id: int
    product_id: int
    code: str | None
    product_type: str
    product_name: str
    color: str | None
    archived: bool
    date_modified: str
    upc_code: str | None = None


@dataclass
class PricingTarget:
    """Resolved pricing aggregate for an item code."""

    item_id: int
    product_id: int
    item_code: str
    product_type: str
    before: PricingSnapshot


class CatalogStore(Protocol):
    """What the sync engine needs from the catalog store."""

    def find_pricing_target(self, item_code: str) -> PricingTarget | None: ...

    def read_pricing(self, product_id: int, product_type: str) -> PricingSnapshot: ...

    def upsert_pricing(
        self, target: PricingTarget, fields: PricingSyncFields, user_id: int
    ) -> PricingSnapshot: ...

    def transaction(self): ...

    def get_item(self, item_id: int) -> CatalogItem | None: ...

    def list_product_items(self, product_id: int) -> list[CatalogItem]: ...

    def items_modified_since(self, since: str) -> list[CatalogItem]: ...


class SqlCatalogStore:
    """CatalogStore over the legacy tables through a SQLAlchemy session."""

    def __init__(self, db: Session) -> None:
        self.db = db

    @staticmethod
    def _to_catalog_item(item: Item, product: Product) -> CatalogItem:
        return CatalogItem(
            item_id=item.id,
            product_id=item.product_id,
            code=item.code,
            product_type=item.product_type or DEFAULT_PRODUCT_TYPE,
            product_name=product.name,
            color=item.color,
            archived=bool(item.archived or product.archived),
            date_modified=item.date_modified,
            upc_code=item.upc_code,
        )

    def _item_query(self):
        return self.db.query(Item, Product).join(Product, Product.id == Item.product_id)

    @contextmanager
    def transaction(self) -> Iterator[None]:
        """Commit on success, roll back everything on any exception."""
        try:
            yield
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

    def find_pricing_target(self, item_code: str) -> PricingTarget | None:
        """Resolve a non-archived item by code and read its current pricing."""
        row = (
            self._item_query()
            .filter(Item.code == item_code, Item.archived.is_(False))
            .order_by(Item.id)
            .first()
        )
        if row is None:
            return None
        item, _product = row
        product_type = item.product_type or DEFAULT_PRODUCT_TYPE
        return PricingTarget(
            item_id=item.id,
            product_id=item.product_id,
            item_code=item.code,
            product_type=product_type,
            before=self.read_pricing(item.product_id, product_type),
        )

    def read_pricing(self, product_id: int, product_type: str) -> PricingSnapshot:
        price = self.db.get(ProductPrice, (product_id, product_type))
        cost = self.db.get(ProductPriceCost, product_id)
        return PricingSnapshot(
            p_res_cut=price.p_res_cut if price else None,
            p_hosp_roll=price.p_hosp_roll if price else None,
            cost_cut=cost.cost_cut if cost else None,
            cost_roll=cost.cost_roll if cost else None,
        )

    def upsert_pricing(
        self,
        target: PricingTarget,
        fields: PricingSyncFields,
        user_id: int = SYNC_USER_ID,
    ) -> PricingSnapshot:
        """Insert-or-update both pricing records with the provided fields.

        Fields left as None keep their stored value. Must run inside
        transaction(); nothing is committed here.
        """
        today = datetime.now(UTC).date().isoformat()

        price = self.db.get(ProductPrice, (target.product_id, target.product_type))
        if price is None:
            price = ProductPrice(
                product_id=target.product_id, product_type=target.product_type
            )
            self.db.add(price)
        if fields.p_res_cut is not None:
            price.p_res_cut = fields.p_res_cut
        if fields.p_hosp_roll is not None:
            price.p_hosp_roll = fields.p_hosp_roll
        price.date = today
        price.user_id = user_id

        cost = self.db.get(ProductPriceCost, target.product_id)
        if cost is None:
            cost = ProductPriceCost(product_id=target.product_id, fob="")
            self.db.add(cost)
        if fields.cost_cut is not None:
            cost.cost_cut = fields.cost_cut
        if fields.cost_roll is not None:
            cost.cost_roll = fields.cost_roll
        cost.date = today
        cost.user_id = user_id

        self.db.flush()
        return PricingSnapshot(
            p_res_cut=price.p_res_cut,
            p_hosp_roll=price.p_hosp_roll,
            cost_cut=cost.cost_cut,
            cost_roll=cost.cost_roll,
        )

    def get_item(self, item_id: int) -> CatalogItem | None:
        row = self._item_query().filter(Item.id == item_id).first()
        if row is None:
            return None
        return self._to_catalog_item(*row)

    def list_product_items(self, product_id: int) -> list[CatalogItem]:
        rows = (
            self._item_query()
            .filter(Item.product_id == product_id, Item.archived.is_(False))
            .order_by(Item.id)
            .all()
        )
        return [self._to_catalog_item(item, product) for item, product in rows]

    def items_modified_since(self, since: str) -> list[CatalogItem]:
        rows = (
            self._item_query()
            .filter(Item.date_modified > since, Item.archived.is_(False))
            .order_by(Item.date_modified, Item.id)
            .all()
        )
        return [self._to_catalog_item(item, product) for item, product in rows]
