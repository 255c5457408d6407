"""Seed data for the legacy OPMS catalog tables."""

from sqlalchemy.orm import Session

from opms_sync.db.models import Item, Product, ProductPrice, ProductPriceCost

PRODUCT_ID = 10
DIGITAL_PRODUCT_ID = 20

PRICING_ITEM_ID = 101  # opmsAPI01, target of the pricing scenarios
PHYSICAL_ITEM_ID = 102  # 1234-5678
SECOND_ITEM_ID = 103  # 1234-5679, same product
DIGITAL_ITEM_ID = 104  # product_type D
NO_CODE_ITEM_ID = 105  # no item code assigned yet

SEED_MODIFIED = "2026-01-01T00:00:00+00:00"


def seed_catalog(db: Session) -> None:
    """Insert two products and five items.

    opmsAPI01 exists with no pricing rows; opmsAPI99 does not exist.
    """
    db.add_all(
        [
            Product(id=PRODUCT_ID, name="Belmont Velvet"),
            Product(id=DIGITAL_PRODUCT_ID, name="Swatch Download"),
        ]
    )
    db.flush()
    db.add_all(
        [
            Item(
                id=PRICING_ITEM_ID,
                product_id=PRODUCT_ID,
                code="opmsAPI01",
                color="Slate",
                date_modified=SEED_MODIFIED,
            ),
            Item(
                id=PHYSICAL_ITEM_ID,
                product_id=PRODUCT_ID,
                code="1234-5678",
                color="Navy",
                upc_code="012345678905",
                date_modified=SEED_MODIFIED,
            ),
            Item(
                id=SECOND_ITEM_ID,
                product_id=PRODUCT_ID,
                code="1234-5679",
                color="Rust",
                upc_code="012345678912",
                date_modified=SEED_MODIFIED,
            ),
            Item(
                id=DIGITAL_ITEM_ID,
                product_id=DIGITAL_PRODUCT_ID,
                code="5555-0001",
                product_type="D",
                date_modified=SEED_MODIFIED,
            ),
            Item(
                id=NO_CODE_ITEM_ID,
                product_id=DIGITAL_PRODUCT_ID,
                code=None,
                date_modified=SEED_MODIFIED,
            ),
        ]
    )
    db.commit()


def stored_pricing(db: Session, product_id: int = PRODUCT_ID) -> tuple:
    """Read (p_res_cut, p_hosp_roll, cost_cut, cost_roll) fresh from the database."""
    db.expire_all()
    price = db.get(ProductPrice, (product_id, "R"))
    cost = db.get(ProductPriceCost, product_id)
    return (
        price.p_res_cut if price else None,
        price.p_hosp_roll if price else None,
        cost.cost_cut if cost else None,
        cost.cost_roll if cost else None,
    )
