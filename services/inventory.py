"""
Inventory ledger.

Every stock change is one conditional UPDATE so concurrent checkouts over the
same product can never drive ``stock`` below zero. Functions run inside the
caller's transaction and never commit.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Iterable, List

from sqlalchemy import update
from sqlalchemy.orm import Session

from core.errors import InsufficientStockError, ValidationError
from models.product import Product

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StockItem:
    id: int
    qty: int


def _field(item: Any, name: str) -> Any:
    if isinstance(item, dict):
        return item.get(name)
    return getattr(item, name, None)


def _is_positive_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value > 0


def validate_stock_items(items: Iterable[Any]) -> List[StockItem]:
    """Check every item before any row is touched."""
    validated: List[StockItem] = []
    for index, item in enumerate(items):
        product_id = _field(item, "id")
        qty = _field(item, "qty")
        if not _is_positive_int(product_id):
            raise ValidationError(f"items[{index}].id must be a positive integer")
        if not _is_positive_int(qty):
            raise ValidationError(f"items[{index}].qty must be a positive integer")
        validated.append(StockItem(id=product_id, qty=qty))
    return validated


def decrement_stock(db: Session, items: Iterable[Any]) -> None:
    """Decrement each product by qty, only where enough stock is available.

    Raises InsufficientStockError on the first product that cannot be
    decremented (missing row or stock < qty). Items already decremented in
    this call are left to the caller's transaction.
    """
    for item in validate_stock_items(items):
        result = db.execute(
            update(Product)
            .where(Product.id == item.id, Product.stock >= item.qty)
            .values(stock=Product.stock - item.qty, updated_at=datetime.utcnow())
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            logger.warning("Stock decrement refused for product %s (qty=%s)", item.id, item.qty)
            raise InsufficientStockError(item.id)
        logger.debug("Decremented product %s by %s", item.id, item.qty)


def restock(db: Session, items: Iterable[Any]) -> None:
    """Return previously committed quantities to stock (reversal path)."""
    for item in validate_stock_items(items):
        db.execute(
            update(Product)
            .where(Product.id == item.id)
            .values(stock=Product.stock + item.qty, updated_at=datetime.utcnow())
            .execution_options(synchronize_session=False)
        )
        logger.info("Restocked product %s by %s", item.id, item.qty)
