"""Admin stock corrections and inventory reporting.

Corrections never fail on over-removal: ``remove`` clamps at zero. That
is the opposite of order placement, which rejects and rolls back.
"""
import csv
import io
from datetime import datetime
from decimal import Decimal
from math import ceil
from typing import Any, Dict, Optional

from sqlalchemy import func, select
from sqlalchemy.exc import DBAPIError
from sqlalchemy.orm import Session

from commerce.core_settings import Settings, get_settings
from commerce.domain.errors import CommerceError, NotFound, Unavailable, ValidationError
from commerce.domain.models import MAX_QUANTITY, MovementType, Product, StockMovement
from shared.core import get_logger
from .schemas import (
    Actor, AdjustmentResult, BulkAdjustmentReport, BulkItemResult, BulkStockAdjustmentItem, MovementRequest,
    StockHistoryPage, StockMovementRead,
)
from .stock_ledger import StockLedger

logger = get_logger(__name__)

ADJUSTMENT_TYPES = ("add", "remove", "set")
ADJUSTMENT_MOVEMENTS = {
    "add": MovementType.RESTOCK,
    "remove": MovementType.ADJUSTMENT,
    "set": MovementType.ADJUSTMENT,
}


def target_stock(adjustment_type: str, previous: int, quantity: int) -> int:
    if adjustment_type == "add":
        return previous + quantity
    if adjustment_type == "remove":
        return max(0, previous - quantity)
    return quantity


def validate_adjustment(product_id: Any, adjustment_type: Any, quantity: Any) -> tuple[int, str, int]:
    try:
        product_id = int(product_id)
    except (TypeError, ValueError):
        product_id = 0
    if product_id <= 0:
        raise ValidationError("Invalid product ID. Must be a positive integer")
    if adjustment_type not in ADJUSTMENT_TYPES:
        raise ValidationError("Invalid adjustment type. Use: add, remove, or set")
    try:
        quantity = int(quantity)
    except (TypeError, ValueError):
        raise ValidationError("Quantity must be a whole number") from None
    if quantity < 0 or (quantity == 0 and adjustment_type != "set"):
        raise ValidationError("Quantity must be a positive number")
    if quantity > MAX_QUANTITY:
        raise ValidationError(f"Quantity must not exceed {MAX_QUANTITY}")
    return product_id, adjustment_type, quantity


def stock_status(stock: int, low: int, critical: int) -> str:
    if stock == 0:
        return "out_of_stock"
    if stock <= critical:
        return "critical"
    if stock <= low:
        return "low_stock"
    return "in_stock"


class InventoryService:
    def __init__(self, db: Session, settings: Optional[Settings] = None):
        self.db = db
        self.settings = settings or get_settings()
        self.ledger = StockLedger(db)

    def _apply_adjustment(
        self, product_id: int, adjustment_type: str, quantity: int, reason: str, actor: Actor
    ) -> AdjustmentResult:
        product = self.db.execute(
            select(Product).where(Product.id == product_id).with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if product is None:
            raise NotFound("Product not found", product_id=product_id)

        previous = product.stock_quantity or 0
        delta = target_stock(adjustment_type, previous, quantity) - previous
        result = self.ledger.apply_movement(MovementRequest(
            product_id=product_id,
            movement_type=ADJUSTMENT_MOVEMENTS[adjustment_type],
            quantity_delta=delta,
            reason=reason,
            actor=actor,
        ))
        return AdjustmentResult(
            product_id=product_id,
            product_name=result.product_name,
            adjustment_type=adjustment_type,
            previous_stock=result.previous_stock,
            new_stock=result.new_stock,
            adjustment=delta,
        )

    def adjust_stock(
        self, product_id: int, adjustment_type: str, quantity: int, reason: str, actor: Actor
    ) -> AdjustmentResult:
        product_id, adjustment_type, quantity = validate_adjustment(product_id, adjustment_type, quantity)
        try:
            result = self._apply_adjustment(product_id, adjustment_type, quantity, reason, actor)
            self.db.commit()
        except CommerceError:
            self.db.rollback()
            raise
        except DBAPIError as exc:
            self.db.rollback()
            logger.error("Stock adjustment failed", exc_info=True,
                         extra={'extra_fields': {'product_id': product_id}})
            raise Unavailable() from exc
        return result

    def bulk_adjust_stock(
        self, updates: list[BulkStockAdjustmentItem], reason: str, actor: Actor
    ) -> BulkAdjustmentReport:
        """Apply each update independently; failures are reported, not rolled back."""
        if not updates:
            raise ValidationError("Updates array is required and must not be empty")

        results = []
        try:
            for update in updates:
                try:
                    product_id, adjustment_type, quantity = validate_adjustment(
                        update.product_id, update.adjustment_type, update.quantity
                    )
                    with self.db.begin_nested():
                        result = self._apply_adjustment(product_id, adjustment_type, quantity, reason, actor)
                except CommerceError as exc:
                    results.append(BulkItemResult(product_id=update.product_id, success=False, message=exc.message))
                    continue
                results.append(BulkItemResult(
                    product_id=result.product_id,
                    success=True,
                    product_name=result.product_name,
                    previous_stock=result.previous_stock,
                    new_stock=result.new_stock,
                    adjustment=result.adjustment,
                ))
            self.db.commit()
        except DBAPIError as exc:
            self.db.rollback()
            logger.error("Bulk stock adjustment failed", exc_info=True)
            raise Unavailable() from exc

        success_count = sum(1 for r in results if r.success)
        logger.info(
            "Bulk stock adjustment processed",
            extra={'extra_fields': {'total': len(results), 'succeeded': success_count}}
        )
        return BulkAdjustmentReport(
            results=results,
            total=len(results),
            success_count=success_count,
            failure_count=len(results) - success_count,
        )

    def stock_history(
        self,
        product_id: Optional[int] = None,
        movement_type: Optional[str] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> StockHistoryPage:
        conditions = []
        if product_id is not None:
            conditions.append(StockMovement.product_id == product_id)
        if movement_type:
            conditions.append(StockMovement.movement_type == movement_type)
        if start is not None:
            conditions.append(StockMovement.created_at >= start)
        if end is not None:
            conditions.append(StockMovement.created_at <= end)

        total = self.db.execute(
            select(func.count()).select_from(StockMovement).where(*conditions)
        ).scalar_one()
        movements = self.db.execute(
            select(StockMovement)
            .where(*conditions)
            .order_by(StockMovement.created_at.desc(), StockMovement.id.desc())
            .limit(limit)
            .offset(offset)
        ).scalars().all()
        return StockHistoryPage(
            movements=[StockMovementRead.model_validate(m) for m in movements],
            total=total,
            limit=limit,
            offset=offset,
            pages=ceil(total / limit) if limit else 0,
        )

    def _active_products(self) -> list[Product]:
        return list(self.db.execute(
            select(Product).where(Product.is_active.is_(True)).order_by(Product.category, Product.name)
        ).scalars().all())

    def overview(self) -> Dict[str, Any]:
        low = self.settings.LOW_STOCK_THRESHOLD
        critical = self.settings.CRITICAL_STOCK_THRESHOLD
        products = self._active_products()

        rows = []
        categories: Dict[str, Dict[str, Any]] = {}
        for p in products:
            stock = p.stock_quantity or 0
            value = Decimal(stock) * Decimal(p.price)
            status = stock_status(stock, low, critical)
            rows.append({
                "id": p.id,
                "name": p.name,
                "category": p.category,
                "current_stock": stock,
                "price": p.price,
                "value": value,
                "status": status,
                "last_updated": p.updated_at,
            })
            stats = categories.setdefault(p.category, {"category": p.category, "count": 0, "value": Decimal("0"), "total_stock": 0})
            stats["count"] += 1
            stats["value"] += value
            stats["total_stock"] += stock

        def alerts(status: str, priority: str) -> list:
            return [
                {"id": r["id"], "name": r["name"], "category": r["category"],
                 "current_stock": r["current_stock"], "type": status, "priority": priority}
                for r in rows if r["status"] == status
            ]

        return {
            "overview": {
                "total_products": len(rows),
                "total_value": sum((r["value"] for r in rows), Decimal("0")),
                "average_stock_level": (sum(r["current_stock"] for r in rows) / len(rows)) if rows else 0,
                "low_stock_count": sum(1 for r in rows if r["status"] == "low_stock"),
                "critical_stock_count": sum(1 for r in rows if r["status"] == "critical"),
                "out_of_stock_count": sum(1 for r in rows if r["status"] == "out_of_stock"),
            },
            "alerts": {
                "low_stock": alerts("low_stock", "medium"),
                "critical": alerts("critical", "high"),
                "out_of_stock": alerts("out_of_stock", "urgent"),
            },
            "category_stats": sorted(categories.values(), key=lambda c: c["value"], reverse=True),
            "products": rows,
        }

    def report(self) -> Dict[str, Any]:
        overview = self.overview()
        categories: Dict[str, Dict[str, Any]] = {}
        for row in overview["products"]:
            cat = categories.setdefault(row["category"], {
                "product_count": 0, "total_stock": 0, "total_value": Decimal("0"), "price_sum": Decimal("0"),
            })
            cat["product_count"] += 1
            cat["total_stock"] += row["current_stock"]
            cat["total_value"] += row["value"]
            cat["price_sum"] += Decimal(row["price"])
        for cat in categories.values():
            cat["average_price"] = (cat.pop("price_sum") / cat["product_count"]).quantize(Decimal("0.01"))

        rows = overview["products"]
        return {
            "summary": {
                "total_products": len(rows),
                "total_value": overview["overview"]["total_value"],
                "in_stock_count": sum(1 for r in rows if r["current_stock"] > 0),
                "out_of_stock_count": overview["overview"]["out_of_stock_count"],
                "low_stock_count": sum(
                    1 for r in rows if 0 < r["current_stock"] <= self.settings.LOW_STOCK_THRESHOLD
                ),
            },
            "categories": categories,
            "products": rows,
        }

    def report_csv(self) -> str:
        buffer = io.StringIO()
        writer = csv.writer(buffer)
        writer.writerow(["ID", "Name", "Category", "Stock", "Price", "Total Value", "Status", "Last Updated"])
        for row in self.report()["products"]:
            writer.writerow([
                row["id"], row["name"], row["category"], row["current_stock"],
                row["price"], row["value"], row["status"], row["last_updated"],
            ])
        return buffer.getvalue()
