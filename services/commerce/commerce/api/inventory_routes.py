from datetime import datetime
from typing import Literal, Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import Response
from sqlalchemy.orm import Session

from commerce.application.inventory import InventoryService
from commerce.application.schemas import (
    AdjustmentResult, BulkAdjustmentReport, BulkStockAdjustment, StockAdjustment, StockHistoryPage,
)
from commerce.domain.models import Customer, MovementType
from commerce.infrastructure.db import get_db
from .deps import actor_for, require_admin

router = APIRouter(prefix="/inventory", tags=["inventory"])

@router.get("/overview")
def inventory_overview(admin: Customer = Depends(require_admin), db: Session = Depends(get_db)):
    return InventoryService(db).overview()

# Declared before /stock/{product_id} so "bulk" is not parsed as an id
@router.put("/stock/bulk", response_model=BulkAdjustmentReport)
def bulk_adjust_stock(
    payload: BulkStockAdjustment,
    admin: Customer = Depends(require_admin),
    db: Session = Depends(get_db),
):
    return InventoryService(db).bulk_adjust_stock(payload.updates, payload.reason, actor_for(admin))

@router.put("/stock/{product_id}", response_model=AdjustmentResult)
def adjust_stock(
    product_id: int,
    payload: StockAdjustment,
    admin: Customer = Depends(require_admin),
    db: Session = Depends(get_db),
):
    return InventoryService(db).adjust_stock(
        product_id, payload.adjustment_type, payload.quantity, payload.reason, actor_for(admin)
    )

@router.get("/history", response_model=StockHistoryPage)
def stock_history(
    product_id: Optional[int] = None,
    movement_type: Optional[MovementType] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    admin: Customer = Depends(require_admin),
    db: Session = Depends(get_db),
):
    return InventoryService(db).stock_history(
        product_id=product_id,
        movement_type=movement_type.value if movement_type else None,
        start=start_date,
        end=end_date,
        limit=limit,
        offset=offset,
    )

@router.get("/report")
def inventory_report(
    format: Literal["json", "csv"] = "json",
    admin: Customer = Depends(require_admin),
    db: Session = Depends(get_db),
):
    service = InventoryService(db)
    if format == "csv":
        return Response(
            content=service.report_csv(),
            media_type="text/csv",
            headers={"Content-Disposition": "attachment; filename=inventory-report.csv"},
        )
    return service.report()
