from uuid import UUID

from fastapi import APIRouter, BackgroundTasks, Depends, Query
from sqlalchemy.orm import Session

from commerce.application.schemas import OrderCreate, OrderPage, OrderRead, PlacedOrder, TrackingRead
from commerce.application.service import OrderPlacementService, OrderService
from commerce.domain.models import Customer
from commerce.infrastructure.db import get_db
from commerce.infrastructure.notifications import NotificationDispatcher, get_notification_dispatcher
from .deps import get_current_customer

router = APIRouter(prefix="/orders", tags=["orders"])

@router.post("/", response_model=PlacedOrder, status_code=201)
def place_order(
    payload: OrderCreate,
    background_tasks: BackgroundTasks,
    customer: Customer = Depends(get_current_customer),
    db: Session = Depends(get_db),
    notifier: NotificationDispatcher = Depends(get_notification_dispatcher),
):
    """Place an order; confirmations are sent after the response."""
    service = OrderPlacementService(db, notifier=notifier, defer=background_tasks.add_task)
    return service.place_order(customer.id, payload)

@router.get("/", response_model=OrderPage)
def list_orders(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    customer: Customer = Depends(get_current_customer),
    db: Session = Depends(get_db),
):
    return OrderService(db).list_for_customer(customer.id, page=page, limit=limit)

@router.get("/track/{tracking_id}", response_model=TrackingRead)
def track_order(tracking_id: str, db: Session = Depends(get_db)):
    """Public lookup by tracking number or order number."""
    return OrderService(db).track(tracking_id)

@router.get("/{order_id}", response_model=OrderRead)
def get_order(
    order_id: UUID,
    customer: Customer = Depends(get_current_customer),
    db: Session = Depends(get_db),
):
    return OrderService(db).get_for_customer(customer.id, order_id)
