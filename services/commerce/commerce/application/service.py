from datetime import datetime
from decimal import Decimal
from math import ceil
from typing import Any, Callable, Optional
from uuid import UUID

from sqlalchemy import func, select, text
from sqlalchemy.exc import DBAPIError, IntegrityError
from sqlalchemy.orm import Session, selectinload

from commerce.core_settings import Settings, get_settings
from commerce.domain.errors import CommerceError, Conflict, InsufficientStock, NotFound, Unavailable, ValidationError
from commerce.domain.models import (
    MONEY_MAX, Customer, MovementType, Order, OrderLineItem, OrderStatus, PaymentStatus, Product, line_total, utcnow,
)
from shared.core import get_logger
from .order_numbers import OrderNumberGenerator
from .schemas import (
    Actor, CatalogLineItem, MovementRequest, NoticeItem, OrderCreate, OrderLineItemRead, OrderNotice, OrderPage,
    OrderRead, Pagination, PlacedOrder, ShippingAddressRead, TrackingRead,
)
from .stock_ledger import StockLedger

logger = get_logger(__name__)


class OrderPlacementService:
    """Places an order as one transaction: number, order row, stock, line items.

    Notifications go out only after the commit and can never undo or fail
    the placement.
    """

    def __init__(
        self,
        db: Session,
        notifier: Optional[Any] = None,
        defer: Optional[Callable[..., Any]] = None,
        clock: Callable[[], datetime] = utcnow,
        settings: Optional[Settings] = None,
    ):
        self.db = db
        self.settings = settings or get_settings()
        self.notifier = notifier
        self.defer = defer
        self.clock = clock
        self.ledger = StockLedger(db)
        self.numbers = OrderNumberGenerator(
            db, prefix=self.settings.ORDER_NUMBER_PREFIX, timezone=self.settings.ORDER_NUMBER_TIMEZONE
        )

    def place_order(self, customer_id: int, data: OrderCreate, now: Optional[datetime] = None) -> PlacedOrder:
        if not data.items:
            raise ValidationError("No items in order")
        now = now or self.clock()

        try:
            self._bound_transaction()
            customer = self.db.get(Customer, customer_id)
            if customer is None:
                raise NotFound("Customer not found", customer_id=customer_id)

            lines, tracked = self._resolve_lines(data)
            subtotal = sum((line.total_price for line in lines), Decimal("0.00"))
            total = subtotal + data.shipping_cost + data.tax_amount
            if total > MONEY_MAX or any(line.total_price > MONEY_MAX for line in lines):
                raise ValidationError("Order total exceeds the largest amount an order can hold",
                                      limit=str(MONEY_MAX))
            if data.total_amount is not None and data.total_amount != total:
                raise ValidationError(
                    "Order total does not match its items", expected=str(total), received=str(data.total_amount)
                )

            order = self._insert_numbered_order(customer, data, subtotal, total, now)

            actor = Actor(user_id=customer.id, name=customer.display_name)
            for position, line in enumerate(lines):
                line.order = order
                line.position = position
                if line.product_id in tracked:
                    self.ledger.apply_movement(MovementRequest(
                        product_id=line.product_id,
                        movement_type=MovementType.SALE,
                        quantity_delta=-line.quantity,
                        reason=f"Order {order.order_number}",
                        reference_id=str(order.id),
                        actor=actor,
                        is_automated=True,
                    ))

            self.db.add_all(lines)
            self.db.flush()
            self.db.commit()
        except CommerceError:
            self.db.rollback()
            raise
        except DBAPIError as exc:
            self.db.rollback()
            logger.error("Order placement failed", exc_info=True,
                         extra={'extra_fields': {'customer_id': customer_id}})
            raise Unavailable() from exc
        except Exception:
            self.db.rollback()
            raise

        logger.info(
            "Order placed",
            extra={'extra_fields': {
                'order_id': str(order.id),
                'order_number': order.order_number,
                'customer_id': customer_id,
                'line_count': len(lines),
                'total_amount': str(total),
            }}
        )
        self._notify(self._notice(order, lines, customer))
        return PlacedOrder(order_id=order.id, order_number=order.order_number, status=order.status)

    def _bound_transaction(self) -> None:
        if self.db.get_bind().dialect.name != "postgresql":
            return
        timeout_ms = int(self.settings.ORDER_TRANSACTION_TIMEOUT_MS)
        self.db.execute(text(f"SET LOCAL statement_timeout = {timeout_ms}"))
        self.db.execute(text(f"SET LOCAL lock_timeout = {timeout_ms}"))

    def _resolve_lines(self, data: OrderCreate) -> tuple[list[OrderLineItem], set[int]]:
        """Validate every line and snapshot it before anything is written.

        Lines without a product id (ad-hoc items) are accepted as given and
        never touch stock.
        """
        tracked: set[int] = set()
        requested: dict[int, int] = {}
        lines = []
        for item in data.items:
            if isinstance(item, CatalogLineItem):
                product = self.db.get(Product, item.product_id)
                if product is None:
                    raise NotFound(f"Product with ID {item.product_id} not found", product_id=item.product_id)
                if product.stock_quantity is not None:
                    tracked.add(product.id)
                requested[product.id] = requested.get(product.id, 0) + item.quantity
                if product.id in tracked and product.stock_quantity < requested[product.id]:
                    raise InsufficientStock(
                        product.id, product.name, requested=requested[product.id], available=product.stock_quantity
                    )
                unit_price = Decimal(product.price)
                lines.append(OrderLineItem(
                    product_id=product.id,
                    product_name=product.name,
                    product_description=product.description,
                    category=product.category,
                    weight=product.weight,
                    image_url=product.image_url,
                    quantity=item.quantity,
                    unit_price=unit_price,
                    total_price=line_total(item.quantity, unit_price),
                ))
            else:
                lines.append(OrderLineItem(
                    product_id=None,
                    product_name=item.name,
                    product_description=item.description or "",
                    category=item.category,
                    weight=item.weight,
                    image_url=item.image_url,
                    quantity=item.quantity,
                    unit_price=item.price,
                    total_price=line_total(item.quantity, item.price),
                ))
        return lines, tracked

    def _insert_numbered_order(
        self, customer: Customer, data: OrderCreate, subtotal: Decimal, total: Decimal, now: datetime
    ) -> Order:
        """Allocate a number and insert the order, redoing both on a number collision."""
        address = data.shipping_address
        attempts = self.settings.ORDER_NUMBER_MAX_ATTEMPTS
        for attempt in range(1, attempts + 1):
            order_number = self.numbers.next_order_number(now)
            order = Order(
                order_number=order_number,
                customer_id=customer.id,
                status=OrderStatus.CONFIRMED.value,
                subtotal=subtotal,
                shipping_cost=data.shipping_cost,
                tax_amount=data.tax_amount,
                total_amount=total,
                payment_method=data.payment_method.value,
                # Online capture is not wired up; every method starts pending
                payment_status=PaymentStatus.PENDING.value,
                shipping_first_name=address.first_name,
                shipping_last_name=address.last_name,
                shipping_address=address.address,
                shipping_city=address.city,
                shipping_state=address.state,
                shipping_postal_code=address.postal_code,
                shipping_country=address.country or self.settings.DEFAULT_COUNTRY,
                contact_email=data.contact.email,
                contact_phone=data.contact.phone,
                order_notes=data.notes,
                created_at=now,
            )
            try:
                with self.db.begin_nested():
                    self.db.add(order)
                    self.db.flush()
                return order
            except IntegrityError as exc:
                if "order_number" not in str(exc.orig).lower():
                    raise
                logger.warning(
                    "Order number collision, retrying",
                    extra={'extra_fields': {'order_number': order_number, 'attempt': attempt}}
                )
        raise Conflict(attempts=attempts)

    def _notice(self, order: Order, lines: list[OrderLineItem], customer: Customer) -> OrderNotice:
        return OrderNotice(
            order_id=order.id,
            order_number=order.order_number,
            status=order.status,
            created_at=order.created_at,
            payment_method=order.payment_method,
            customer_name=customer.display_name,
            shipping_name=order.shipping_name,
            shipping_lines=[
                order.shipping_address,
                f"{order.shipping_city}, {order.shipping_state} {order.shipping_postal_code}",
                order.shipping_country,
            ],
            contact_email=order.contact_email,
            contact_phone=order.contact_phone,
            items=[
                NoticeItem(
                    name=line.product_name, quantity=line.quantity,
                    unit_price=line.unit_price, total_price=line.total_price,
                )
                for line in lines
            ],
            subtotal=order.subtotal,
            shipping_cost=order.shipping_cost,
            tax_amount=order.tax_amount,
            total_amount=order.total_amount,
        )

    def _notify(self, notice: OrderNotice) -> None:
        if self.notifier is None:
            return
        try:
            if self.defer is not None:
                self.defer(self.notifier.order_placed, notice)
            else:
                self.notifier.order_placed(notice)
        except Exception:
            logger.error(
                "Order notification dispatch failed",
                exc_info=True,
                extra={'extra_fields': {'order_number': notice.order_number}}
            )


def order_to_read(order: Order) -> OrderRead:
    return OrderRead(
        id=order.id,
        order_number=order.order_number,
        status=order.status,
        payment_method=order.payment_method,
        payment_status=order.payment_status,
        subtotal=order.subtotal,
        shipping_cost=order.shipping_cost,
        tax_amount=order.tax_amount,
        total_amount=order.total_amount,
        shipping_address=ShippingAddressRead(
            name=order.shipping_name,
            address=order.shipping_address,
            city=order.shipping_city,
            state=order.shipping_state,
            postal_code=order.shipping_postal_code,
            country=order.shipping_country,
        ),
        contact_email=order.contact_email,
        contact_phone=order.contact_phone,
        order_notes=order.order_notes,
        carrier=order.carrier,
        tracking_number=order.tracking_number,
        shipped_at=order.shipped_at,
        estimated_delivery=order.estimated_delivery,
        delivered_at=order.delivered_at,
        created_at=order.created_at,
        items=[OrderLineItemRead.model_validate(item) for item in order.items],
    )


class OrderService:
    """Read side of orders: a customer's history and public tracking."""

    def __init__(self, db: Session):
        self.db = db

    def list_for_customer(self, customer_id: int, page: int = 1, limit: int = 10) -> OrderPage:
        total = self.db.execute(
            select(func.count()).select_from(Order).where(Order.customer_id == customer_id)
        ).scalar_one()
        orders = self.db.execute(
            select(Order)
            .where(Order.customer_id == customer_id)
            .options(selectinload(Order.items))
            .order_by(Order.created_at.desc(), Order.order_number.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        ).scalars().all()
        return OrderPage(
            data=[order_to_read(order) for order in orders],
            pagination=Pagination(current_page=page, total_pages=ceil(total / limit), total_items=total),
        )

    def get_for_customer(self, customer_id: int, order_id: UUID) -> OrderRead:
        order = self.db.execute(
            select(Order)
            .where(Order.id == order_id, Order.customer_id == customer_id)
            .options(selectinload(Order.items))
        ).scalar_one_or_none()
        if order is None:
            raise NotFound("Order not found")
        return order_to_read(order)

    def track(self, tracking_id: str) -> TrackingRead:
        """Look up by tracking number first, then by order number."""
        tracking_id = tracking_id.strip()
        if not tracking_id:
            raise ValidationError("Tracking ID is required")
        order = None
        for column in (Order.tracking_number, Order.order_number):
            order = self.db.execute(
                select(Order).where(column == tracking_id).options(selectinload(Order.items)).limit(1)
            ).scalar_one_or_none()
            if order is not None:
                break
        if order is None:
            raise NotFound("Order not found. Please check your tracking number or order number.")
        customer = self.db.get(Customer, order.customer_id)
        return TrackingRead(
            order_number=order.order_number,
            status=order.status,
            payment_status=order.payment_status,
            payment_method=order.payment_method,
            total_amount=order.total_amount,
            carrier=order.carrier,
            tracking_number=order.tracking_number,
            created_at=order.created_at,
            shipped_at=order.shipped_at,
            estimated_delivery=order.estimated_delivery,
            delivered_at=order.delivered_at,
            shipping_city=order.shipping_city,
            shipping_state=order.shipping_state,
            customer_name=customer.display_name if customer else "",
            items=[OrderLineItemRead.model_validate(item) for item in order.items],
        )
