"""Single writer of ``Product.stock_quantity``.

Every change goes through one conditional UPDATE and is paired with a
``StockMovement`` row in the caller's transaction. Nothing here commits.
"""
from typing import Iterable, Optional

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from commerce.domain.errors import CommerceError, InsufficientStock, NotFound
from commerce.domain.models import Product, StockMovement, utcnow
from shared.core import get_logger
from .schemas import MovementOutcome, MovementRequest, MovementResult

logger = get_logger(__name__)


class StockLedger:
    def __init__(self, db: Session):
        self.db = db

    def _current_product(self, product_id: int) -> Optional[Product]:
        stmt = select(Product).where(Product.id == product_id).execution_options(populate_existing=True)
        return self.db.execute(stmt).scalar_one_or_none()

    def apply_movement(self, request: MovementRequest) -> MovementResult:
        """Apply ``request.quantity_delta`` to the product and append the movement.

        The row is changed by a single ``UPDATE ... WHERE stock >= :needed``;
        the database row lock taken by that statement serializes concurrent
        writers, so the check and the write cannot interleave. Untracked
        (NULL) stock counts as zero.
        """
        delta = request.quantity_delta
        current = func.coalesce(Product.stock_quantity, 0)
        stmt = update(Product).where(Product.id == request.product_id)
        if delta < 0:
            stmt = stmt.where(current >= -delta)
        stmt = (
            stmt.values(
                stock_quantity=current + delta,
                in_stock=(current + delta) > 0,
                updated_at=utcnow(),
            )
            .returning(Product.stock_quantity, Product.name)
            .execution_options(synchronize_session="fetch")
        )
        row = self.db.execute(stmt).one_or_none()

        if row is None:
            product = self._current_product(request.product_id)
            if product is None:
                raise NotFound(f"Product with ID {request.product_id} not found", product_id=request.product_id)
            available = product.stock_quantity or 0
            logger.warning(
                "Insufficient stock",
                extra={'extra_fields': {
                    'product_id': product.id,
                    'requested': -delta,
                    'available': available,
                    'reference_id': request.reference_id,
                }}
            )
            raise InsufficientStock(product.id, product.name, requested=-delta, available=available)

        new_stock, product_name = row
        movement = StockMovement(
            product_id=request.product_id,
            product_name=product_name,
            movement_type=request.movement_type.value,
            quantity=delta,
            previous_stock=new_stock - delta,
            new_stock=new_stock,
            reason=request.reason,
            reference_id=request.reference_id,
            user_id=request.actor.user_id,
            user_name=request.actor.name,
            notes=request.notes,
            is_automated=request.is_automated,
        )
        self.db.add(movement)
        self.db.flush()

        logger.info(
            "Stock movement applied",
            extra={'extra_fields': {
                'product_id': request.product_id,
                'movement_type': request.movement_type.value,
                'quantity': delta,
                'previous_stock': movement.previous_stock,
                'new_stock': new_stock,
                'reference_id': request.reference_id,
            }}
        )
        return MovementResult(
            movement_id=movement.id,
            product_id=request.product_id,
            product_name=product_name,
            movement_type=request.movement_type,
            quantity_delta=delta,
            previous_stock=movement.previous_stock,
            new_stock=new_stock,
        )

    def apply_movements(self, requests: Iterable[MovementRequest]) -> list[MovementOutcome]:
        """Apply each request on its own savepoint and report per-request outcomes.

        A failed request leaves the others applied; committing is the caller's call.
        """
        outcomes = []
        for request in requests:
            try:
                with self.db.begin_nested():
                    result = self.apply_movement(request)
            except CommerceError as exc:
                outcomes.append(MovementOutcome(product_id=request.product_id, success=False, message=exc.message))
                continue
            outcomes.append(MovementOutcome(product_id=request.product_id, success=True, result=result))
        return outcomes
