import threading
from decimal import Decimal

import pytest
from sqlalchemy import func, select

from pydantic import ValidationError as PydanticValidationError

from commerce.application.schemas import AdHocLineItem, CatalogLineItem, OrderCreate
from commerce.application.service import OrderPlacementService
from commerce.domain.errors import Conflict, InsufficientStock, NotFound, Unavailable, ValidationError
from commerce.domain.models import Order, OrderLineItem, Product, StockMovement
from commerce.infrastructure.db import SessionLocal
from commerce.infrastructure.notifications import NotificationDispatcher

from conftest import JAN_15, ExplodingNotifier, RecordingNotifier, stock_of


def _count(db, model):
    return db.execute(select(func.count()).select_from(model)).scalar_one()


def _assert_nothing_persisted(db):
    assert _count(db, Order) == 0
    assert _count(db, OrderLineItem) == 0
    assert _count(db, StockMovement) == 0


class ScriptedNumbers:
    """Hands out a fixed sequence of order numbers."""

    def __init__(self, *numbers):
        self.numbers = list(numbers)
        self.calls = 0

    def next_order_number(self, current_timestamp):
        self.calls += 1
        return self.numbers.pop(0) if len(self.numbers) > 1 else self.numbers[0]


def test_two_line_order(db, catalog, order_create):
    notifier = RecordingNotifier()
    service = OrderPlacementService(db, notifier=notifier)
    placed = service.place_order(catalog["customer"], order_create(
        {"product_id": catalog["darjeeling"], "quantity": 2},
        {"product_id": catalog["assam"], "quantity": 1},
    ), now=JAN_15)

    assert placed.status == "confirmed"
    assert placed.order_number == "FOG2025010001"
    order = db.get(Order, placed.order_id)
    assert order.subtotal == Decimal("250.00")
    assert order.total_amount == Decimal("290.00")
    assert order.payment_status == "pending"
    assert order.shipping_country == "India"
    assert order.shipping_postal_code == "700001"
    assert stock_of(catalog["darjeeling"]) == 8
    assert stock_of(catalog["assam"]) == 4

    movements = db.execute(select(StockMovement).order_by(StockMovement.id)).scalars().all()
    assert [m.movement_type for m in movements] == ["sale", "sale"]
    assert [m.quantity for m in movements] == [-2, -1]
    assert {m.reference_id for m in movements} == {str(order.id)}
    assert all(m.is_automated for m in movements)
    assert notifier.notices[0].order_number == placed.order_number


def test_insufficient_stock_leaves_no_trace(db, catalog, order_create):
    service = OrderPlacementService(db)
    with pytest.raises(InsufficientStock) as excinfo:
        service.place_order(catalog["customer"], order_create(
            {"product_id": catalog["darjeeling"], "quantity": 1},
            {"product_id": catalog["oolong"], "quantity": 5},
        ), now=JAN_15)

    assert excinfo.value.requested == 5
    assert excinfo.value.available == 1
    _assert_nothing_persisted(db)
    assert stock_of(catalog["oolong"]) == 1
    assert stock_of(catalog["darjeeling"]) == 10


def test_repeated_product_lines_are_checked_together(db, catalog, order_create):
    service = OrderPlacementService(db)
    with pytest.raises(InsufficientStock) as excinfo:
        service.place_order(catalog["customer"], order_create(
            {"product_id": catalog["darjeeling"], "quantity": 6},
            {"product_id": catalog["darjeeling"], "quantity": 6},
        ), now=JAN_15)
    assert excinfo.value.requested == 12
    _assert_nothing_persisted(db)


def test_last_unit_goes_to_exactly_one_buyer(db, catalog, order_create):
    """Both buyers saw one unit in stock; only the first to write gets it."""
    late = SessionLocal()
    try:
        assert late.get(Product, catalog["oolong"]).stock_quantity == 1
        late.commit()

        first = OrderPlacementService(db).place_order(
            catalog["customer"], order_create({"product_id": catalog["oolong"], "quantity": 1}), now=JAN_15
        )
        assert first.status == "confirmed"

        with pytest.raises(InsufficientStock) as excinfo:
            OrderPlacementService(late).place_order(
                catalog["customer"], order_create({"product_id": catalog["oolong"], "quantity": 1}), now=JAN_15
            )
        assert excinfo.value.available == 0
    finally:
        late.close()

    assert stock_of(catalog["oolong"]) == 0
    assert _count(db, Order) == 1


def test_failure_mid_order_rolls_everything_back(db, catalog, order_create):
    service = OrderPlacementService(db)
    apply_movement = service.ledger.apply_movement
    calls = []

    def failing_apply(request):
        calls.append(request.product_id)
        if len(calls) == 3:
            raise RuntimeError("simulated crash")
        return apply_movement(request)

    service.ledger.apply_movement = failing_apply
    with pytest.raises(RuntimeError):
        service.place_order(catalog["customer"], order_create(
            {"product_id": catalog["darjeeling"], "quantity": 1},
            {"product_id": catalog["assam"], "quantity": 1},
            {"product_id": catalog["chamomile"], "quantity": 1},
        ), now=JAN_15)

    _assert_nothing_persisted(db)
    assert stock_of(catalog["darjeeling"]) == 10
    assert stock_of(catalog["assam"]) == 5
    assert stock_of(catalog["chamomile"]) == 10


def test_consecutive_orders_in_a_month(db, catalog, order_create):
    service = OrderPlacementService(db)
    numbers = [
        service.place_order(
            catalog["customer"], order_create({"product_id": catalog["chamomile"], "quantity": 1}), now=JAN_15
        ).order_number
        for _ in range(3)
    ]
    assert numbers == ["FOG2025010001", "FOG2025010002", "FOG2025010003"]


def test_ad_hoc_line_skips_stock(db, catalog, order_create):
    service = OrderPlacementService(db)
    placed = service.place_order(catalog["customer"], order_create(
        {"kind": "ad_hoc", "name": "Festive Sampler", "price": "33.33", "quantity": 3},
        {"product_id": catalog["assam"], "quantity": 1},
    ), now=JAN_15)

    lines = db.execute(
        select(OrderLineItem).where(OrderLineItem.order_id == placed.order_id).order_by(OrderLineItem.position)
    ).scalars().all()
    assert lines[0].product_id is None
    assert lines[0].product_name == "Festive Sampler"
    assert lines[0].total_price == Decimal("99.99")
    assert lines[1].product_id == catalog["assam"]
    assert _count(db, StockMovement) == 1
    assert db.get(Order, placed.order_id).subtotal == Decimal("149.99")


def test_untracked_product_is_sold_without_movement(db, catalog, order_create):
    OrderPlacementService(db).place_order(
        catalog["customer"], order_create({"product_id": catalog["gift_box"], "quantity": 4}), now=JAN_15
    )
    assert stock_of(catalog["gift_box"]) is None
    assert _count(db, StockMovement) == 0


def test_line_totals_are_exact(db, catalog, order_create):
    placed = OrderPlacementService(db).place_order(catalog["customer"], order_create(
        {"kind": "ad_hoc", "name": "Loose Leaf", "price": "0.10", "quantity": 3},
        {"kind": "ad_hoc", "name": "Tin", "price": "19.99", "quantity": 7},
    ), now=JAN_15)
    for line in db.execute(select(OrderLineItem)).scalars():
        assert line.total_price == line.quantity * line.unit_price
    assert db.get(Order, placed.order_id).subtotal == Decimal("140.23")


def test_snapshot_survives_catalog_changes(db, catalog, order_create):
    placed = OrderPlacementService(db).place_order(
        catalog["customer"], order_create({"product_id": catalog["darjeeling"], "quantity": 1}), now=JAN_15
    )
    product = db.get(Product, catalog["darjeeling"])
    product.name = "Darjeeling Second Flush"
    product.price = Decimal("999.00")
    db.commit()

    line = db.execute(select(OrderLineItem).where(OrderLineItem.order_id == placed.order_id)).scalar_one()
    db.refresh(line)
    assert line.product_name == "Darjeeling First Flush"
    assert line.unit_price == Decimal("100.00")
    assert line.product_description == "Muscatel"


def test_notifier_failure_does_not_fail_the_order(db, catalog, order_create):
    placed = OrderPlacementService(db, notifier=ExplodingNotifier()).place_order(
        catalog["customer"], order_create({"product_id": catalog["assam"], "quantity": 1}), now=JAN_15
    )
    assert placed.status == "confirmed"
    assert db.get(Order, placed.order_id).status == "confirmed"


def test_every_channel_failing_still_confirms(db, catalog, order_create):
    class Broken:
        def send_order_confirmation(self, notice):
            raise ConnectionError("smtp unreachable")

        def send_order_whatsapp(self, notice):
            raise ConnectionError("twilio unreachable")

    dispatcher = NotificationDispatcher(Broken(), Broken())
    outcomes = []
    placed = OrderPlacementService(
        db, notifier=dispatcher, defer=lambda fn, notice: outcomes.append(fn(notice))
    ).place_order(catalog["customer"], order_create({"product_id": catalog["assam"], "quantity": 1}), now=JAN_15)

    assert outcomes == [{"email": "failed", "whatsapp": "failed"}]
    assert db.get(Order, placed.order_id).status == "confirmed"


def test_notifications_are_deferred_until_after_commit(db, catalog, order_create):
    notifier = RecordingNotifier()
    deferred = []
    service = OrderPlacementService(db, notifier=notifier, defer=lambda fn, *args: deferred.append((fn, args)))
    placed = service.place_order(
        catalog["customer"], order_create({"product_id": catalog["assam"], "quantity": 1}), now=JAN_15
    )

    assert notifier.notices == []
    fn, args = deferred[0]
    fn(*args)
    assert notifier.notices[0].order_number == placed.order_number
    assert notifier.notices[0].total_amount == Decimal("90.00")


def test_number_collision_is_retried(db, catalog, order_create):
    service = OrderPlacementService(db)
    service.place_order(
        catalog["customer"], order_create({"product_id": catalog["assam"], "quantity": 1}), now=JAN_15
    )

    service.numbers = ScriptedNumbers("FOG2025010001", "FOG2025010002")
    placed = service.place_order(
        catalog["customer"], order_create({"product_id": catalog["assam"], "quantity": 1}), now=JAN_15
    )
    assert placed.order_number == "FOG2025010002"
    assert service.numbers.calls == 2
    assert stock_of(catalog["assam"]) == 3
    assert _count(db, Order) == 2


def test_exhausted_retries_raise_conflict(db, catalog, order_create):
    service = OrderPlacementService(db)
    service.place_order(
        catalog["customer"], order_create({"product_id": catalog["assam"], "quantity": 1}), now=JAN_15
    )

    service.numbers = ScriptedNumbers("FOG2025010001")
    with pytest.raises(Conflict) as excinfo:
        service.place_order(
            catalog["customer"], order_create({"product_id": catalog["assam"], "quantity": 1}), now=JAN_15
        )
    assert excinfo.value.retryable
    assert service.numbers.calls == service.settings.ORDER_NUMBER_MAX_ATTEMPTS
    assert stock_of(catalog["assam"]) == 4
    assert _count(db, Order) == 1


def test_unknown_product(db, catalog, order_create):
    with pytest.raises(NotFound):
        OrderPlacementService(db).place_order(
            catalog["customer"], order_create({"product_id": 9999, "quantity": 1}), now=JAN_15
        )
    _assert_nothing_persisted(db)


def test_unknown_customer(db, catalog, order_create):
    with pytest.raises(NotFound):
        OrderPlacementService(db).place_order(
            9999, order_create({"product_id": catalog["assam"], "quantity": 1}), now=JAN_15
        )


def test_empty_order(db, catalog, order_create):
    with pytest.raises(ValidationError):
        OrderPlacementService(db).place_order(catalog["customer"], order_create(), now=JAN_15)


def test_client_total_must_match(db, catalog, order_create):
    with pytest.raises(ValidationError):
        OrderPlacementService(db).place_order(catalog["customer"], order_create(
            {"product_id": catalog["assam"], "quantity": 1}, total_amount="10.00",
        ), now=JAN_15)
    _assert_nothing_persisted(db)

    placed = OrderPlacementService(db).place_order(catalog["customer"], order_create(
        {"product_id": catalog["assam"], "quantity": 1}, total_amount="90.00",
    ), now=JAN_15)
    assert placed.status == "confirmed"


def test_online_payment_starts_pending(db, catalog, order_create):
    placed = OrderPlacementService(db).place_order(catalog["customer"], order_create(
        {"product_id": catalog["assam"], "quantity": 1}, payment_method="upi",
    ), now=JAN_15)
    order = db.get(Order, placed.order_id)
    assert (order.payment_method, order.payment_status) == ("upi", "pending")


def test_racing_buyers_never_oversell(catalog, order_create):
    """Concurrent buyers for more than is on hand; stock never goes negative.

    On Postgres the row-locked conditional UPDATE admits exactly the buyers
    that fit. SQLite serializes writers on its file lock, so a buyer may
    give up with ``unavailable`` instead and fewer orders get placed.
    """
    buyers = 6
    barrier = threading.Barrier(buyers)
    outcomes = []

    def buy():
        session = SessionLocal()
        try:
            barrier.wait()
            OrderPlacementService(session).place_order(
                catalog["customer"], order_create({"product_id": catalog["assam"], "quantity": 2}), now=JAN_15
            )
            outcomes.append("placed")
        except (InsufficientStock, Conflict, Unavailable) as exc:
            outcomes.append(exc.code)
        finally:
            session.close()

    threads = [threading.Thread(target=buy) for _ in range(buyers)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    placed = outcomes.count("placed")
    assert len(outcomes) == buyers
    assert 1 <= placed <= 2
    assert set(outcomes) <= {"placed", "insufficient_stock", "unavailable", "conflict"}
    if "unavailable" not in outcomes and "conflict" not in outcomes:
        assert placed == 2
        assert outcomes.count("insufficient_stock") == buyers - 2
    assert stock_of(catalog["assam"]) == 5 - 2 * placed

    session = SessionLocal()
    try:
        assert _count(session, Order) == placed
        moved = session.execute(
            select(func.coalesce(func.sum(StockMovement.quantity), 0))
            .where(StockMovement.product_id == catalog["assam"])
        ).scalar_one()
        assert 5 + moved == stock_of(catalog["assam"])
    finally:
        session.close()


def test_line_kind_is_inferred_without_a_tag(order_create):
    data = order_create(
        {"product_id": 3, "quantity": 1},
        {"name": "Festive Sampler", "price": "120.00", "quantity": 1},
        {"kind": "ad_hoc", "name": "Tin", "price": "10.00", "quantity": 2},
    )
    assert [type(item) for item in data.items] == [CatalogLineItem, AdHocLineItem, AdHocLineItem]


def test_unknown_line_kind_is_rejected(order_payload):
    with pytest.raises(PydanticValidationError):
        OrderCreate.model_validate(order_payload({"kind": "voucher", "product_id": 3, "quantity": 1}))


@pytest.mark.parametrize("overrides", [
    {"total_amount": "1e30"},
    {"shipping_cost": "123456789.00"},
    {"tax_amount": "0.001"},
])
def test_money_fields_are_bounded(order_payload, overrides):
    with pytest.raises(PydanticValidationError):
        OrderCreate.model_validate(order_payload({"product_id": 3, "quantity": 1}, **overrides))


@pytest.mark.parametrize("item", [
    {"product_id": 3, "quantity": 10 ** 19},
    {"name": "Sampler", "price": "1.00", "quantity": 10 ** 19},
    {"name": "Sampler", "price": "1e30", "quantity": 1},
])
def test_line_quantities_and_prices_are_bounded(order_payload, item):
    with pytest.raises(PydanticValidationError):
        OrderCreate.model_validate(order_payload(item))


def test_total_beyond_money_column_is_a_validation_error(db, catalog, order_create):
    with pytest.raises(ValidationError):
        OrderPlacementService(db).place_order(catalog["customer"], order_create(
            {"name": "Estate Lot", "price": "99999999.99", "quantity": 2},
        ), now=JAN_15)
    _assert_nothing_persisted(db)


def test_untracked_stock_is_stored_as_null(db):
    product = Product(name="Gift Card", price=Decimal("500.00"), stock_quantity=None)
    db.add(product)
    db.commit()
    db.expire_all()
    assert db.get(Product, product.id).stock_quantity is None
