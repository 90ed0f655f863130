import pytest
from sqlalchemy import func, select

from commerce.application.schemas import Actor, MovementRequest
from commerce.application.stock_ledger import StockLedger
from commerce.domain.errors import InsufficientStock, NotFound
from commerce.domain.models import MovementType, Product, StockMovement
from commerce.infrastructure.db import SessionLocal

from conftest import stock_of


def _request(product_id, delta, movement_type=MovementType.SALE, **kwargs):
    return MovementRequest(product_id=product_id, movement_type=movement_type, quantity_delta=delta,
                           reason="test", **kwargs)


def test_decrement_records_movement(db, catalog):
    ledger = StockLedger(db)
    result = ledger.apply_movement(_request(catalog["darjeeling"], -3, reference_id="ref-1",
                                            actor=Actor(user_id=catalog["customer"], name="Asha Rao")))
    db.commit()

    assert (result.previous_stock, result.new_stock, result.quantity_delta) == (10, 7, -3)
    assert stock_of(catalog["darjeeling"]) == 7
    movement = db.execute(select(StockMovement)).scalar_one()
    assert movement.movement_type == "sale"
    assert movement.reference_id == "ref-1"
    assert movement.user_name == "Asha Rao"
    assert movement.new_stock == movement.previous_stock + movement.quantity


def test_decrement_below_zero_is_rejected(db, catalog):
    ledger = StockLedger(db)
    with pytest.raises(InsufficientStock) as excinfo:
        ledger.apply_movement(_request(catalog["oolong"], -2))
    db.rollback()

    assert excinfo.value.available == 1
    assert excinfo.value.requested == 2
    assert stock_of(catalog["oolong"]) == 1
    assert db.execute(select(func.count()).select_from(StockMovement)).scalar_one() == 0


def test_unknown_product(db, catalog):
    with pytest.raises(NotFound):
        StockLedger(db).apply_movement(_request(9999, 1, MovementType.RESTOCK))


def test_untracked_stock_counts_as_zero(db, catalog):
    ledger = StockLedger(db)
    result = ledger.apply_movement(_request(catalog["gift_box"], 4, MovementType.RESTOCK))
    db.commit()
    assert (result.previous_stock, result.new_stock) == (0, 4)


def test_stale_read_cannot_oversell(db, catalog):
    """A reader that saw the last unit still loses once someone else took it."""
    stale = db.get(Product, catalog["oolong"])
    assert stale.stock_quantity == 1
    db.commit()

    other = SessionLocal()
    try:
        StockLedger(other).apply_movement(_request(catalog["oolong"], -1))
        other.commit()
    finally:
        other.close()

    with pytest.raises(InsufficientStock) as excinfo:
        StockLedger(db).apply_movement(_request(catalog["oolong"], -1))
    db.rollback()
    assert excinfo.value.available == 0
    assert stock_of(catalog["oolong"]) == 0


def test_bulk_movements_report_each_outcome(db, catalog):
    outcomes = StockLedger(db).apply_movements([
        _request(catalog["darjeeling"], -2),
        _request(catalog["oolong"], -5),
        _request(9999, 1, MovementType.RESTOCK),
        _request(catalog["assam"], 10, MovementType.RESTOCK),
    ])
    db.commit()

    assert [o.success for o in outcomes] == [True, False, False, True]
    assert "Insufficient stock" in outcomes[1].message
    assert stock_of(catalog["darjeeling"]) == 8
    assert stock_of(catalog["oolong"]) == 1
    assert stock_of(catalog["assam"]) == 15
    assert db.execute(select(func.count()).select_from(StockMovement)).scalar_one() == 2


def test_stock_is_conserved(db, catalog):
    ledger = StockLedger(db)
    product_id = catalog["chamomile"]
    for delta, kind in ((-3, MovementType.SALE), (5, MovementType.RESTOCK), (-1, MovementType.DAMAGE),
                        (2, MovementType.RETURN), (-13, MovementType.SALE)):
        ledger.apply_movement(_request(product_id, delta, kind))
        db.commit()
        total = db.execute(
            select(func.sum(StockMovement.quantity)).where(StockMovement.product_id == product_id)
        ).scalar_one()
        assert 10 + total == stock_of(product_id)
    assert stock_of(product_id) == 0


def test_movements_are_append_only(db, catalog):
    StockLedger(db).apply_movement(_request(catalog["assam"], 1, MovementType.RESTOCK))
    db.commit()
    movement = db.execute(select(StockMovement)).scalar_one()
    movement.reason = "rewritten"
    with pytest.raises(RuntimeError):
        db.flush()
    db.rollback()
