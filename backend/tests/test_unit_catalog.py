# Overview: Pytest coverage for units, unit pricing and product creation.

import pytest

from pharmapos.errors import NotFoundError, ValidationError
from pharmapos.extensions import db
from pharmapos.models import StockMovement
from pharmapos.services import catalog_service


class TestAutoCalculatePrices:
    """Batch price derivation from a reference unit."""

    def test_strip_price_from_box_reference(self):
        """Box of 100 at 900.00 prices a strip of 10 at 90.00."""
        strip = {"quantity": 10, "price_cents": 0}
        box = {"quantity": 100, "price_cents": 90000}

        prices = catalog_service.auto_calculate_prices([strip, box], box)

        assert prices == [9000, 90000]

    def test_reapplying_same_reference_is_idempotent(self):
        tablet = {"quantity": 1, "price_cents": 0}
        strip = {"quantity": 10, "price_cents": 0}
        box = {"quantity": 100, "price_cents": 90000}
        units = [tablet, strip, box]

        first = catalog_service.auto_calculate_prices(units, box)
        for unit, price in zip(units, first):
            unit["price_cents"] = price
        second = catalog_service.auto_calculate_prices(units, box)

        assert first == second == [900, 9000, 90000]

    def test_switching_reference_changes_derived_prices(self):
        strip = {"quantity": 10, "price_cents": 9500}
        box = {"quantity": 100, "price_cents": 90000}

        prices = catalog_service.auto_calculate_prices([strip, box], strip)

        assert prices == [9500, 95000]

    def test_rounds_half_up_to_nearest_cent(self):
        reference = {"quantity": 3, "price_cents": 100}
        one = {"quantity": 1, "price_cents": 0}
        two = {"quantity": 2, "price_cents": 0}

        assert catalog_service.auto_calculate_prices([one, two, reference], reference) == [33, 67, 100]

    def test_rejects_reference_without_quantity(self):
        with pytest.raises(ValidationError):
            catalog_service.auto_calculate_prices([], {"quantity": 0, "price_cents": 100})


class TestUnitResolution:

    def test_default_units_for_tablets(self):
        units = catalog_service.default_units("tablets")
        assert [(u["unit_type"], u["quantity"]) for u in units] == [("TABLET", 1), ("STRIP", 10), ("BOX", 100)]

    def test_unknown_product_type_rejected(self):
        with pytest.raises(ValidationError):
            catalog_service.default_units("capsules_by_weight")

    def test_label_picks_between_units_of_one_type(self, make_product):
        syrup = make_product("Multivitamin Tonic", product_type="liquid_bottle", prices=(400, 750, 1800), stock=1000)

        unit = catalog_service.resolve_unit(syrup, "bottle", "200ml Bottle")
        assert unit.quantity == 200
        assert unit.price_cents == 750

        first = catalog_service.resolve_unit(syrup, "BOTTLE")
        assert first.label == "100ml Bottle"

    def test_missing_unit_raises_not_found(self, paracetamol):
        with pytest.raises(NotFoundError) as exc_info:
            catalog_service.resolve_unit(paracetamol, "ML")
        assert exc_info.value.details["unit_type"] == "ML"

    def test_base_quantity_conversion(self, paracetamol):
        strip = catalog_service.resolve_unit(paracetamol, "STRIP")
        assert catalog_service.to_base_quantity(strip, 3) == 30
        assert catalog_service.base_price(strip) == 50


class TestProducts:

    def test_opening_stock_is_a_restock_movement(self, paracetamol):
        movements = db.session.query(StockMovement).filter_by(product_id=paracetamol.id).all()

        assert paracetamol.stock_quantity == 100
        assert len(movements) == 1
        assert movements[0].kind == "RESTOCK"
        assert movements[0].delta == 100
        assert movements[0].previous_stock == 0

    def test_stock_cannot_be_assigned_directly(self, paracetamol):
        with pytest.raises(ValueError):
            paracetamol.stock_quantity = 500

    def test_base_unit_is_smallest(self, paracetamol):
        assert paracetamol.base_unit.unit_type == "TABLET"

    def test_recalculate_persists_prices(self, make_product):
        product = make_product(prices=(0, 0, 90000))

        catalog_service.recalculate_unit_prices(product.id)
        db.session.expire_all()

        prices = {u.unit_type: u.price_cents for u in catalog_service.get_product(product.id).units}
        assert prices == {"TABLET": 900, "STRIP": 9000, "BOX": 90000}

    def test_recalculate_needs_priced_reference(self, make_product):
        product = make_product(prices=(5, 50, 0))
        with pytest.raises(ValidationError):
            catalog_service.recalculate_unit_prices(product.id)

        db.session.expire_all()
        prices = [u.price_cents for u in catalog_service.get_product(product.id).units]
        assert prices == [5, 50, 0]

    def test_zero_reference_derives_zero_prices(self):
        tablet = {"quantity": 1, "price_cents": 5}
        box = {"quantity": 100, "price_cents": 0}
        assert catalog_service.auto_calculate_prices([tablet, box], box) == [0, 0]

    def test_list_filters(self, make_product):
        make_product("Paracetamol 500mg", stock=5, reorder_level=10)
        make_product("Amoxicillin 250mg", category="Antibiotics", stock=300)
        make_product("Old Stock", is_active=False, stock=0)

        assert [p.name for p in catalog_service.list_products()] == ["Amoxicillin 250mg", "Paracetamol 500mg"]
        assert [p.name for p in catalog_service.list_products(category="antibiotics")] == ["Amoxicillin 250mg"]
        assert [p.name for p in catalog_service.list_products(low_stock=True)] == ["Paracetamol 500mg"]
        assert [p.name for p in catalog_service.list_products(search="STOCK", active=None)] == ["Old Stock"]

    def test_unknown_product(self, db_session):
        with pytest.raises(NotFoundError):
            catalog_service.get_product(999)
