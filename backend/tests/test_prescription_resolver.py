# Overview: Pytest coverage for prescription parsing, matching and resolution.

import pytest

from pharmapos.errors import NotFoundError, ValidationError
from pharmapos.services import prescription_service
from pharmapos.services.prescription_service import (
    parse_dosage,
    parse_duration,
    parse_frequency,
    parse_schedule,
)


class TestScheduleParsing:

    def test_required_quantity_is_dosage_times_frequency_times_days(self):
        schedule = parse_schedule("2 tablets", "Three times daily", "7 days")

        assert schedule.required_quantity == 42
        assert schedule.unparsed_fields == []

    @pytest.mark.parametrize("text,per_day", [
        ("once daily", 1),
        ("Daily", 1),
        ("nocte", 1),
        ("twice a day", 2),
        ("BD", 2),
        ("every 12 hours", 2),
        ("three times a day", 3),
        ("TDS", 3),
        ("every 8 hours", 3),
        ("4 times daily", 4),
        ("QID", 4),
        ("every 6 hrs", 4),
    ])
    def test_frequency_rules(self, text, per_day):
        parsed = parse_frequency(text)
        assert parsed.value == per_day
        assert parsed.confident

    def test_frequency_falls_back_to_first_integer(self):
        parsed = parse_frequency("5 doses")
        assert parsed.value == 5
        assert not parsed.confident

    def test_unreadable_frequency_defaults_to_one(self):
        parsed = parse_frequency("as needed")
        assert (parsed.value, parsed.rule, parsed.confident) == (1, "default", False)

    @pytest.mark.parametrize("text,days", [
        ("7 days", 7),
        ("2 weeks", 14),
        ("1 week", 7),
        ("1 month", 30),
        ("10", 10),
    ])
    def test_duration(self, text, days):
        assert parse_duration(text).value == days

    def test_missing_duration_defaults_to_one_day(self):
        parsed = parse_duration("")
        assert parsed.value == 1
        assert not parsed.confident

    @pytest.mark.parametrize("text", ["0 days", "0 weeks", "0 months", "0"])
    def test_zero_duration_falls_back_to_one_day(self, text):
        parsed = parse_duration(text)
        assert parsed.value == 1
        assert not parsed.confident

    def test_dosage(self):
        assert parse_dosage("2 tablets").value == 2
        assert parse_dosage("10ml").value == 10
        assert parse_dosage("").confident
        assert not parse_dosage("half a tablet").confident


def _prescription(*items, phone="0722000111"):
    return prescription_service.create_prescription(
        patient_name="John Kamau",
        patient_phone=phone,
        doctor_name="Dr. Otieno",
        items=list(items),
    )


class TestResolvePrescription:

    def test_clamps_to_available_stock_with_warning(self, make_product):
        amoxicillin = make_product("Amoxicillin 250mg", category="Antibiotics", stock=30)
        prescription = _prescription(
            {"medicine": "Amoxicillin", "dosage": "2 tablets", "frequency": "Three times daily", "duration": "7 days"},
        )

        result = prescription_service.resolve_prescription(prescription.id)

        assert len(result.items) == 1
        item = result.items[0]
        assert item.product_id == amoxicillin.id
        assert item.unit_type == "TABLET"
        assert item.quantity == 30
        assert item.required_quantity == 42

        assert len(result.warnings) == 1
        warning = result.warnings[0]
        assert warning.kind == "PARTIAL_FULFILLMENT"
        assert (warning.required_quantity, warning.fulfilled_quantity) == (42, 30)

    def test_full_fulfillment_has_no_warnings(self, make_product):
        make_product("Amoxicillin 250mg", stock=300)
        prescription = _prescription(
            {"medicine": "amoxicillin 250MG", "dosage": "1", "frequency": "twice daily", "duration": "5 days"},
        )

        result = prescription_service.resolve_prescription(prescription.id)

        assert [i.quantity for i in result.items] == [10]
        assert result.warnings == []

    def test_bad_items_do_not_block_the_rest(self, make_product):
        make_product("Paracetamol 500mg", stock=100)
        make_product("Cetirizine 10mg", stock=0)
        prescription = _prescription(
            {"medicine": "Unobtainium", "dosage": "1", "frequency": "daily", "duration": "3 days"},
            {"medicine": "Cetirizine", "dosage": "1", "frequency": "daily", "duration": "3 days"},
            {"medicine": "Paracetamol", "dosage": "2", "frequency": "every 8 hours", "duration": "3 days"},
        )

        result = prescription_service.resolve_prescription(prescription.id)

        assert [(i.item_index, i.quantity) for i in result.items] == [(2, 18)]
        assert [(w.item_index, w.kind) for w in result.warnings] == [(0, "NOT_FOUND"), (1, "OUT_OF_STOCK")]

    def test_stock_taken_by_earlier_items_is_not_offered_again(self, make_product):
        make_product("Paracetamol 500mg", stock=20)
        prescription = _prescription(
            {"medicine": "Paracetamol", "dosage": "1", "frequency": "daily", "duration": "15 days"},
            {"medicine": "Paracetamol 500mg", "dosage": "1", "frequency": "daily", "duration": "10 days"},
        )

        result = prescription_service.resolve_prescription(prescription.id)

        assert [i.quantity for i in result.items] == [15, 5]
        assert [w.kind for w in result.warnings] == ["PARTIAL_FULFILLMENT"]
        assert result.warnings[0].item_index == 1

    def test_defaults_are_reported(self, make_product):
        make_product("Paracetamol 500mg", stock=100)
        prescription = _prescription({"medicine": "Paracetamol", "dosage": "2", "frequency": "as required"})

        result = prescription_service.resolve_prescription(prescription.id)

        assert result.items[0].quantity == 2
        assert result.warnings[0].kind == "UNPARSED_SCHEDULE"
        assert "frequency" in result.warnings[0].message

    def test_zero_week_course_is_reported_not_zeroed(self, cart, make_product):
        make_product("Amoxil 500mg", stock=50)
        prescription = _prescription(
            {"medicine": "Amoxil", "dosage": "2 tablets", "frequency": "twice daily", "duration": "0 weeks"},
        )

        warnings = cart.load_from_prescription(prescription.id)

        assert [(line.product_name, line.quantity) for line in cart.lines] == [("Amoxil 500mg", 4)]
        assert [w.kind for w in warnings] == ["UNPARSED_SCHEDULE"]
        assert "duration" in warnings[0].message

    def test_zero_required_quantity_is_skipped_with_warning(self, make_product, monkeypatch):
        make_product("Paracetamol 500mg", stock=100)
        prescription = _prescription(
            {"medicine": "Paracetamol", "dosage": "2", "frequency": "daily", "duration": "3 days"},
            {"medicine": "Paracetamol", "dosage": "1", "frequency": "daily", "duration": "2 days"},
        )
        real_parse = prescription_service.parse_schedule

        def parse(dosage, frequency, duration):
            schedule = real_parse(dosage, frequency, duration)
            if dosage == "2":
                return prescription_service.Schedule(
                    prescription_service.ParsedQuantity(0, "first_integer"),
                    schedule.frequency,
                    schedule.duration,
                )
            return schedule

        monkeypatch.setattr(prescription_service, "parse_schedule", parse)

        result = prescription_service.resolve_prescription(prescription.id)

        assert [(i.item_index, i.quantity) for i in result.items] == [(1, 2)]
        assert [(w.item_index, w.kind) for w in result.warnings] == [(0, "ZERO_QUANTITY")]

    def test_product_name_inside_medicine_text_matches(self, make_product):
        make_product("Amoxicillin 250mg", stock=100)
        prescription = _prescription(
            {"medicine": "Amoxicillin 250mg capsules", "dosage": "1", "frequency": "tds", "duration": "5 days"},
        )

        result = prescription_service.resolve_prescription(prescription.id)

        assert result.items[0].quantity == 15

    def test_inactive_products_are_not_matched(self, make_product):
        make_product("Paracetamol 500mg", stock=100, is_active=False)
        prescription = _prescription({"medicine": "Paracetamol", "dosage": "1", "frequency": "daily", "duration": "1 day"})

        result = prescription_service.resolve_prescription(prescription.id)

        assert result.items == []
        assert result.warnings[0].kind == "NOT_FOUND"


class TestPrescriptionRecords:

    def test_create_requires_items(self, db_session):
        with pytest.raises(ValidationError):
            prescription_service.create_prescription(patient_name="John", items=[])
        with pytest.raises(ValidationError):
            prescription_service.create_prescription(patient_name="John", items=[{"dosage": "1"}])

    def test_status_transitions(self, db_session):
        prescription = _prescription({"medicine": "Paracetamol", "dosage": "1"})

        prescription_service.update_status(prescription.id, "dispensed", actor_id="c-001")
        assert prescription.status == "DISPENSED"
        assert prescription.dispensed_by_id == "c-001"

        with pytest.raises(ValidationError):
            prescription_service.update_status(prescription.id, "CANCELLED")

    def test_list_by_status_and_search(self, db_session):
        first = _prescription({"medicine": "Paracetamol"}, phone="0700111222")
        _prescription({"medicine": "Amoxicillin"}, phone="0700333444")
        prescription_service.update_status(first.id, "CANCELLED")

        assert [p.id for p in prescription_service.list_prescriptions(status="cancelled")] == [first.id]
        assert [p.id for p in prescription_service.list_prescriptions(search="111")] == [first.id]

    def test_unknown_prescription(self, db_session):
        with pytest.raises(NotFoundError):
            prescription_service.resolve_prescription(404)
