"""
Tests for the collection reconciler.

Tests cover:
- Seeding form collections from a server record (foreign keys, defaults, ids)
- Seeding is a no-op on non-empty collections
- Seeding then serializing without edits keeps ids and totals
- Total recomputation with locale tolerant parsing
- Nested attachments forwarding
- Remote-first line removal
"""

import unittest
from unittest.mock import Mock

from order_engine.entity_cache import EntityCache
from order_engine.errors import ApiError, DeletionError
from order_engine.form_state import FormState
from order_engine.reconciler import (
    LineRemover,
    PAYMENT_LINE,
    SCHEDULE_LINE,
    SERVICE_LINE,
    grand_total,
    outgoing_attachments,
    seed_collection,
    seed_from_record,
    to_form_item,
    to_wire_collection,
    to_wire_item,
)


class TestSeeding(unittest.TestCase):

    def setUp(self):
        self.record = {
            "id": "so-1",
            "services": [
                {"id": "sl-1", "service": {"id": "svc-1", "name": "Vistoria"}, "unit_price": "150.00",
                 "quantity": 2, "total_price": "300.00", "scope": "Porto"},
            ],
            "payments": [
                {"id": "p-1", "description": "Taxa", "document_type": {"id": "dt-1", "name": "NF"},
                 "document_number": "123", "unit_price": "1234.56", "quantity": "2", "total_price": "2469.12"},
                {"id": "p-2", "description": "Frete", "document_type_id": 9},
            ],
            "schedules": [
                {"id": "sc-1", "user": {"id": "u-1", "name": "Ana"}, "date": "2025-10-16"},
            ],
        }
        self.cache = EntityCache()

    def test_embedded_entities_become_foreign_keys(self):
        form_state = FormState()
        seed_from_record(form_state, self.record, self.cache)
        self.assertEqual(form_state.get("services.0.service_id"), "svc-1")
        self.assertEqual(form_state.get("payments.0.document_type_id"), "dt-1")
        self.assertEqual(form_state.get("payments.1.document_type_id"), "9")
        self.assertEqual(form_state.get("schedules.0.user_id"), "u-1")

    def test_embedded_entities_cached_for_display(self):
        seed_from_record(FormState(), self.record, self.cache)
        self.assertEqual(self.cache.get("service", "svc-1")["name"], "Vistoria")
        self.assertEqual(self.cache.get("document_type", "dt-1")["name"], "NF")
        self.assertEqual(self.cache.get("user", "u-1")["name"], "Ana")

    def test_defaults_for_missing_amounts(self):
        form_state = FormState()
        seed_from_record(form_state, self.record, self.cache)
        missing = form_state.items("payments")[1]
        self.assertEqual(missing["unit_price"], "0.00")
        self.assertEqual(missing["total_price"], "0.00")
        self.assertEqual(missing["quantity"], "0")
        self.assertEqual(missing["document_number"], "")

    def test_ids_preserved(self):
        form_state = FormState()
        seed_from_record(form_state, self.record, self.cache)
        self.assertEqual([p["id"] for p in form_state.items("payments")], ["p-1", "p-2"])
        self.assertEqual(form_state.get("schedules.0.id"), "sc-1")

    def test_service_lines_carry_no_id(self):
        form_state = FormState()
        seed_from_record(form_state, self.record, self.cache)
        self.assertNotIn("id", form_state.items("services")[0])
        self.assertNotIn("id", to_wire_item(SERVICE_LINE, {"id": "sl-1", "service_id": "s"}))

    def test_seeding_non_empty_collection_is_noop(self):
        form_state = FormState()
        form_state.append("payments", {"description": "local"})
        counts = seed_from_record(form_state, self.record, self.cache)
        self.assertEqual(counts["payments"], 0)
        self.assertEqual(form_state.items("payments"), [{"description": "local"}])
        self.assertEqual(counts["services"], 1)

    def test_seeding_twice_is_noop(self):
        form_state = FormState()
        seed_collection(form_state, PAYMENT_LINE, self.record["payments"], self.cache)
        before = form_state.snapshot()
        self.assertEqual(seed_collection(form_state, PAYMENT_LINE, self.record["payments"], self.cache), 0)
        self.assertEqual(form_state.snapshot(), before)

    def test_round_trip_without_edits(self):
        form_state = FormState()
        seed_from_record(form_state, self.record, self.cache)
        payments = to_wire_collection(PAYMENT_LINE, form_state.items("payments"))
        self.assertEqual(payments[0]["id"], "p-1")
        self.assertEqual(payments[0]["unit_price"], "1234.56")
        self.assertEqual(payments[0]["quantity"], "2")
        self.assertEqual(payments[0]["total_price"], "2469.12")
        services = to_wire_collection(SERVICE_LINE, form_state.items("services"))
        self.assertEqual(services[0]["total_price"], "300.00")
        self.assertEqual(services[0]["service_id"], "svc-1")
        schedules = to_wire_collection(SCHEDULE_LINE, form_state.items("schedules"))
        self.assertEqual(schedules, [{"id": "sc-1", "user_id": "u-1", "date": "2025-10-16"}])

    def test_blank_item(self):
        self.assertEqual(to_form_item(SERVICE_LINE, {}), {
            "service_id": None, "unit_price": "0.00", "quantity": "0", "total_price": "0.00", "scope": "",
        })


class TestToWire(unittest.TestCase):

    def test_total_recomputed_with_locale_parsing(self):
        wire = to_wire_item(PAYMENT_LINE, {"description": "x", "document_type_id": "dt-1", "unit_price": "1.234,56",
                                           "quantity": 2, "total_price": "999"})
        self.assertEqual(wire["unit_price"], "1234.56")
        self.assertEqual(wire["quantity"], "2")
        self.assertEqual(wire["total_price"], "2469.12")
        self.assertNotIn("id", wire)

    def test_quantity_floored(self):
        wire = to_wire_item(SERVICE_LINE, {"service_id": "s", "unit_price": "10,5", "quantity": "2.9"})
        self.assertEqual(wire["quantity"], "2")
        self.assertEqual(wire["total_price"], "21.00")

    def test_foreign_key_object_flattened(self):
        wire = to_wire_item(SCHEDULE_LINE, {"user_id": {"id": 5, "name": "Ana"}, "date": "16/10/2025"})
        self.assertEqual(wire, {"user_id": "5", "date": "2025-10-16"})

    def test_nested_attachments_only_new_without_file(self):
        item = {"description": "x", "attachments": [
            {"id": "a-1", "filename": "old.pdf"},
            {"filename": "new.pdf", "fileObject": object()},
        ]}
        wire = to_wire_item(PAYMENT_LINE, item)
        self.assertEqual(wire["attachments"], [{"filename": "new.pdf"}])

    def test_outgoing_attachments_tolerates_garbage(self):
        self.assertEqual(outgoing_attachments(None), [])
        self.assertEqual(outgoing_attachments(["x", {"name": "a"}]), [{"name": "a"}])

    def test_grand_total(self):
        items = [{"unit_price": "1.234,56", "quantity": "2"}, {"unit_price": "10", "quantity": "1"}, "junk"]
        self.assertEqual(grand_total(items), "2479.12")
        self.assertEqual(grand_total([]), "0.00")


class TestLineRemover(unittest.TestCase):

    def setUp(self):
        self.delete_payment = Mock()
        self.remover = LineRemover({"payments": self.delete_payment})
        self.form_state = FormState()
        self.form_state.append("payments", {"id": "p-1", "description": "remote"})
        self.form_state.append("payments", {"description": "local"})

    def test_identified_line_deleted_remotely_first(self):
        calls = []
        self.delete_payment.side_effect = lambda line_id: calls.append(
            (line_id, len(self.form_state.items("payments"))))
        removed = self.remover.remove_line(self.form_state, "payments", 0)
        self.assertEqual(calls, [("p-1", 2)])
        self.assertEqual(removed["id"], "p-1")
        self.assertEqual(len(self.form_state.items("payments")), 1)

    def test_local_line_never_calls_delete(self):
        self.remover.remove_line(self.form_state, "payments", 1)
        self.delete_payment.assert_not_called()
        self.assertEqual(self.form_state.items("payments"), [{"id": "p-1", "description": "remote"}])

    def test_failed_delete_keeps_line(self):
        self.delete_payment.side_effect = ApiError("nope", status=500)
        with self.assertRaises(DeletionError) as ctx:
            self.remover.remove_line(self.form_state, "payments", 0)
        self.assertEqual(ctx.exception.item_id, "p-1")
        self.assertEqual(len(self.form_state.items("payments")), 2)

    def test_collection_without_deleter_is_removed_locally(self):
        self.form_state.append("services", {"id": "sl-1", "service_id": "svc-1"})
        self.assertFalse(self.remover.delete_remote("services", self.form_state.items("services")[0]))
        removed = self.remover.remove_line(self.form_state, "services", 0)
        self.assertEqual(removed["id"], "sl-1")
        self.assertEqual(self.form_state.items("services"), [])
        self.delete_payment.assert_not_called()

    def test_bad_index(self):
        with self.assertRaises(IndexError):
            self.remover.remove_line(self.form_state, "payments", 7)


if __name__ == '__main__':
    unittest.main()
