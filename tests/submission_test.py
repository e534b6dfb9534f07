import unittest
from datetime import datetime
from unittest.mock import Mock

from order_engine.attachments import LocalFile
from order_engine.errors import ApiError, PersistenceError
from order_engine.submission import OrderPersister, SubmissionNormalizer, is_measure_field, normalize_leaf


class TestSubmissionNormalizer(unittest.TestCase):

    def setUp(self):
        self.normalizer = SubmissionNormalizer()

    def test_read_only_and_collections_not_copied_as_leaves(self):
        payload = self.normalizer.normalize({"id": "so-1", "created_at": "x", "updated_at": "y", "deleted_at": None,
                                             "notes": "ok"}, "st-1")
        self.assertEqual(payload["notes"], "ok")
        for key in ("id", "created_at", "updated_at", "deleted_at"):
            self.assertNotIn(key, payload)
        self.assertEqual(payload["service_type_id"], "st-1")

    def test_classification_always_injected(self):
        payload = self.normalizer.normalize({"service_type_id": "old"}, "st-2")
        self.assertEqual(payload["service_type_id"], "st-2")

    def test_date_and_datetime_leaves(self):
        payload = self.normalizer.normalize({
            "arrival_date": "Thu Oct 16 2025 00:00:00 GMT-0300 (Brasilia Standard Time)",
            "operation_starts_at": datetime(2025, 10, 16, 8, 30),
            "eta": datetime(2025, 10, 20),
            "departure_date": "",
        }, "st")
        self.assertEqual(payload["arrival_date"], "2025-10-16")
        self.assertEqual(payload["operation_starts_at"], "2025-10-16 08:30:00")
        self.assertEqual(payload["eta"], "2025-10-20")
        self.assertEqual(payload["departure_date"], "")

    def test_count_leaves(self):
        payload = self.normalizer.normalize({"num_containers": "3", "num_bags": "lots", "num_pallets": None}, "st")
        self.assertEqual(payload["num_containers"], 3)
        self.assertNotIn("num_bags", payload)
        self.assertNotIn("num_pallets", payload)

    def test_measure_leaves(self):
        payload = self.normalizer.normalize({"weight_for_transportation": "1.234,5", "gross_weight": 2.5,
                                             "volume_m3": None, "net_weight": ""}, "st")
        self.assertEqual(payload["weight_for_transportation"], "1234.50")
        self.assertEqual(payload["gross_weight"], "2.50")
        self.assertIsNone(payload["volume_m3"])
        self.assertIsNone(payload["net_weight"])

    def test_measure_foreign_key_kept_as_id(self):
        payload = self.normalizer.normalize({"weight_type_id": "0197abcd-uuid", "gross_weight": "10"}, "st")
        self.assertEqual(payload["weight_type_id"], "0197abcd-uuid")
        self.assertEqual(payload["gross_weight"], "10.00")

    def test_embedded_objects_not_sent(self):
        payload = self.normalizer.normalize({"client": {"id": "c-1", "name": "ACME"},
                                             "service_type": {"id": "st"}, "notes": "ok"}, "st")
        self.assertNotIn("client", payload)
        self.assertNotIn("service_type", payload)
        self.assertEqual(payload["notes"], "ok")

    def test_collections_rebuilt(self):
        cleaned = {
            "services": [{"service_id": "s", "unit_price": 10, "quantity": 3}],
            "payments": [{"id": "p-1", "description": "Taxa", "unit_price": "1.234,56", "quantity": "2"}],
            "schedules": [{"user_id": "u", "date": datetime(2025, 10, 16, 9, 0)}],
        }
        payload = self.normalizer.normalize(cleaned, "st")
        self.assertEqual(payload["services"][0]["total_price"], "30.00")
        self.assertEqual(payload["payments"][0]["id"], "p-1")
        self.assertEqual(payload["payments"][0]["total_price"], "2469.12")
        self.assertEqual(payload["schedules"], [{"user_id": "u", "date": "2025-10-16"}])

    def test_attachments_strip_local_file(self):
        cleaned = {"attachments": [{"filename": "a.pdf", "fileObject": LocalFile("a.pdf", b"1")},
                                   {"id": "a-2", "filename": "b.pdf"}]}
        payload = self.normalizer.normalize(cleaned, "st")
        self.assertEqual(payload["attachments"], [{"filename": "a.pdf"}, {"id": "a-2", "filename": "b.pdf"}])

    def test_attachments_fall_back_to_live_state(self):
        payload = self.normalizer.normalize({}, "st", live={"attachments": [{"filename": "live.pdf"}]})
        self.assertEqual(payload["attachments"], [{"filename": "live.pdf"}])

    def test_helpers(self):
        self.assertTrue(is_measure_field("weight_for_transportation"))
        self.assertTrue(is_measure_field("total_volume"))
        self.assertFalse(is_measure_field("weightless"))
        self.assertFalse(is_measure_field("weight_type_id"))
        self.assertFalse(is_measure_field("volume_unit_ids"))
        self.assertEqual(normalize_leaf("notes", "x"), "x")


class TestOrderPersister(unittest.TestCase):

    def setUp(self):
        self.api = Mock()
        self.persister = OrderPersister(self.api)

    def test_create_without_parent(self):
        self.api.create_order.return_value = {"id": 12}
        record = self.persister.save(None, {"a": 1})
        self.api.create_order.assert_called_once_with({"a": 1})
        self.assertEqual(OrderPersister.record_id(record), "12")

    def test_update_with_parent(self):
        self.api.update_order.return_value = None
        record = self.persister.save("so-1", {"a": 1})
        self.api.update_order.assert_called_once_with("so-1", {"a": 1})
        self.assertEqual(record, {"id": "so-1"})

    def test_api_error_becomes_persistence_error(self):
        self.api.create_order.side_effect = ApiError("inválido", status=422,
                                                     details={"errors": {"weight": ["obrigatório"]}})
        with self.assertRaises(PersistenceError) as ctx:
            self.persister.save(None, {})
        self.assertEqual(ctx.exception.field_errors, {"weight": "obrigatório"})
        self.assertEqual(ctx.exception.status, 422)


if __name__ == '__main__':
    unittest.main()
