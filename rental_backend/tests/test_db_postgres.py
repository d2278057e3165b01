import unittest
import uuid
from decimal import Decimal

from rental_backend.db import Outlet, PostgresDbClient, UserProfile, UserRole


class PostgresDbClientTests(unittest.TestCase):
    """
    Uses SQLite via SQLAlchemy URL for fast/local testing of the Postgres client logic.
    """

    def setUp(self):
        self.db = PostgresDbClient("sqlite+pysqlite:///:memory:")

    def _customer(self, code, created_at, **values):
        return self.db.insert_customer(
            {"customer_code": code, "created_at": created_at, **values}
        )

    def test_profile_roundtrip(self):
        profile = UserProfile(
            id=str(uuid.uuid4()),
            email="admin@rental.test",
            full_name="Admin",
            role=UserRole.ADMIN,
        )
        self.db.save_user_profile(profile)
        loaded = self.db.get_user_profile(profile.id)
        self.assertEqual(loaded.role, UserRole.ADMIN)
        self.assertTrue(loaded.is_active)
        self.assertIsNone(self.db.get_user_profile("missing"))

    def test_unknown_role_reads_as_other(self):
        self.assertEqual(UserRole.parse("staff"), UserRole.OTHER)

    def test_outlets_and_assignments(self):
        self.db.save_outlet(Outlet(id="o2", name="Bandra"))
        self.db.save_outlet(Outlet(id="o1", name="Andheri"))
        self.db.save_outlet(Outlet(id="o3", name="Colaba", is_active=False))
        self.db.save_user_profile(
            UserProfile(id="m1", email="m1@rental.test", full_name="M", role=UserRole.MANAGER)
        )
        self.db.assign_outlet("m1", "o2")
        self.db.assign_outlet("m1", "o3")
        self.db.assign_outlet("m1", "o2")

        self.assertEqual([o.name for o in self.db.list_active_outlets()], ["Andheri", "Bandra"])
        assigned = self.db.list_assigned_outlets("m1")
        self.assertEqual(sorted(o.id for o in assigned), ["o2", "o3"])
        self.assertEqual(self.db.list_assigned_outlets("nobody"), [])

    def test_list_customers_filters(self):
        self._customer("CUST-000001", 1.0, company_name="Shaadi Decor", customer_type="business")
        self._customer("CUST-000002", 2.0, contact_person="Anil", email="anil@decor.in")
        self._customer("CUST-000003", 3.0, contact_person="Zoya", phone="99000 11111")
        self._customer("CUST-000004", 4.0, company_name="Decor Gone", is_active=False)

        codes = [c.customer_code for c in self.db.list_customers()]
        self.assertEqual(codes, ["CUST-000003", "CUST-000002", "CUST-000001"])

        decor = [c.customer_code for c in self.db.list_customers(search="DECOR")]
        self.assertEqual(decor, ["CUST-000002", "CUST-000001"])

        business = self.db.list_customers(customer_type="business", search="decor")
        self.assertEqual([c.customer_code for c in business], ["CUST-000001"])

    def test_search_wildcards_match_literally(self):
        self._customer("CUST-000001", 1.0, company_name="100% Tents")
        self._customer("CUST-000002", 2.0, company_name="1000 Tents")
        self._customer("CUST-000003", 3.0, company_name="Big_Top")
        self._customer("CUST-000004", 4.0, company_name="BigXTop")

        self.assertEqual(
            [c.customer_code for c in self.db.list_customers(search="0%")],
            ["CUST-000001"],
        )
        self.assertEqual(
            [c.customer_code for c in self.db.list_customers(search="g_t")],
            ["CUST-000003"],
        )

    def test_update_and_soft_delete(self):
        customer = self._customer("CUST-000001", 1.0, contact_person="Anil")
        updated = self.db.update_customer(customer.id, {"phone": "123", "is_active": False})
        self.assertEqual(updated.phone, "123")
        self.assertFalse(updated.is_active)
        self.assertEqual(self.db.list_customers(), [])
        self.assertFalse(self.db.get_customer(customer.id).is_active)
        self.assertIsNone(self.db.update_customer("missing", {"phone": "1"}))

    def test_duplicate_customer_code_is_rejected(self):
        from rental_backend.results import BackendError

        self._customer("CUST-000001", 1.0)
        with self.assertRaises(BackendError):
            self._customer("CUST-000001", 2.0)

    def test_adjust_balance_is_floored(self):
        customer = self._customer("CUST-000001", 1.0, outstanding_balance="120.25")

        added = self.db.adjust_customer_balance(customer.id, Decimal("9.75"), add=True)
        self.assertEqual(added.outstanding_balance, Decimal("130.00"))

        reduced = self.db.adjust_customer_balance(customer.id, Decimal("30"), add=False)
        self.assertEqual(reduced.outstanding_balance, Decimal("100.00"))

        floored = self.db.adjust_customer_balance(customer.id, Decimal("500"), add=False)
        self.assertEqual(floored.outstanding_balance, Decimal("0"))

        self.assertIsNone(
            self.db.adjust_customer_balance("missing", Decimal("1"), add=True)
        )

    def test_orders_with_items_and_invoices(self):
        customer = self._customer("CUST-000001", 1.0, contact_person="Anil")
        self.db.save_inventory_item({"id": "i1", "item_code": "TBL-6", "name": "Table"})
        self.db.save_rental_order(
            {"id": "r1", "customer_id": customer.id, "created_at": 5.0, "total_amount": "900"},
            [{"id": "ri1", "inventory_item_id": "i1", "quantity": 3, "rate": "300"}],
        )
        self.db.save_rental_order(
            {"id": "r2", "customer_id": customer.id, "created_at": 9.0},
            [{"id": "ri2", "inventory_item_id": "unknown", "quantity": 1}],
        )
        self.db.save_invoice(
            {"id": "v1", "customer_id": customer.id, "invoice_date": "2025-02-01"}
        )
        self.db.save_invoice(
            {"id": "v2", "customer_id": customer.id, "invoice_date": "2025-06-01"}
        )

        orders = self.db.list_customer_orders(customer.id)
        self.assertEqual([o["id"] for o in orders], ["r2", "r1"])
        self.assertIsNone(orders[0]["rental_order_items"][0]["inventory_items"])
        item = orders[1]["rental_order_items"][0]
        self.assertEqual(item["inventory_items"], {"name": "Table", "item_code": "TBL-6"})
        self.assertEqual(item["quantity"], 3)
        self.assertEqual(orders[1]["total_amount"], Decimal("900"))

        invoices = self.db.list_customer_invoices(customer.id)
        self.assertEqual([i["id"] for i in invoices], ["v2", "v1"])
        self.assertEqual(self.db.list_customer_orders("nobody"), [])


if __name__ == "__main__":
    unittest.main()
