import io
import json
import re
import unittest
import zipfile

from tests.helpers.api import ApiHarness, xlsx


class QuoteLifecycleApiTest(unittest.TestCase):
    def setUp(self) -> None:
        self.api = ApiHarness("quotedesk_quote_api")
        self.api.create_user("customer", "customer", email="buyer@acme.test")
        self.api.create_user("supplier", "supplier", email="sales@forge.test")
        self.api.create_user("quoter", "quoter", email="quinn@desk.test")

    def tearDown(self) -> None:
        self.api.cleanup()

    def _create(self, **kwargs) -> dict:
        response = self.api.create_quote("customer", **kwargs)
        self.assertEqual(response.status_code, 201, response.get_json())
        return response.get_json()["quote"]

    def test_full_lifecycle_keeps_supplier_hidden_from_customer(self) -> None:
        quote = self._create(files=[xlsx("request.xlsx", b"customer-bytes")])
        quote_id = quote["id"]
        self.assertRegex(quote["quote_number"], r"^Q-\d{8}-001$")
        self.assertEqual(quote["status"], "pending")
        self.assertEqual(quote["currency"], "CNY")

        response = self.api.post("quoter", f"/api/quotes/{quote_id}/assign-supplier", {"supplier_id": self.api.users["supplier"]["id"]})
        self.assertEqual(response.status_code, 200, response.get_json())
        self.assertEqual(response.get_json()["quote"]["status"], "in_progress")

        response = self.api.upload("supplier", quote_id, xlsx("offer.xlsx", b"supplier-bytes"))
        self.assertEqual(response.status_code, 200, response.get_json())
        self.assertEqual(len(response.get_json()["quote"]["supplier_files"]), 1)

        response = self.api.post("supplier", f"/api/quotes/{quote_id}/confirm-supplier-quote")
        self.assertEqual(response.status_code, 200, response.get_json())
        self.assertEqual(response.get_json()["quote"]["status"], "supplier_quoted")

        response = self.api.upload("quoter", quote_id, xlsx("final.xlsx", b"final-bytes"), price="1250.50")
        self.assertEqual(response.status_code, 200, response.get_json())
        self.assertEqual(response.get_json()["quote"]["price"], 1250.5)

        response = self.api.post("quoter", f"/api/quotes/{quote_id}/confirm-final-quote")
        self.assertEqual(response.status_code, 200, response.get_json())
        self.assertEqual(response.get_json()["quote"]["status"], "quoted")

        download = self.api.client.get(f"/api/quotes/{quote_id}/files/quoter/0", headers=self.api.headers("customer"))
        self.assertEqual(download.status_code, 200)
        self.assertEqual(download.data, b"final-bytes")
        self.assertIn("final.xlsx", download.headers.get("Content-Disposition", ""))
        download.close()

        denied = self.api.client.get(f"/api/quotes/{quote_id}/files/supplier/0", headers=self.api.headers("customer"))
        self.assertEqual(denied.status_code, 403)

        customer_views = [
            self.api.client.get(f"/api/quotes/{quote_id}", headers=self.api.headers("customer")).get_json(),
            self.api.client.get("/api/quotes", headers=self.api.headers("customer")).get_json(),
            self.api.client.get(f"/api/quotes/{quote_id}/history", headers=self.api.headers("customer")).get_json(),
        ]
        for payload in customer_views:
            encoded = json.dumps(payload)
            self.assertNotIn("sales@forge.test", encoded)
            self.assertNotIn("offer.xlsx", encoded)

        categories = [message.category for message in self.api.mailer.sent]
        self.assertEqual(categories, ["quote_created", "supplier_assigned", "supplier_quoted", "final_quote"])
        final_mail = self.api.mailer.by_category("final_quote")[0]
        self.assertEqual(final_mail.to, ("buyer@acme.test",))
        self.assertEqual([item.filename for item in final_mail.attachments], ["final.xlsx"])

    def test_reject_then_assign_clears_reason(self) -> None:
        quote_id = self._create()["id"]

        unconfirmed = self.api.post("quoter", f"/api/quotes/{quote_id}/reject", {"reason": "no capacity"})
        self.assertEqual(unconfirmed.status_code, 400)
        self.assertEqual(unconfirmed.get_json()["error"], "confirmation_required")

        response = self.api.post("quoter", f"/api/quotes/{quote_id}/reject", {"reason": "no capacity", "confirm": True})
        self.assertEqual(response.status_code, 200, response.get_json())
        rejected = response.get_json()["quote"]
        self.assertEqual(rejected["status"], "rejected")
        self.assertEqual(rejected["reject_reason"], "no capacity")

        customer_view = self.api.client.get(f"/api/quotes/{quote_id}", headers=self.api.headers("customer")).get_json()
        self.assertEqual(customer_view["quote"]["reject_reason"], "no capacity")

        response = self.api.post("quoter", f"/api/quotes/{quote_id}/assign-supplier", {"supplier_id": self.api.users["supplier"]["id"]})
        self.assertEqual(response.status_code, 200, response.get_json())
        reassigned = response.get_json()["quote"]
        self.assertEqual(reassigned["status"], "in_progress")
        self.assertIsNone(reassigned["reject_reason"])

    def test_reject_requires_reason(self) -> None:
        quote_id = self._create()["id"]
        response = self.api.post("quoter", f"/api/quotes/{quote_id}/reject", {"reason": "  ", "confirm": True})
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.get_json()["error"], "reject_reason_required")

    def test_confirm_supplier_quote_without_files_is_rejected(self) -> None:
        quote_id = self._create()["id"]
        self.api.post("quoter", f"/api/quotes/{quote_id}/assign-supplier", {"supplier_id": self.api.users["supplier"]["id"]})
        response = self.api.post("supplier", f"/api/quotes/{quote_id}/confirm-supplier-quote")
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.get_json()["error"], "supplier_files_required")

    def test_illegal_transition_reports_allowed_actions(self) -> None:
        quote_id = self._create()["id"]
        self.api.post("customer", f"/api/quotes/{quote_id}/cancel", {"confirm": True})
        response = self.api.post("quoter", f"/api/quotes/{quote_id}/assign-supplier", {"supplier_id": self.api.users["supplier"]["id"]})
        self.assertEqual(response.status_code, 409)
        body = response.get_json()
        self.assertEqual(body["error"], "action_not_allowed_for_status")
        self.assertEqual(body["status"], "cancelled")
        self.assertEqual(sorted(body["allowed_actions"]), ["delete", "toggle_urgent"])

    def test_assign_supplier_rejects_non_supplier_account(self) -> None:
        quote_id = self._create()["id"]
        response = self.api.post("quoter", f"/api/quotes/{quote_id}/assign-supplier", {"supplier_id": self.api.users["customer"]["id"]})
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.get_json()["error"], "supplier_invalid")

    def test_supplier_file_delete_rewinds_and_removes_blob(self) -> None:
        quote_id = self._create()["id"]
        self.api.post("quoter", f"/api/quotes/{quote_id}/assign-supplier", {"supplier_id": self.api.users["supplier"]["id"]})
        self.api.upload("supplier", quote_id, xlsx("offer.xlsx"))

        response = self.api.client.put(
            f"/api/quotes/{quote_id}",
            headers=self.api.headers("supplier"),
            json={"delete_supplier_files": [0]},
        )
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.get_json()["error"], "confirmation_required")

        response = self.api.client.put(
            f"/api/quotes/{quote_id}",
            headers=self.api.headers("supplier"),
            json={"delete_supplier_files": [0], "confirm": True},
        )
        self.assertEqual(response.status_code, 200, response.get_json())
        quote = response.get_json()["quote"]
        self.assertEqual(quote["supplier_files"], [])
        self.assertEqual(quote["status"], "in_progress")

    def test_supplier_cannot_drop_offer_under_unconfirmed_final_file(self) -> None:
        quote_id = self._create()["id"]
        self.api.post("quoter", f"/api/quotes/{quote_id}/assign-supplier", {"supplier_id": self.api.users["supplier"]["id"]})
        self.assertEqual(self.api.upload("quoter", quote_id, xlsx("draft-final.xlsx")).status_code, 200)
        self.assertEqual(self.api.upload("supplier", quote_id, xlsx("offer.xlsx")).status_code, 200)

        response = self.api.client.put(
            f"/api/quotes/{quote_id}",
            headers=self.api.headers("supplier"),
            json={"delete_supplier_files": [0], "confirm": True},
        )
        self.assertEqual(response.status_code, 403)
        self.assertEqual(response.get_json()["reason"], "final_quote_present")

        quote = self.api.client.get(f"/api/quotes/{quote_id}", headers=self.api.headers("quoter")).get_json()["quote"]
        self.assertEqual(quote["status"], "in_progress")
        self.assertEqual(len(quote["supplier_files"]), 1)

        customer_view = self.api.client.get(f"/api/quotes/{quote_id}", headers=self.api.headers("customer")).get_json()["quote"]
        self.assertNotIn("quoter_files", customer_view)
        download = self.api.client.get(f"/api/quotes/{quote_id}/files/quoter/0", headers=self.api.headers("customer"))
        self.assertEqual(download.status_code, 403)

    def test_customer_edits_own_fields_only(self) -> None:
        quote_id = self._create()["id"]
        response = self.api.client.patch(
            f"/api/quotes/{quote_id}",
            headers=self.api.headers("customer"),
            json={"description": "Galvanized, 200 units", "urgent": True},
        )
        self.assertEqual(response.status_code, 200, response.get_json())
        self.assertTrue(response.get_json()["quote"]["urgent"])

        response = self.api.client.patch(f"/api/quotes/{quote_id}", headers=self.api.headers("customer"), json={"price": 10})
        self.assertEqual(response.status_code, 403)
        self.assertEqual(response.get_json()["error"], "field_not_editable")

        response = self.api.client.patch(f"/api/quotes/{quote_id}", headers=self.api.headers("customer"), json={"status": "quoted"})
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.get_json()["error"], "field_not_editable")

        response = self.api.client.patch(f"/api/quotes/{quote_id}", headers=self.api.headers("customer"), json={})
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.get_json()["error"], "no_changes")

    def test_archive_bundles_customer_files(self) -> None:
        quote_id = self._create(files=[xlsx("spec.xlsx", b"one"), xlsx("spec.xlsx", b"two")])["id"]
        response = self.api.client.get(f"/api/quotes/{quote_id}/files/customer/archive", headers=self.api.headers("quoter"))
        self.assertEqual(response.status_code, 200)
        with zipfile.ZipFile(io.BytesIO(response.data)) as archive:
            self.assertEqual(sorted(archive.namelist()), ["spec (1).xlsx", "spec.xlsx"])
        response.close()

    def test_unknown_file_type_is_not_found(self) -> None:
        quote_id = self._create()["id"]
        response = self.api.client.get(f"/api/quotes/{quote_id}/files/bogus/0", headers=self.api.headers("quoter"))
        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.get_json()["error"], "file_not_found")

    def test_delete_quote_requires_confirmation_and_owner(self) -> None:
        quote_id = self._create()["id"]
        response = self.api.client.delete(f"/api/quotes/{quote_id}", headers=self.api.headers("customer"))
        self.assertEqual(response.status_code, 400)

        response = self.api.client.delete(f"/api/quotes/{quote_id}?confirm=true", headers=self.api.headers("quoter"))
        self.assertEqual(response.status_code, 403)

        response = self.api.client.delete(f"/api/quotes/{quote_id}?confirm=true", headers=self.api.headers("customer"))
        self.assertEqual(response.status_code, 200, response.get_json())
        missing = self.api.client.get(f"/api/quotes/{quote_id}", headers=self.api.headers("customer"))
        self.assertEqual(missing.status_code, 404)
        self.assertEqual(missing.get_json()["error"], "quote_not_found")

    def test_create_requires_title_and_files(self) -> None:
        response = self.api.create_quote("customer", title="  ")
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.get_json()["error"], "title_required")

        response = self.api.create_quote("customer", files=[])
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.get_json()["error"], "files_required")

        response = self.api.create_quote("quoter")
        self.assertEqual(response.status_code, 403)

    def test_quote_numbers_increment_per_day(self) -> None:
        first = self._create()["quote_number"]
        second = self._create()["quote_number"]
        self.assertEqual(first[:-3], second[:-3])
        self.assertEqual(int(second[-3:]), int(first[-3:]) + 1)
        self.assertTrue(re.match(r"^Q-\d{8}-\d{3}$", second))


class QuoteListingApiTest(unittest.TestCase):
    def setUp(self) -> None:
        self.api = ApiHarness("quotedesk_quote_list")
        self.api.create_user("customer", "customer")
        self.api.create_user("other_customer", "customer")
        self.api.create_user("supplier", "supplier")
        self.api.create_user("quoter", "quoter")
        for title in ("Bolts", "Nuts", "Washers"):
            self.api.create_quote("customer", title=title)
        self.api.create_quote("other_customer", title="Hinges")

    def tearDown(self) -> None:
        self.api.cleanup()

    def _list(self, key: str, query: str = ""):
        return self.api.client.get(f"/api/quotes{query}", headers=self.api.headers(key))

    def test_customer_lists_only_own_quotes(self) -> None:
        body = self._list("customer").get_json()
        self.assertEqual(body["total"], 3)
        self.assertEqual({item["title"] for item in body["items"]}, {"Bolts", "Nuts", "Washers"})

        body = self._list("other_customer").get_json()
        self.assertEqual([item["title"] for item in body["items"]], ["Hinges"])

    def test_staff_lists_everything_with_paging(self) -> None:
        body = self._list("quoter", "?page=1&page_size=2&sort=title").get_json()
        self.assertEqual(body["total"], 4)
        self.assertEqual(body["page_size"], 2)
        self.assertEqual([item["title"] for item in body["items"]], ["Bolts", "Hinges"])

    def test_supplier_sees_open_pool(self) -> None:
        body = self._list("supplier").get_json()
        self.assertEqual(body["total"], 4)
        for item in body["items"]:
            self.assertNotIn("customer", item)

    def test_status_filter_and_validation(self) -> None:
        body = self._list("quoter", "?status=quoted").get_json()
        self.assertEqual(body["total"], 0)

        response = self._list("quoter", "?status=bogus")
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.get_json()["error"], "status_invalid")

        response = self._list("quoter", "?page_size=1000")
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.get_json()["error"], "page_invalid")

        response = self._list("quoter", "?sort=password_hash")
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.get_json()["error"], "sort_invalid")


if __name__ == "__main__":
    unittest.main()
