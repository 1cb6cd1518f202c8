import unittest
from unittest.mock import patch

from quotedesk.ui_strings import error_message
from tests.helpers.api import ApiHarness, xlsx


class ErrorPermissionTest(unittest.TestCase):
    def setUp(self) -> None:
        self.api = ApiHarness("error_perm", TESTING=False, PROPAGATE_EXCEPTIONS=False)
        self.client = self.api.client

    def tearDown(self) -> None:
        self.api.cleanup()

    def test_permission_error_for_unauthenticated_api(self) -> None:
        response = self.client.get("/api/quotes")
        self.assertEqual(response.status_code, 401)

        payload = response.get_json()
        self.assertEqual(payload.get("error"), "auth_required")
        self.assertEqual(payload.get("message"), error_message("auth_required"))
        self.assertTrue((payload.get("request_id") or "").strip())
        self.assertNotIn("Traceback", response.get_data(as_text=True))

    def test_denied_action_names_the_reason(self) -> None:
        self.api.create_user("customer", "customer")
        self.api.create_user("intruder", "customer")
        quote_id = self.api.create_quote("customer").get_json()["quote"]["id"]

        response = self.client.get(f"/api/quotes/{quote_id}", headers=self.api.headers("intruder"))
        self.assertEqual(response.status_code, 403)
        payload = response.get_json()
        self.assertEqual(payload.get("error"), "permission_denied")
        self.assertEqual(payload.get("reason"), "customer_not_owner")
        self.assertEqual(payload.get("message"), error_message("customer_not_owner"))


class ErrorHandlingApiTest(unittest.TestCase):
    def setUp(self) -> None:
        self.api = ApiHarness("error_api", PROPAGATE_EXCEPTIONS=False)
        self.client = self.api.client
        self.api.create_user("customer", "customer")
        self.api.create_user("quoter", "quoter")

    def tearDown(self) -> None:
        self.api.cleanup()

    def _create_quote(self) -> int:
        response = self.api.create_quote("customer")
        self.assertEqual(response.status_code, 201)
        return int(response.get_json()["quote"]["id"])

    def test_validation_error_for_invalid_flow_action(self) -> None:
        quote_id = self._create_quote()

        cancel_res = self.api.post("customer", f"/api/quotes/{quote_id}/cancel", {"confirm": True})
        self.assertEqual(cancel_res.status_code, 200)

        reject_res = self.api.post("quoter", f"/api/quotes/{quote_id}/reject", {"reason": "late", "confirm": True})
        self.assertEqual(reject_res.status_code, 403)

        again = self.api.post("customer", f"/api/quotes/{quote_id}/cancel", {"confirm": True})
        self.assertEqual(again.status_code, 409)
        payload = again.get_json()
        self.assertEqual(payload.get("error"), "action_not_allowed_for_status")
        self.assertEqual(payload.get("message"), error_message("action_not_allowed_for_status"))
        self.assertTrue((payload.get("request_id") or "").strip())

    def test_unknown_quote_is_not_found(self) -> None:
        response = self.client.get("/api/quotes/4242", headers=self.api.headers("quoter"))
        self.assertEqual(response.status_code, 404)
        payload = response.get_json()
        self.assertEqual(payload.get("error"), "quote_not_found")
        self.assertEqual(payload.get("quote_id"), 4242)

    def test_stack_trace_not_exposed_for_unhandled_error(self) -> None:
        quote_id = self._create_quote()

        with patch(
            "quotedesk.application.quote_service.QuoteService.confirm_final_quote",
            side_effect=RuntimeError("stack_secret_token"),
        ):
            response = self.api.post("quoter", f"/api/quotes/{quote_id}/confirm-final-quote")

        self.assertEqual(response.status_code, 500)
        payload = response.get_json()
        self.assertEqual(payload.get("error"), "unexpected_error")
        self.assertEqual(payload.get("message"), error_message("unexpected_error"))
        body = response.get_data(as_text=True)
        self.assertNotIn("Traceback", body)
        self.assertNotIn("stack_secret_token", body)

    def test_oversized_body_maps_to_file_too_large(self) -> None:
        self.api.app.config["MAX_CONTENT_LENGTH"] = 128
        response = self.api.create_quote("customer", files=[xlsx("big.xlsx", b"x" * 4096)])
        self.assertEqual(response.status_code, 413)
        self.assertEqual(response.get_json().get("error"), "file_too_large")


if __name__ == "__main__":
    unittest.main()
