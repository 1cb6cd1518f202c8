import unittest

from quotedesk.application.notification_service import NotificationEvent, NotificationJob, NotificationService
from quotedesk.db import get_db
from quotedesk.infrastructure.file_store import LocalFileStore
from tests.helpers.api import ApiHarness, RecordingMailer, xlsx


class NotificationDeliveryTest(unittest.TestCase):
    def setUp(self) -> None:
        self.api = ApiHarness("quotedesk_notifications")
        self.api.create_user("customer", "customer", email="buyer@acme.test")
        self.api.create_user("supplier", "supplier", email="sales@forge.test")
        self.api.create_user("quoter", "quoter", email="quinn@desk.test")
        self.api.create_user("second_quoter", "quoter", email="quill@desk.test")
        self.api.create_user("retired_quoter", "quoter", email="gone@desk.test", is_active=False)

    def tearDown(self) -> None:
        self.api.cleanup()

    def _create(self, **kwargs) -> int:
        response = self.api.create_quote("customer", **kwargs)
        self.assertEqual(response.status_code, 201, response.get_json())
        return response.get_json()["quote"]["id"]

    def test_new_quote_mails_every_active_quoter_without_customer_identity(self) -> None:
        self._create(title="Brackets", customer_message="call me at 555-0100")
        sent = self.api.mailer.by_category("quote_created")
        self.assertEqual(sorted(message.to[0] for message in sent), ["quill@desk.test", "quinn@desk.test"])
        for message in sent:
            self.assertIn("Brackets", message.subject)
            self.assertNotIn("buyer@acme.test", message.html)
            self.assertNotIn("555-0100", message.html)
            self.assertEqual(message.attachments, ())

    def test_assignment_mails_supplier_with_customer_files(self) -> None:
        quote_id = self._create(files=[xlsx("drawing.xlsx")])
        self.api.post("quoter", f"/api/quotes/{quote_id}/assign-supplier", {"supplier_id": self.api.users["supplier"]["id"]})
        sent = self.api.mailer.by_category("supplier_assigned")
        self.assertEqual(len(sent), 1)
        self.assertEqual(sent[0].to, ("sales@forge.test",))
        self.assertEqual([item.filename for item in sent[0].attachments], ["drawing.xlsx"])
        self.assertNotIn("buyer@acme.test", sent[0].html)

    def test_failed_delivery_does_not_fail_the_request(self) -> None:
        self.api.mailer.fail_for = {"quinn@desk.test"}
        with self.assertLogs("quotedesk.application.notification_service", level="ERROR"):
            quote_id = self._create()
        self.assertIsInstance(quote_id, int)
        self.assertEqual([message.to for message in self.api.mailer.sent], [("quill@desk.test",)])

    def test_failed_request_sends_nothing(self) -> None:
        response = self.api.create_quote("customer", files=[xlsx("notes.txt")])
        self.assertEqual(response.status_code, 400)
        self.assertEqual(self.api.mailer.sent, [])

    def test_disabled_notifications_are_not_queued(self) -> None:
        self.api.app.config["NOTIFICATIONS_ENABLED"] = False
        self._create()
        self.assertEqual(self.api.mailer.sent, [])

    def test_missing_quote_is_skipped(self) -> None:
        mailer = RecordingMailer()
        with self.api.app.app_context():
            service = NotificationService(mailer, LocalFileStore(self.api.sandbox.upload_dir))
            sent = service.deliver(get_db(), NotificationJob(event=NotificationEvent.FINAL_QUOTE, quote_id=999))
        self.assertEqual(sent, 0)
        self.assertEqual(mailer.sent, [])

    def test_message_links_to_quote(self) -> None:
        self.api.app.config["APP_PUBLIC_URL"] = "https://quotes.example.test/"
        quote_id = self._create()
        message = self.api.mailer.by_category("quote_created")[0]
        self.assertIn(f"https://quotes.example.test/quotes/{quote_id}", message.text)
        self.assertIn(f"https://quotes.example.test/quotes/{quote_id}", message.html)


if __name__ == "__main__":
    unittest.main()
