import unittest

from quotedesk.domain.models import QuoteStatus
from quotedesk.ui_strings import (
    ACTION_LABELS,
    MESSAGES,
    STATUS_ITEMS,
    error_message,
    frontend_bundle,
    status_keys,
    status_label,
)
from quotedesk.workflow.critical_actions import CRITICAL_ACTIONS
from quotedesk.workflow.state_machine import Trigger


DENIAL_REASONS = (
    "customer_not_owner",
    "file_type_not_allowed",
    "final_quote_present",
    "role_not_allowed",
    "status_locked",
    "supplier_not_assigned",
    "supplier_quote_locked",
    "unknown_role",
)


class UiStringsStatusTest(unittest.TestCase):
    def test_every_status_has_an_entry(self) -> None:
        self.assertEqual(set(status_keys()), {status.value for status in QuoteStatus})

    def test_status_labels_are_not_empty(self) -> None:
        for status in STATUS_ITEMS:
            label = (status.get("label") or "").strip()
            self.assertTrue(label, f"empty label: {status.get('key')}")

    def test_status_descriptions_are_not_empty(self) -> None:
        for status in STATUS_ITEMS:
            description = (status.get("description") or "").strip()
            self.assertTrue(description, f"empty description: {status.get('key')}")

    def test_unknown_status_label_falls_back_to_key(self) -> None:
        self.assertEqual(status_label("rejected"), "Not quoted")
        self.assertEqual(status_label("archived"), "archived")
        self.assertEqual(status_label(None), "")


class UiStringsMessagesTest(unittest.TestCase):
    def test_every_trigger_has_an_action_label(self) -> None:
        for trigger in Trigger:
            self.assertIn(trigger.value, ACTION_LABELS)

    def test_critical_actions_have_confirm_copy(self) -> None:
        for action in CRITICAL_ACTIONS.values():
            self.assertIn(action["confirm_message_key"], MESSAGES["confirm"])

    def test_denial_reasons_have_friendly_messages(self) -> None:
        for reason in DENIAL_REASONS:
            self.assertIn(reason, MESSAGES["error"], reason)

    def test_unknown_error_key_returns_default_or_key(self) -> None:
        self.assertEqual(error_message("no_such_code"), "no_such_code")
        self.assertEqual(error_message("no_such_code", "fallback"), "fallback")

    def test_frontend_bundle_shares_the_tables(self) -> None:
        bundle = frontend_bundle()
        self.assertIs(bundle["messages"], MESSAGES)
        self.assertEqual([item["key"] for item in bundle["statuses"]], status_keys())


if __name__ == "__main__":
    unittest.main()
