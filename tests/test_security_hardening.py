import unittest

from quotedesk import create_app
from quotedesk.config import Config
from quotedesk.db import close_db
from quotedesk.observability import reset_metrics_for_tests
from quotedesk.security import reset_rate_limiter_for_tests
from quotedesk.ui_strings import error_message
from tests.helpers.temp_db import TempDbSandbox


def _build_temp_config(temp_db: TempDbSandbox, **overrides):
    attrs = {
        "TESTING": True,
        "SECRET_KEY": "security-secret",
        "RATE_LIMIT_ENABLED": True,
        "RATE_LIMIT_WINDOW_SECONDS": 60,
        "RATE_LIMIT_MAX_REQUESTS": 300,
    }
    attrs.update(overrides)
    return temp_db.make_config(Config, **attrs)


class SecurityHardeningTest(unittest.TestCase):
    def setUp(self) -> None:
        self._temp_db = TempDbSandbox(prefix="security_hardening")
        self.app = create_app(_build_temp_config(self._temp_db))
        self.client = self.app.test_client()
        reset_rate_limiter_for_tests()
        reset_metrics_for_tests()

    def tearDown(self) -> None:
        with self.app.app_context():
            close_db()
        self._temp_db.cleanup()
        reset_rate_limiter_for_tests()
        reset_metrics_for_tests()

    def test_rate_limit_blocks_excessive_calls(self) -> None:
        self.app.config["RATE_LIMIT_MAX_REQUESTS"] = 2

        first = self.client.get("/health")
        second = self.client.get("/health")
        third = self.client.get("/health")

        self.assertEqual(first.status_code, 200)
        self.assertEqual(second.status_code, 200)
        self.assertEqual(third.status_code, 429)
        payload = third.get_json() or {}
        self.assertEqual(payload.get("error"), "rate_limit_exceeded")
        self.assertEqual(payload.get("message"), error_message("rate_limit_exceeded"))
        self.assertGreaterEqual(int(payload.get("retry_after") or 0), 0)

    def test_rate_limit_is_per_route(self) -> None:
        self.app.config["RATE_LIMIT_MAX_REQUESTS"] = 1

        self.assertEqual(self.client.get("/health").status_code, 200)
        self.assertEqual(self.client.get("/api/quotes").status_code, 401)
        self.assertEqual(self.client.get("/health").status_code, 429)

    def test_health_exposes_http_metrics(self) -> None:
        self.client.get("/api/quotes")

        response = self.client.get("/health")
        self.assertEqual(response.status_code, 200)
        payload = response.get_json() or {}
        self.assertEqual(payload.get("db"), "sqlite")
        self.assertTrue(payload.get("db_reachable"))
        self.assertGreaterEqual(int((payload.get("metrics") or {}).get("http", {}).get("requests_total", 0)), 1)

    def test_security_headers_present(self) -> None:
        response = self.client.get("/health")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.headers.get("X-Content-Type-Options"), "nosniff")
        self.assertEqual(response.headers.get("X-Frame-Options"), "DENY")
        self.assertEqual(response.headers.get("Referrer-Policy"), "strict-origin-when-cross-origin")
        self.assertEqual(response.headers.get("Cache-Control"), "no-store")
        self.assertTrue((response.headers.get("Content-Security-Policy") or "").strip())
        self.assertTrue((response.headers.get("X-Request-Id") or "").strip())
        self.assertTrue((response.headers.get("X-Response-Time-Ms") or "").strip())

    def test_incoming_request_id_is_echoed(self) -> None:
        response = self.client.get("/health", headers={"X-Request-Id": "trace-abc-123"})
        self.assertEqual(response.headers.get("X-Request-Id"), "trace-abc-123")


if __name__ == "__main__":
    unittest.main()
