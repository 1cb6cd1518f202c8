import json
import threading
import unittest

from quotedesk.client import ClientError, QuoteDeskClient, TokenSession


class FakeApi:
    """Transport double: accepts exactly one valid access token at a time."""

    def __init__(self, refresh_delay: float = 0.0) -> None:
        self.valid_access = "access-1"
        self.valid_refresh = "refresh-1"
        self.refresh_calls = 0
        self.refresh_delay = refresh_delay
        self.refresh_fails = False
        self.expires_in = None
        self.refreshed = threading.Event()
        self.lock = threading.Lock()
        self.requests = []

    def _tokens(self) -> bytes:
        payload = {"access_token": self.valid_access, "refresh_token": self.valid_refresh}
        if self.expires_in is not None:
            payload["expires_in"] = self.expires_in
        return json.dumps(payload).encode()

    def __call__(self, method, url, headers, body, timeout):
        self.requests.append((method, url, headers.get("Authorization")))
        if url.endswith("/api/auth/refresh"):
            return self._refresh(json.loads(body))
        if url.endswith("/api/auth/login"):
            return 200, self._tokens()
        if headers.get("Authorization") != f"Bearer {self.valid_access}":
            return 401, b'{"error": "auth_invalid_token"}'
        return 200, json.dumps({"quote": {"id": 1, "status": "pending"}, "items": []}).encode()

    def _refresh(self, payload):
        if self.refresh_delay:
            threading.Event().wait(self.refresh_delay)
        with self.lock:
            self.refresh_calls += 1
            if self.refresh_fails or payload.get("refresh_token") != self.valid_refresh:
                return 401, b'{"error": "auth_invalid_token"}'
            number = self.refresh_calls + 1
            self.valid_access = f"access-{number}"
            self.valid_refresh = f"refresh-{number}"
            self.refreshed.set()
            return 200, self._tokens()


class TokenSessionTest(unittest.TestCase):
    def test_login_stores_tokens(self) -> None:
        api = FakeApi()
        session = TokenSession("http://desk.test/", transport=api)
        session.login("buyer@acme.test", "secret-password")
        self.assertEqual(session.access_token, "access-1")
        self.assertEqual(session.refresh_token, "refresh-1")

    def test_expired_access_token_is_refreshed_and_request_replayed(self) -> None:
        api = FakeApi()
        session = TokenSession("http://desk.test", access_token="expired", refresh_token="refresh-1", transport=api)
        quote = QuoteDeskClient(session).get_quote(1)
        self.assertEqual(quote["id"], 1)
        self.assertEqual(api.refresh_calls, 1)
        self.assertEqual(session.access_token, "access-2")
        self.assertEqual(api.requests[-1][2], "Bearer access-2")

    def test_concurrent_401s_share_one_refresh(self) -> None:
        api = FakeApi(refresh_delay=0.05)
        session = TokenSession("http://desk.test", access_token="expired", refresh_token="refresh-1", transport=api)
        client = QuoteDeskClient(session)
        errors = []
        start = threading.Barrier(8)

        def worker() -> None:
            try:
                start.wait()
                client.get_quote(1)
            except Exception as exc:
                errors.append(exc)

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=5)

        self.assertEqual(errors, [])
        self.assertEqual(api.refresh_calls, 1)
        self.assertEqual(session.access_token, "access-2")

    def test_rejected_refresh_clears_session(self) -> None:
        api = FakeApi()
        api.refresh_fails = True
        session = TokenSession("http://desk.test", access_token="expired", refresh_token="refresh-1", transport=api)
        with self.assertRaises(ClientError) as ctx:
            session.request("GET", "/api/quotes/1")
        self.assertEqual(ctx.exception.status, 401)
        self.assertIsNone(session.access_token)
        self.assertIsNone(session.refresh_token)

    def test_without_refresh_token_401_propagates(self) -> None:
        api = FakeApi()
        session = TokenSession("http://desk.test", access_token="expired", transport=api)
        with self.assertRaises(ClientError) as ctx:
            session.request("GET", "/api/quotes")
        self.assertEqual(ctx.exception.code, "auth_invalid_token")
        self.assertEqual(api.refresh_calls, 0)

    def test_client_sends_confirmed_rejection(self) -> None:
        api = FakeApi()
        seen = {}

        def transport(method, url, headers, body, timeout):
            seen["body"] = json.loads(body)
            return api(method, url, headers, body, timeout)

        session = TokenSession("http://desk.test", access_token="access-1", transport=transport)
        QuoteDeskClient(session).reject(1, "no capacity")
        self.assertEqual(seen["body"], {"reason": "no capacity", "confirm": True})


class _Clock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


class ScheduledRefreshTest(unittest.TestCase):
    def test_timer_refreshes_before_expiry(self) -> None:
        api = FakeApi()
        api.expires_in = 0.2
        session = TokenSession("http://desk.test", transport=api, refresh_margin=0.1)
        self.addCleanup(session.close)
        session.login("buyer@acme.test", "secret-password")

        self.assertTrue(api.refreshed.wait(timeout=5))
        session.close()
        self.assertGreaterEqual(api.refresh_calls, 1)
        self.assertTrue(all(url.endswith("/api/auth/refresh") for _, url, _ in api.requests[1:]))

    def test_close_stops_the_timer(self) -> None:
        api = FakeApi()
        api.expires_in = 0.1
        session = TokenSession("http://desk.test", transport=api, refresh_margin=0.0)
        session.login("buyer@acme.test", "secret-password")
        session.close()
        self.assertFalse(api.refreshed.wait(timeout=0.4))
        self.assertEqual(api.refresh_calls, 0)
        self.assertEqual(session.access_token, "access-1")

    def test_invalidate_cancels_the_timer(self) -> None:
        api = FakeApi()
        api.expires_in = 0.1
        session = TokenSession("http://desk.test", transport=api, refresh_margin=0.0)
        session.login("buyer@acme.test", "secret-password")
        session.invalidate()
        self.assertFalse(api.refreshed.wait(timeout=0.4))
        self.assertIsNone(session.expires_at)

    def test_request_after_due_time_refreshes_first(self) -> None:
        api = FakeApi()
        api.expires_in = 3600
        clock = _Clock()
        session = TokenSession("http://desk.test", transport=api, refresh_margin=60, clock=clock)
        self.addCleanup(session.close)
        session.login("buyer@acme.test", "secret-password")
        self.assertEqual(session.expires_at, 4600.0)

        QuoteDeskClient(session).get_quote(1)
        self.assertEqual(api.refresh_calls, 0)

        clock.now = 4545.0
        QuoteDeskClient(session).get_quote(1)
        self.assertEqual(api.refresh_calls, 1)
        self.assertEqual(api.requests[-2][1], "http://desk.test/api/auth/refresh")
        self.assertEqual(api.requests[-1][2], "Bearer access-2")


if __name__ == "__main__":
    unittest.main()
