"""Small HTTP client for the QuoteDesk API.

``TokenSession`` holds the caller's access and refresh tokens. When a request
comes back 401 the session refreshes once and replays the request; concurrent
callers that hit 401 at the same time share a single refresh call. When the
server reports ``expires_in``, a background timer refreshes the pair shortly before
the access token lapses, and a request made after that point refreshes first.
"""

from __future__ import annotations

import json
import logging
import threading
import time
import urllib.error
import urllib.parse
import urllib.request
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Tuple


logger = logging.getLogger(__name__)


Transport = Callable[[str, str, Dict[str, str], bytes | None, int], Tuple[int, bytes]]


class ClientError(RuntimeError):
    def __init__(self, status: int, payload: Dict[str, Any] | None = None) -> None:
        self.status = int(status)
        self.payload = dict(payload or {})
        self.code = str(self.payload.get("error") or f"http_{self.status}")
        super().__init__(f"HTTP {self.status}: {self.code}")


def urllib_transport(method: str, url: str, headers: Dict[str, str], body: bytes | None, timeout: int) -> Tuple[int, bytes]:
    request = urllib.request.Request(url, data=body, headers=headers, method=method.upper())
    try:
        with urllib.request.urlopen(request, timeout=timeout) as response:
            return int(response.status), response.read()
    except urllib.error.HTTPError as exc:
        return int(exc.code), exc.read() if exc.fp else b""
    except urllib.error.URLError as exc:
        raise ClientError(0, {"error": "connection_failed", "message": str(exc.reason)}) from exc


def _decode(raw: bytes) -> Dict[str, Any]:
    if not raw:
        return {}
    try:
        payload = json.loads(raw.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError):
        return {"error": "invalid_json"}
    return payload if isinstance(payload, dict) else {"items": payload}


@dataclass
class _RefreshCall:
    done: threading.Event = field(default_factory=threading.Event)
    access_token: str | None = None
    error: BaseException | None = None


class TokenSession:
    def __init__(
        self,
        base_url: str,
        *,
        access_token: str | None = None,
        refresh_token: str | None = None,
        transport: Transport | None = None,
        timeout: int = 20,
        refresh_margin: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.access_token = access_token
        self.refresh_token = refresh_token
        self.transport = transport or urllib_transport
        self.timeout = int(timeout)
        self.refresh_margin = float(refresh_margin)
        self.clock = clock
        self.expires_at: float | None = None
        self._lock = threading.Lock()
        self._inflight: _RefreshCall | None = None
        self._timer: threading.Timer | None = None
        self._closed = False

    def login(self, email: str, password: str) -> Dict[str, Any]:
        payload = self._send("POST", "/api/auth/login", {"email": email, "password": password}, token=None)
        self._store(payload)
        return payload

    def invalidate(self) -> None:
        with self._lock:
            self.access_token = None
            self.refresh_token = None
            self.expires_at = None
            self._cancel_timer()

    def close(self) -> None:
        """Stop background refreshes; the tokens stay usable until they expire."""
        with self._lock:
            self._closed = True
            self._cancel_timer()

    def refresh(self, stale_token: str | None = None) -> str:
        """Exchange the refresh token for a new pair, sharing one call among concurrent callers.

        ``stale_token`` is the access token the caller saw rejected; if another
        thread already replaced it, the fresh token is returned without a call.
        """
        with self._lock:
            if stale_token is not None and self.access_token and self.access_token != stale_token:
                return self.access_token
            call = self._inflight
            owner = call is None
            if owner:
                call = _RefreshCall()
                self._inflight = call
        if not owner:
            call.done.wait()
            if call.error is not None:
                raise call.error
            return call.access_token or ""

        try:
            if not self.refresh_token:
                raise ClientError(401, {"error": "auth_invalid_token"})
            try:
                payload = self._send("POST", "/api/auth/refresh", {"refresh_token": self.refresh_token}, token=None)
            except ClientError as exc:
                if exc.status == 401:
                    self.invalidate()
                raise
            self._store(payload)
            call.access_token = self.access_token
            return call.access_token or ""
        except BaseException as exc:
            call.error = exc
            raise
        finally:
            with self._lock:
                self._inflight = None
            call.done.set()

    def request(self, method: str, path: str, payload: Dict[str, Any] | None = None) -> Dict[str, Any]:
        token = self.access_token
        if token and self.refresh_token and self._is_due():
            token = self.refresh(stale_token=token)
        try:
            return self._send(method, path, payload, token=token)
        except ClientError as exc:
            if exc.status != 401 or not self.refresh_token:
                raise
        fresh = self.refresh(stale_token=token)
        return self._send(method, path, payload, token=fresh)

    def _is_due(self) -> bool:
        expires_at = self.expires_at
        return expires_at is not None and self.clock() >= expires_at - self.refresh_margin

    def _store(self, payload: Dict[str, Any]) -> None:
        with self._lock:
            self.access_token = payload.get("access_token") or self.access_token
            self.refresh_token = payload.get("refresh_token") or self.refresh_token
            expires_in = payload.get("expires_in")
            if expires_in is None:
                return
            lifetime = float(expires_in)
            self.expires_at = self.clock() + lifetime
            self._schedule(max(lifetime - self.refresh_margin, lifetime / 2), self.access_token)

    def _schedule(self, delay: float, token: str | None) -> None:
        self._cancel_timer()
        if self._closed or not self.refresh_token:
            return
        timer = threading.Timer(delay, self._refresh_on_timer, args=(token,))
        timer.daemon = True
        self._timer = timer
        timer.start()

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _refresh_on_timer(self, token: str | None) -> None:
        try:
            self.refresh(stale_token=token)
        except ClientError as exc:
            logger.warning("token_refresh_failed", extra={"status": exc.status, "error": exc.code})

    def _send(self, method: str, path: str, payload: Dict[str, Any] | None, *, token: str | None) -> Dict[str, Any]:
        headers = {"Accept": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        body = None
        if payload is not None:
            headers["Content-Type"] = "application/json"
            body = json.dumps(payload, separators=(",", ":"), ensure_ascii=True).encode("utf-8")
        status, raw = self.transport(method, f"{self.base_url}{path}", headers, body, self.timeout)
        decoded = _decode(raw)
        if status >= 400:
            raise ClientError(status, decoded)
        return decoded


class QuoteDeskClient:
    def __init__(self, session: TokenSession) -> None:
        self.session = session

    def list_quotes(self, **params: Any) -> Dict[str, Any]:
        query = urllib.parse.urlencode({key: value for key, value in params.items() if value is not None})
        return self.session.request("GET", f"/api/quotes?{query}" if query else "/api/quotes")

    def get_quote(self, quote_id: int) -> Dict[str, Any]:
        return self.session.request("GET", f"/api/quotes/{int(quote_id)}")["quote"]

    def reject(self, quote_id: int, reason: str) -> Dict[str, Any]:
        payload = {"reason": reason, "confirm": True}
        return self.session.request("POST", f"/api/quotes/{int(quote_id)}/reject", payload)["quote"]

    def assign_supplier(self, quote_id: int, supplier_id: int | str) -> Dict[str, Any]:
        payload = {"supplier_id": str(supplier_id)}
        return self.session.request("POST", f"/api/quotes/{int(quote_id)}/assign-supplier", payload)["quote"]

    def confirm_supplier_quote(self, quote_id: int) -> Dict[str, Any]:
        return self.session.request("POST", f"/api/quotes/{int(quote_id)}/confirm-supplier-quote", {})["quote"]

    def confirm_final_quote(self, quote_id: int) -> Dict[str, Any]:
        return self.session.request("POST", f"/api/quotes/{int(quote_id)}/confirm-final-quote", {})["quote"]

    def workflow(self) -> Dict[str, Any]:
        return self.session.request("GET", "/api/meta/workflow")
