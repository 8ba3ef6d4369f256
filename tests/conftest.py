"""Shared test fixtures for tesla_login.

HTTP is faked at the transport layer: a ScriptedAdapter is mounted on a
real LoginSession, so cookies, redirect policy and timeouts go through
requests exactly as they would against the live provider.
"""

from __future__ import annotations

import json
import urllib.parse as urlparse
from typing import Any

import pytest
import requests
from requests.adapters import BaseAdapter
from requests.structures import CaseInsensitiveDict

from tesla_login.config import ProviderConfig
from tesla_login.sessions import LoginSession, new_session


AUTH_BASE = "https://auth.example.test"


class ScriptedAdapter(BaseAdapter):
    """Answers requests from per-(method, url) queues of canned responses.

    The last response queued for a route is repeated once the others are used
    up.  A route with no responses raises ConnectionError, like an
    unreachable host would.
    """

    def __init__(self) -> None:
        super().__init__()
        self.routes: dict[tuple[str, str], list[dict[str, Any]]] = {}
        self.calls: list[requests.PreparedRequest] = []
        self.timeouts: list[Any] = []
        self.jar = None

    def add(
        self,
        method: str,
        url: str,
        *,
        status: int = 200,
        text: str = "",
        json_body: Any = None,
        headers: dict[str, str] | None = None,
        set_cookies: dict[str, str] | None = None,
        exc: Exception | None = None,
    ) -> None:
        body = json.dumps(json_body) if json_body is not None else text
        self.routes.setdefault((method.upper(), url), []).append(
            {
                "status": status,
                "body": body,
                "headers": headers or {},
                "set_cookies": set_cookies or {},
                "exc": exc,
            }
        )

    def send(self, request, stream=False, timeout=None, verify=True, cert=None, proxies=None):
        self.calls.append(request)
        self.timeouts.append(timeout)
        key = (request.method, request.url.split("?")[0])
        queue = self.routes.get(key)
        if not queue:
            raise requests.ConnectionError(f"no route for {key}")
        canned = queue.pop(0) if len(queue) > 1 else queue[0]
        if canned["exc"] is not None:
            raise canned["exc"]

        if self.jar is not None:
            host = urlparse.urlparse(request.url).hostname
            for name, value in canned["set_cookies"].items():
                self.jar.set(name, value, domain=host, path="/")

        resp = requests.Response()
        resp.status_code = canned["status"]
        resp._content = canned["body"].encode("utf-8")
        resp._content_consumed = True
        resp.headers = CaseInsensitiveDict(canned["headers"])
        resp.encoding = "utf-8"
        resp.url = request.url
        resp.request = request
        resp.connection = self
        return resp

    def close(self) -> None:
        pass

    # -------------------- assertion helpers -------------------- #

    def requests_to(self, method: str, url: str) -> list[requests.PreparedRequest]:
        return [c for c in self.calls if c.method == method and c.url.split("?")[0] == url]


def form_body(request: requests.PreparedRequest) -> dict[str, str]:
    """Decode a url-encoded request body into a flat dict."""
    body = request.body or ""
    if isinstance(body, bytes):
        body = body.decode()
    return {k: v[-1] for k, v in urlparse.parse_qs(body, keep_blank_values=True).items()}


def json_body(request: requests.PreparedRequest) -> Any:
    body = request.body or b""
    if isinstance(body, bytes):
        body = body.decode()
    return json.loads(body)


@pytest.fixture
def cfg() -> ProviderConfig:
    return ProviderConfig(auth_base=AUTH_BASE, client_id="ownerapi")


@pytest.fixture
def adapter() -> ScriptedAdapter:
    return ScriptedAdapter()


@pytest.fixture
def session(adapter: ScriptedAdapter) -> LoginSession:
    sess = new_session()
    sess.mount("https://", adapter)
    adapter.jar = sess.cookies
    return sess
