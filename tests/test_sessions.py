"""Tests for LoginSession defaults and scoped redirect interception."""

from __future__ import annotations

import pytest

from tesla_login.config import DEFAULT_TIMEOUT, USER_AGENT
from tesla_login.sessions import LoginSession, new_session, redirects_disabled

from conftest import AUTH_BASE


START = f"{AUTH_BASE}/start"
TARGET = f"{AUTH_BASE}/target"


@pytest.fixture
def redirecting(adapter):
    adapter.add("GET", START, status=302, headers={"Location": TARGET})
    adapter.add("GET", TARGET, status=200, text="landed")
    return adapter


class TestLoginSession:
    def test_default_timeout_applied(self, session, adapter) -> None:
        adapter.add("GET", TARGET, text="ok")
        session.get(TARGET)
        assert adapter.timeouts[-1] == DEFAULT_TIMEOUT

    def test_explicit_timeout_wins(self, session, adapter) -> None:
        adapter.add("GET", TARGET, text="ok")
        session.get(TARGET, timeout=3)
        assert adapter.timeouts[-1] == 3

    def test_user_agent_header(self, session, adapter) -> None:
        adapter.add("GET", TARGET, text="ok")
        session.get(TARGET)
        assert adapter.calls[-1].headers["User-Agent"] == USER_AGENT

    def test_each_session_has_its_own_jar(self) -> None:
        a, b = new_session(), new_session()
        a.cookies.set("sid", "1")
        assert "sid" not in b.cookies

    def test_follows_redirects_by_default(self, session, redirecting) -> None:
        r = session.get(START)
        assert r.status_code == 200
        assert r.text == "landed"


class TestRedirectsDisabled:
    def test_returns_raw_redirect(self, session, redirecting) -> None:
        with redirects_disabled(session):
            r = session.get(START)
        assert r.status_code == 302
        assert r.headers["Location"] == TARGET
        assert len(redirecting.requests_to("GET", TARGET)) == 0

    def test_overrides_explicit_allow_redirects(self, session, redirecting) -> None:
        with redirects_disabled(session):
            r = session.get(START, allow_redirects=True)
        assert r.status_code == 302

    def test_restored_after_block(self, session, redirecting) -> None:
        with redirects_disabled(session):
            assert session.follow_redirects is False
        assert session.follow_redirects is True
        assert session.get(START).status_code == 200

    def test_restored_on_error(self, session) -> None:
        with pytest.raises(RuntimeError):
            with redirects_disabled(session):
                raise RuntimeError("boom")
        assert session.follow_redirects is True

    def test_restores_previous_value_not_default(self) -> None:
        sess = LoginSession()
        sess.follow_redirects = False
        with redirects_disabled(sess):
            pass
        assert sess.follow_redirects is False
