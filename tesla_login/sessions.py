# sessions.py
"""
HTTP session utilities for tesla_login.

One LoginSession is created per login attempt and owns exactly one cookie
jar for its whole life; the provider ties the in-progress transaction to
those cookies, so every request of the flow must go through the same
session.

Redirect interception
---------------------
The authorization code only ever appears in a 302 ``Location`` header, so
the flow needs the raw 3xx response.  ``redirects_disabled`` switches the
session's redirect policy off for a block and restores the previous value
on every exit path, leaving the session usable for ordinary requests
afterwards.
"""

from __future__ import annotations
import logging
from contextlib import contextmanager
from typing import Iterator, Tuple

import requests

from .config import DEFAULT_TIMEOUT, USER_AGENT

logger = logging.getLogger(__name__)


class LoginSession(requests.Session):
    """
    requests.Session with a default (connect, read) timeout and a
    session-wide redirect policy.

    ``follow_redirects`` overrides whatever ``allow_redirects`` a caller
    passes when it is False; when True, per-request values apply as usual.
    """

    def __init__(
        self,
        *,
        timeout: Tuple[float, float] = DEFAULT_TIMEOUT,
        user_agent: str = USER_AGENT,
    ):
        super().__init__()
        self.timeout = timeout
        self.follow_redirects = True
        self.headers["User-Agent"] = user_agent

    def request(self, method, url, **kwargs):
        if kwargs.get("timeout") is None:
            kwargs["timeout"] = self.timeout
        return super().request(method, url, **kwargs)

    def send(self, request, **kwargs):
        if not self.follow_redirects:
            kwargs["allow_redirects"] = False
        return super().send(request, **kwargs)


def new_session(
    *,
    timeout: Tuple[float, float] = DEFAULT_TIMEOUT,
    user_agent: str = USER_AGENT,
) -> LoginSession:
    """Create a fresh session with an empty cookie jar."""
    return LoginSession(timeout=timeout, user_agent=user_agent)


@contextmanager
def redirects_disabled(sess: LoginSession) -> Iterator[LoginSession]:
    """
    Return 3xx responses as-is for the duration of the block.
    The previous policy is restored even if the block raises.
    """
    previous = sess.follow_redirects
    sess.follow_redirects = False
    logger.debug("redirect following disabled (was %s)", previous)
    try:
        yield sess
    finally:
        sess.follow_redirects = previous
        logger.debug("redirect following restored to %s", previous)


__all__ = [
    "LoginSession",
    "new_session",
    "redirects_disabled",
]
