from __future__ import annotations

import base64
import hashlib
import logging
import re
import secrets
import threading
import urllib.parse as urlparse
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from http import HTTPStatus
from typing import Callable, Dict, List, Optional, Tuple

import requests
from bs4 import BeautifulSoup

from .config import ProviderConfig
from .sessions import LoginSession, new_session, redirects_disabled

logger = logging.getLogger(__name__)


# =========================
# Steps & flow states
# =========================
class Step(str, Enum):
    """The request (or callback) an error came from."""

    AUTHORIZE = "authorize"
    LOGIN = "login"
    LIST_DEVICES = "list_devices"
    SELECT_DEVICE = "select_device"
    VERIFY = "verify"
    COMMIT = "commit"


class LoginState(str, Enum):
    START = "start"
    FORM_SUBMITTED = "form_submitted"
    NO_MFA = "no_mfa"
    MFA_REQUIRED = "mfa_required"
    DEVICE_LISTED = "device_listed"
    VERIFIED = "verified"
    COMMITTED = "committed"
    CODE_EXTRACTED = "code_extracted"


# =========================
# Exceptions
# =========================
class LoginFlowError(RuntimeError):
    """Base class; ``step`` names where the flow stopped."""

    def __init__(self, message: str = "", *, step: Optional[Step] = None):
        super().__init__(message)
        self.message = message
        self.step = step

    def __str__(self) -> str:
        if self.step is None:
            return self.message
        return f"{self.step.value}: {self.message}"


class TransportError(LoginFlowError):
    pass


class UnexpectedStatusError(LoginFlowError):
    def __init__(self, status_code: int, *, step: Optional[Step] = None):
        super().__init__(f"unexpected status code {status_code}", step=step)
        self.status_code = status_code


class DecodeError(LoginFlowError):
    pass


class NoLocationError(DecodeError):
    pass


class NoDevicesError(LoginFlowError):
    pass


class NotApprovedError(LoginFlowError):
    pass


class SelectionCancelledError(LoginFlowError):
    pass


class EntropyError(LoginFlowError):
    pass


class CancelledError(LoginFlowError):
    pass


# =========================
# PKCE & state
# =========================
PKCE_VERIFIER_BYTES = 87
STATE_BYTES = 9


def _b64url(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).decode().rstrip("=")


def _random_bytes(n: int) -> bytes:
    try:
        raw = secrets.token_bytes(n)
    except (OSError, NotImplementedError) as e:
        raise EntropyError(f"random source failed: {e}", step=Step.AUTHORIZE) from e
    if len(raw) != n:
        raise EntropyError(f"short read from random source ({len(raw)}/{n})", step=Step.AUTHORIZE)
    return raw


def new_state() -> str:
    """Anti-CSRF ``state`` value: 9 random bytes, 12 base64url characters."""
    return _b64url(_random_bytes(STATE_BYTES))


def code_challenge_s256(verifier: str) -> str:
    digest = hashlib.sha256(verifier.encode("ascii")).digest()
    return _b64url(digest)


def new_pkce() -> Tuple[str, str]:
    """
    Return (verifier, challenge).

    87 random bytes encode to a 116 character verifier, inside RFC 7636's
    43-128 range.  The challenge is the S256 transform of that verifier.
    """
    verifier = _b64url(_random_bytes(PKCE_VERIFIER_BYTES))
    return verifier, code_challenge_s256(verifier)


def build_authorize_url(cfg: ProviderConfig, code_challenge: str, state: str) -> str:
    params = {
        "client_id": cfg.client_id,
        "redirect_uri": cfg.redirect_uri,
        "response_type": "code",
        "scope": " ".join(cfg.scopes),
        "state": state,
        "access_type": "offline",
        "code_challenge": code_challenge,
        "code_challenge_method": "S256",
    }
    return f"{cfg.authorize_url}?{urlparse.urlencode(params)}"


# =========================
# MFA devices
# =========================
_FRACTION = re.compile(r"\.([0-9]+)")


def _parse_time(value) -> Optional[datetime]:
    if value in (None, ""):
        return None
    if not isinstance(value, str):
        raise ValueError(f"timestamp is not a string: {value!r}")
    # before 3.11 fromisoformat() takes neither "Z" nor fractions other than 3 or 6 digits
    value = _FRACTION.sub(lambda m: "." + m.group(1)[:6].ljust(6, "0"), value.replace("Z", "+00:00"), count=1)
    return datetime.fromisoformat(value)


@dataclass(frozen=True)
class Device:
    """One enrolled MFA factor, as listed for a transaction."""

    id: str
    name: str = ""
    factor_type: str = ""
    factor_provider: str = ""
    security_level: int = 0
    activated_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    dispatch_required: bool = False

    @classmethod
    def from_json(cls, raw: Dict) -> "Device":
        """Build from the provider's camelCase JSON. Raises ValueError on bad input."""
        if not isinstance(raw, dict):
            raise ValueError(f"device entry is not an object: {raw!r}")
        device_id = raw.get("id")
        if not device_id:
            raise ValueError("device entry has no id")
        return cls(
            id=str(device_id),
            name=raw.get("name") or "",
            factor_type=raw.get("factorType") or "",
            factor_provider=raw.get("factorProvider") or "",
            security_level=int(raw.get("securityLevel") or 0),
            activated_at=_parse_time(raw.get("activatedAt")),
            updated_at=_parse_time(raw.get("updatedAt")),
            dispatch_required=bool(raw.get("dispatchRequired", False)),
        )


# Called as select_device(devices, cancel=event); returns (device, passcode) or raises.
DeviceSelector = Callable[..., Tuple[Device, str]]


# =========================
# HTTP helpers
# =========================
def _check_cancel(cancel: Optional[threading.Event], step: Step) -> None:
    if cancel is not None and cancel.is_set():
        raise CancelledError("login cancelled", step=step)


def _strip_query(url: Optional[str]) -> Optional[str]:
    # redirect targets carry the authorization code in the query
    return url.split("?")[0] if url else url


def _send(
    sess: requests.Session,
    method: str,
    url: str,
    *,
    step: Step,
    cancel: Optional[threading.Event] = None,
    **kwargs,
) -> requests.Response:
    _check_cancel(cancel, step)
    try:
        r = sess.request(method, url, **kwargs)
    except requests.RequestException as e:
        raise TransportError(f"{method} {url}: {e}", step=step) from e
    logger.debug(
        "%s %s -> %s Location=%s", method, _strip_query(url), r.status_code, _strip_query(r.headers.get("Location"))
    )
    return r


def _json(r: requests.Response, step: Step):
    try:
        return r.json()
    except ValueError as e:
        raise DecodeError(f"json decode (status {r.status_code}): {e}", step=step) from e


def _parse_hidden_fields_from_html(html: str) -> Dict[str, str]:
    """name -> value for every hidden input; a repeated name keeps the last value."""
    soup = BeautifulSoup(html, "html.parser")
    data: Dict[str, str] = {}
    for inp in soup.select("input[type=hidden]"):
        name = inp.get("name")
        val = inp.get("value")
        if not name or val is None:
            continue
        data[name] = val
    return data


def code_from_response(r: requests.Response, *, step: Step) -> str:
    """Pull ``code`` out of a redirect's Location header."""
    loc = r.headers.get("Location")
    if not loc:
        raise NoLocationError(f"no Location header on {r.status_code} response", step=step)
    try:
        target = urlparse.urlparse(urlparse.urljoin(r.url or "", loc))
    except ValueError as e:
        raise NoLocationError(f"unparsable Location {loc!r}: {e}", step=step) from e
    code = (urlparse.parse_qs(target.query).get("code") or [""])[0]
    if not code:
        raise NoLocationError("redirect Location carries no code", step=step)
    return code


# =========================
# Login & MFA steps
# =========================
def submit_login_form(
    sess: requests.Session,
    authorize_url: str,
    username: str,
    password: str,
    *,
    cancel: Optional[threading.Event] = None,
) -> Tuple[requests.Response, Dict[str, str]]:
    """
    GET the authorize page, echo back its hidden fields with our
    credentials, and POST them to the same URL without following redirects.

    Returns (response, submitted_form).  200 means MFA is required,
    302 means the code is already in the redirect.
    """
    r = _send(sess, "GET", authorize_url, step=Step.LOGIN, cancel=cancel)
    if r.status_code != HTTPStatus.OK:
        raise UnexpectedStatusError(r.status_code, step=Step.LOGIN)

    form = _parse_hidden_fields_from_html(r.text)
    logger.debug("login form hidden fields: %s", sorted(form))
    form["identity"] = username
    form["credential"] = password

    rp = _send(
        sess,
        "POST",
        authorize_url,
        step=Step.LOGIN,
        cancel=cancel,
        data=form,
        allow_redirects=False,
    )
    return rp, form


def classify_login_response(r: requests.Response) -> LoginState:
    """Map the credential POST's status to the next state of the flow."""
    if r.status_code == HTTPStatus.FOUND:
        return LoginState.NO_MFA
    if r.status_code == HTTPStatus.OK:
        return LoginState.MFA_REQUIRED
    raise UnexpectedStatusError(r.status_code, step=Step.LOGIN)


def list_devices(
    sess: requests.Session,
    cfg: ProviderConfig,
    transaction_id: str,
    *,
    cancel: Optional[threading.Event] = None,
) -> List[Device]:
    """
    GET the MFA factors enrolled for this transaction.
    An empty list is returned as-is; the caller decides what that means.
    """
    r = _send(
        sess,
        "GET",
        cfg.mfa_factors_url,
        step=Step.LIST_DEVICES,
        cancel=cancel,
        params={"transaction_id": transaction_id},
        headers={"Accept": "application/json"},
    )
    if r.status_code != HTTPStatus.OK:
        raise UnexpectedStatusError(r.status_code, step=Step.LIST_DEVICES)

    payload = _json(r, Step.LIST_DEVICES)
    if not isinstance(payload, dict):
        raise DecodeError("factors response is not an object", step=Step.LIST_DEVICES)
    entries = payload.get("data") or []
    if not isinstance(entries, list):
        raise DecodeError("factors response 'data' is not a list", step=Step.LIST_DEVICES)
    try:
        return [Device.from_json(e) for e in entries]
    except (TypeError, ValueError) as e:
        raise DecodeError(f"bad device entry: {e}", step=Step.LIST_DEVICES) from e


def verify_passcode(
    sess: requests.Session,
    cfg: ProviderConfig,
    transaction_id: str,
    device: Device,
    passcode: str,
    *,
    cancel: Optional[threading.Event] = None,
) -> None:
    """
    Submit one passcode for one device.  A rejection raises NotApprovedError
    straight away; re-prompting is the caller's business.
    """
    body = {
        "transaction_id": transaction_id,
        "factor_id": device.id,
        "passcode": passcode,
    }
    r = _send(
        sess,
        "POST",
        cfg.mfa_verify_url,
        step=Step.VERIFY,
        cancel=cancel,
        json=body,
        headers={"Accept": "application/json"},
    )
    payload = _json(r, Step.VERIFY)
    if not isinstance(payload, dict):
        raise DecodeError("verify response is not an object", step=Step.VERIFY)
    data = payload.get("data") or {}
    if not isinstance(data, dict):
        raise DecodeError("verify response 'data' is not an object", step=Step.VERIFY)
    if data.get("approved") is not True:
        raise NotApprovedError(f"passcode for device {device.name or device.id!r} not approved", step=Step.VERIFY)


def commit_transaction(
    sess: requests.Session,
    authorize_url: str,
    transaction_id: str,
    *,
    cancel: Optional[threading.Event] = None,
) -> str:
    """POST the verified transaction back to the authorize URL; returns the code."""
    r = _send(
        sess,
        "POST",
        authorize_url,
        step=Step.COMMIT,
        cancel=cancel,
        data={"transaction_id": transaction_id},
        allow_redirects=False,
    )
    if r.status_code != HTTPStatus.FOUND:
        raise UnexpectedStatusError(r.status_code, step=Step.COMMIT)
    return code_from_response(r, step=Step.COMMIT)


# =========================
# Orchestrator
# =========================
class LoginFlow:
    """
    Drives one provider login from credentials to authorization code.

    Every call to ``perform_login`` uses its own LoginSession, closed when the
    flow ends, unless one was passed in, in which case that session (and its cookie jar) is reused and
    its redirect policy is restored afterwards.
    """

    def __init__(
        self,
        authorize_url: str,
        select_device: DeviceSelector,
        *,
        config: Optional[ProviderConfig] = None,
        session: Optional[LoginSession] = None,
        cancel: Optional[threading.Event] = None,
    ):
        self.authorize_url = authorize_url
        self.select_device = select_device
        self.config = config or ProviderConfig()
        self.session = session
        self.cancel = cancel

    def _enter(self, state: LoginState) -> None:
        logger.debug("login state -> %s", state.value)

    def perform_login(self, username: str, password: str) -> str:
        if not username or not password:
            raise ValueError("username and password must be non-empty")

        self._enter(LoginState.START)
        if self.session is not None:
            with redirects_disabled(self.session):
                return self._run(self.session, username, password)
        # a session we made ourselves is closed with the flow
        with new_session() as sess, redirects_disabled(sess):
            return self._run(sess, username, password)

    def _run(self, sess: LoginSession, username: str, password: str) -> str:
        cancel = self.cancel

        r, form = submit_login_form(sess, self.authorize_url, username, password, cancel=cancel)
        self._enter(LoginState.FORM_SUBMITTED)

        state = classify_login_response(r)
        self._enter(state)
        if state is LoginState.NO_MFA:
            code = code_from_response(r, step=Step.LOGIN)
            self._enter(LoginState.CODE_EXTRACTED)
            return code

        transaction_id = form.get("transaction_id", "")
        devices = list_devices(sess, self.config, transaction_id, cancel=cancel)
        if not devices:
            raise NoDevicesError("no MFA devices enrolled", step=Step.LIST_DEVICES)
        self._enter(LoginState.DEVICE_LISTED)

        device, passcode = self._select(devices)

        verify_passcode(sess, self.config, transaction_id, device, passcode, cancel=cancel)
        self._enter(LoginState.VERIFIED)

        code = commit_transaction(sess, self.authorize_url, transaction_id, cancel=cancel)
        self._enter(LoginState.COMMITTED)
        self._enter(LoginState.CODE_EXTRACTED)
        logger.debug("authorization code: %s…", code[:4])
        return code

    def _select(self, devices: List[Device]) -> Tuple[Device, str]:
        _check_cancel(self.cancel, Step.SELECT_DEVICE)
        try:
            device, passcode = self.select_device(devices, cancel=self.cancel)
        except CancelledError as e:
            if e.step is None:
                e.step = Step.SELECT_DEVICE
            raise
        except Exception as e:
            # a selector giving up because the flow was cancelled is a cancellation
            self._raise_if_cancelled(e)
            if isinstance(e, LoginFlowError):
                if e.step is None:
                    e.step = Step.SELECT_DEVICE
                raise
            raise SelectionCancelledError(f"device selection failed: {e}", step=Step.SELECT_DEVICE) from e
        # the callback may block on the user; honour a cancel that came in meanwhile
        _check_cancel(self.cancel, Step.SELECT_DEVICE)
        return device, passcode

    def _raise_if_cancelled(self, cause: BaseException) -> None:
        if self.cancel is not None and self.cancel.is_set():
            raise CancelledError("login cancelled", step=Step.SELECT_DEVICE) from cause


# =========================
# Full login (creds + MFA)
# =========================
@dataclass(frozen=True)
class LoginResult:
    """Everything the token-exchange step needs."""

    code: str
    code_verifier: str
    state: str
    redirect_uri: str


def login_full(
    username: str,
    password: str,
    *,
    select_device: Optional[DeviceSelector] = None,
    config: Optional[ProviderConfig] = None,
    session: Optional[LoginSession] = None,
    cancel: Optional[threading.Event] = None,
) -> LoginResult:
    """
    Browser-equivalent login:
      - fresh state + PKCE pair
      - authorize URL (offline access, S256)
      - login form, MFA device selection + verify, commit
    Returns the authorization code together with the PKCE verifier.
    """
    cfg = config or ProviderConfig()
    if select_device is None:
        from .prompt import prompt_select_device

        select_device = prompt_select_device

    state = new_state()
    verifier, challenge = new_pkce()
    authorize_url = build_authorize_url(cfg, challenge, state)

    flow = LoginFlow(authorize_url, select_device, config=cfg, session=session, cancel=cancel)
    code = flow.perform_login(username, password)
    return LoginResult(code=code, code_verifier=verifier, state=state, redirect_uri=cfg.redirect_uri)
