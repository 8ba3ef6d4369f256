# __init__.py
"""
Public entry points for the provider login helpers.

Quick start
-----------
from tesla_login import login_full

# Prompts for device + passcode on the terminal when MFA is enabled
result = login_full("me@example.com", "hunter2")
result.code, result.code_verifier  # hand both to the token exchange

Bring your own device selector (e.g. a GUI or a test double):

flow = LoginFlow(authorize_url, select_device=my_selector)
code = flow.perform_login(username, password)
"""

from __future__ import annotations
import threading
from typing import Optional

from .config import ProviderConfig, DEFAULT_AUTH_BASE, DEFAULT_CLIENT_ID
from .auth import (
    Device,
    DeviceSelector,
    LoginFlow,
    LoginResult,
    LoginState,
    Step,
    build_authorize_url,
    login_full,
    new_pkce,
    new_state,
    # errors
    LoginFlowError,
    TransportError,
    UnexpectedStatusError,
    DecodeError,
    NoLocationError,
    NoDevicesError,
    NotApprovedError,
    SelectionCancelledError,
    EntropyError,
    CancelledError,
)
from .prompt import prompt_select_device
from .sessions import LoginSession, new_session


# --------------------- Optional: simple OO wrapper ---------------------- #

class TeslaLogin:
    """
    Minimal convenience wrapper if you prefer an object API.

    tl = TeslaLogin(select_device=my_selector)
    result = tl.login("me@example.com", "hunter2")
    """

    def __init__(
        self,
        *,
        config: Optional[ProviderConfig] = None,
        select_device: Optional[DeviceSelector] = None,
    ):
        self.config = config or ProviderConfig()
        self.select_device = select_device

    def login(
        self,
        username: str,
        password: str,
        *,
        cancel: Optional[threading.Event] = None,
    ) -> LoginResult:
        """Run a full login on a fresh session; returns code + PKCE verifier."""
        return login_full(
            username,
            password,
            select_device=self.select_device,
            config=self.config,
            cancel=cancel,
        )


# What we expose as public API
__all__ = [
    "TeslaLogin",
    "LoginFlow",
    "LoginResult",
    "LoginState",
    "LoginSession",
    "Device",
    "DeviceSelector",
    "ProviderConfig",
    "Step",
    "build_authorize_url",
    "login_full",
    "new_pkce",
    "new_session",
    "new_state",
    "prompt_select_device",
    "DEFAULT_AUTH_BASE",
    "DEFAULT_CLIENT_ID",
    "LoginFlowError",
    "TransportError",
    "UnexpectedStatusError",
    "DecodeError",
    "NoLocationError",
    "NoDevicesError",
    "NotApprovedError",
    "SelectionCancelledError",
    "EntropyError",
    "CancelledError",
]
