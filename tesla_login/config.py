# config.py
"""
Configuration and fixed protocol constants for tesla_login.

This file defines ProviderConfig, a lightweight container for the SSO
provider's OAuth and MFA endpoints.  Defaults are read from environment
variables (a .env file is honoured), everything else is derived.

Environment variables
---------------------
TESLA_AUTH_BASE : str   # default "https://auth.tesla.com"
TESLA_CLIENT_ID : str   # default OAuth client ID, "ownerapi"
"""

from __future__ import annotations
import os
from dataclasses import dataclass
from dotenv import load_dotenv

# Load environment variables from a .env file if present
load_dotenv()

# Default fallbacks
DEFAULT_AUTH_BASE = os.getenv("TESLA_AUTH_BASE", "https://auth.tesla.com").strip().rstrip("/")
DEFAULT_CLIENT_ID = os.getenv("TESLA_CLIENT_ID", "ownerapi")

DEFAULT_SCOPES = ("openid", "email", "offline_access")

# The mobile-app oriented authorize endpoint only answers this client
USER_AGENT = "hackney/1.17.0"

# (connect, read) in seconds; read bounds the wait for response headers
CONNECT_TIMEOUT = 30
READ_TIMEOUT = 10
DEFAULT_TIMEOUT = (CONNECT_TIMEOUT, READ_TIMEOUT)

MFA_PASSCODE_LENGTH = 6


@dataclass(frozen=True)
class ProviderConfig:
    """
    Holds the endpoints used by the login flow.
    """

    auth_base: str = DEFAULT_AUTH_BASE
    client_id: str = DEFAULT_CLIENT_ID
    scopes: tuple = DEFAULT_SCOPES

    # -------------------- OAuth endpoints -------------------- #

    @property
    def authorize_url(self) -> str:
        """Full URL to the OAuth authorize endpoint (also serves the login form)."""
        return f"{self.auth_base}/oauth2/v3/authorize"

    @property
    def token_url(self) -> str:
        """Full URL to the OAuth token endpoint (used by the token-exchange caller)."""
        return f"{self.auth_base}/oauth2/v3/token"

    @property
    def redirect_uri(self) -> str:
        """Callback the provider redirects to with ?code=..."""
        return f"{self.auth_base}/void/callback"

    # -------------------- MFA endpoints ---------------------- #

    @property
    def mfa_factors_url(self) -> str:
        return f"{self.authorize_url}/mfa/factors"

    @property
    def mfa_verify_url(self) -> str:
        return f"{self.authorize_url}/mfa/verify"

    def with_auth_base(self, auth_base: str) -> "ProviderConfig":
        """Return a copy of this ProviderConfig pointed at another auth host."""
        return type(self)(
            auth_base=auth_base.rstrip("/"),
            client_id=self.client_id,
            scopes=self.scopes,
        )


__all__ = [
    "ProviderConfig",
    "DEFAULT_AUTH_BASE",
    "DEFAULT_CLIENT_ID",
    "DEFAULT_SCOPES",
    "DEFAULT_TIMEOUT",
    "MFA_PASSCODE_LENGTH",
    "USER_AGENT",
]
