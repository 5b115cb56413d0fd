"""
Google sign-in

Exchanges an OAuth authorization code for the user's verified email and
profile. Account linking lives in accounts.upsert_federated_user.
"""
import logging
from typing import Optional
from urllib.parse import urlencode

import httpx

from config import Settings
from errors import Unauthorized, UpstreamError

logger = logging.getLogger(__name__)

AUTHORIZE_URL = "https://accounts.google.com/o/oauth2/v2/auth"
TOKEN_URL = "https://oauth2.googleapis.com/token"
USERINFO_URL = "https://openidconnect.googleapis.com/v1/userinfo"


class GoogleProvider:
    def __init__(self, settings: Settings, transport: Optional[httpx.BaseTransport] = None):
        self.settings = settings
        self.transport = transport

    def authorization_url(self, state: str = "") -> str:
        params = {
            "client_id": self.settings.google_client_id,
            "redirect_uri": self.settings.google_redirect_uri,
            "response_type": "code",
            "scope": "openid email profile",
        }
        if state:
            params["state"] = state
        return f"{AUTHORIZE_URL}?{urlencode(params)}"

    def exchange_code(self, code: str) -> dict:
        """Return {"google_id", "email", "name"} for a verified account."""
        try:
            with httpx.Client(transport=self.transport, timeout=10) as client:
                token = client.post(TOKEN_URL, data={
                    "code": code,
                    "client_id": self.settings.google_client_id,
                    "client_secret": self.settings.google_client_secret,
                    "redirect_uri": self.settings.google_redirect_uri,
                    "grant_type": "authorization_code",
                })
                token.raise_for_status()
                access_token = token.json()["access_token"]
                info = client.get(USERINFO_URL, headers={"Authorization": f"Bearer {access_token}"})
                info.raise_for_status()
                profile = info.json()
        except httpx.HTTPStatusError as e:
            logger.warning("Google rejected code exchange: %s", e.response.status_code)
            raise Unauthorized("Google sign-in failed")
        except (httpx.HTTPError, KeyError, ValueError) as e:
            logger.exception("Google sign-in request failed")
            raise UpstreamError(f"Google sign-in failed: {e}")

        if not profile.get("email") or not profile.get("email_verified", False):
            raise Unauthorized("Google account has no verified email")
        return {
            "google_id": str(profile["sub"]),
            "email": profile["email"],
            "name": profile.get("name") or "",
        }
