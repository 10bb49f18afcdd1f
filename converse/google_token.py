"""Google OAuth access-token lookup with refresh, for Drive uploads."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone

import httpx

from .config import GoogleAuthConfig, get_config, update_config

logger = logging.getLogger(__name__)

GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
DRIVE_SCOPE = "https://www.googleapis.com/auth/drive.file"

_EXPIRY_MARGIN = timedelta(minutes=5)


class GoogleAuthError(Exception):
    """Raised when no Google session is available or a refresh fails."""
    pass


def expiry_from_now(expires_in: int) -> str:
    return (datetime.now(timezone.utc) + timedelta(seconds=expires_in)).isoformat()


async def get_valid_access_token() -> str:
    ga = get_config().google_auth
    if not ga.logged_in or not ga.access_token:
        raise GoogleAuthError("User not signed in to Google Drive.")

    if ga.token_expiry:
        try:
            expiry = datetime.fromisoformat(ga.token_expiry)
        except ValueError:
            expiry = None
        if expiry is not None:
            if expiry.tzinfo is None:
                expiry = expiry.replace(tzinfo=timezone.utc)
            if datetime.now(timezone.utc) >= expiry - _EXPIRY_MARGIN:
                await _refresh_token()

    return get_config().google_auth.access_token


async def _refresh_token() -> None:
    config = get_config()
    ga = config.google_auth
    if not ga.refresh_token:
        raise GoogleAuthError("Google session expired. Please sign in again.")

    async with httpx.AsyncClient() as client:
        resp = await client.post(
            GOOGLE_TOKEN_URL,
            data={
                "client_id": ga.client_id,
                "client_secret": ga.client_secret,
                "refresh_token": ga.refresh_token,
                "grant_type": "refresh_token",
            },
        )

    if resp.status_code != 200:
        config.google_auth = GoogleAuthConfig(
            client_id=ga.client_id, client_secret=ga.client_secret
        )
        update_config(config)
        raise GoogleAuthError("Google token refresh failed. Please sign in again.")

    tokens = resp.json()
    config.google_auth.access_token = tokens["access_token"]
    config.google_auth.token_expiry = expiry_from_now(tokens.get("expires_in", 3600))
    update_config(config)
    logger.info("Google access token refreshed")
