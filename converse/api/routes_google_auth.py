import logging

import httpx
from fastapi import APIRouter, HTTPException
from pydantic import BaseModel

from ..config import GoogleAuthConfig, get_config, update_config
from ..google_token import DRIVE_SCOPE, GOOGLE_TOKEN_URL, expiry_from_now
from ..notifications import get_sink

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth/google", tags=["google-auth"])

GOOGLE_USERINFO_URL = "https://www.googleapis.com/oauth2/v3/userinfo"


class AuthCodeRequest(BaseModel):
    code: str
    redirect_uri: str


def _sign_in_failed(detail: str) -> HTTPException:
    get_sink().notify(f"Google sign-in failed: {detail}", "error")
    return HTTPException(status_code=400, detail=detail)


@router.post("/exchange")
async def exchange_auth_code(req: AuthCodeRequest):
    """Exchange an authorization code for Drive tokens and store them in config."""
    config = get_config()
    ga = config.google_auth
    if not ga.client_id or not ga.client_secret:
        raise _sign_in_failed("Google client credentials are not configured.")

    async with httpx.AsyncClient() as client:
        token_resp = await client.post(
            GOOGLE_TOKEN_URL,
            data={
                "code": req.code,
                "client_id": ga.client_id,
                "client_secret": ga.client_secret,
                "redirect_uri": req.redirect_uri,
                "grant_type": "authorization_code",
            },
        )

    if token_resp.status_code != 200:
        logger.error("Google token exchange HTTP %s: %s", token_resp.status_code, token_resp.text[:500])
        raise _sign_in_failed("Token exchange failed.")

    tokens = token_resp.json()
    access_token = tokens["access_token"]

    async with httpx.AsyncClient() as client:
        userinfo_resp = await client.get(
            GOOGLE_USERINFO_URL,
            headers={"Authorization": f"Bearer {access_token}"},
        )

    if userinfo_resp.status_code != 200:
        raise _sign_in_failed("Failed to fetch user info.")

    userinfo = userinfo_resp.json()

    ga.access_token = access_token
    ga.refresh_token = tokens.get("refresh_token", "") or ga.refresh_token
    ga.token_expiry = expiry_from_now(tokens.get("expires_in", 3600))
    ga.email = userinfo.get("email", "")
    ga.name = userinfo.get("name", "")
    ga.logged_in = True
    update_config(config)
    logger.info("Signed in to Google as %s", ga.email)

    return {"email": ga.email, "name": ga.name, "scope": DRIVE_SCOPE}


@router.get("/status")
async def auth_status():
    ga = get_config().google_auth
    if not ga.logged_in:
        return {"logged_in": False}
    return {"logged_in": True, "email": ga.email, "name": ga.name}


@router.post("/logout")
async def logout():
    """Forget the Google session; client credentials are kept."""
    config = get_config()
    ga = config.google_auth
    config.google_auth = GoogleAuthConfig(client_id=ga.client_id, client_secret=ga.client_secret)
    update_config(config)
    return {"status": "ok"}
