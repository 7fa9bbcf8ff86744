# FILE: firmware_backend/services/github_app_service.py
import logging
import time
from typing import Optional

import httpx
import jwt
from cryptography.hazmat.primitives import serialization

from firmware_backend.core.config import GITHUB_API_BASE, USER_AGENT, FETCH_TIMEOUT_SECONDS
from firmware_backend.core.errors import AuthError
from firmware_backend.services.pem_codec import pkcs1_to_pkcs8

logger = logging.getLogger("firmware-backend.github-app")

JWT_ALGORITHM = "RS256"
JWT_CLOCK_SKEW_SECONDS = 60
JWT_LIFETIME_SECONDS = 600  # GitHub caps app JWTs at 10 minutes


def load_private_key(private_key: str):
    pkcs8 = pkcs1_to_pkcs8(private_key)
    try:
        return serialization.load_pem_private_key(pkcs8.encode("ascii"), password=None)
    except ValueError as e:
        raise AuthError(f"Invalid GitHub App private key: {e}")


def generate_app_jwt(app_id: str, private_key: str, now: Optional[int] = None) -> str:
    """Signed app assertion; iat is backdated a minute for clock drift."""
    now = int(time.time()) if now is None else now
    payload = {
        "iat": now - JWT_CLOCK_SKEW_SECONDS,
        "exp": now + JWT_LIFETIME_SECONDS,
        "iss": str(app_id),
    }
    return jwt.encode(payload, load_private_key(private_key), algorithm=JWT_ALGORITHM)


async def get_installation_token(
    app_id: str,
    private_key: str,
    installation_id: int,
    client: Optional[httpx.AsyncClient] = None,
) -> str:
    """
    Exchange the app JWT for an installation access token.
    The token is short-lived (~1 hour) and scoped to the installation.
    """
    app_jwt = generate_app_jwt(app_id, private_key)
    url = f"{GITHUB_API_BASE}/app/installations/{installation_id}/access_tokens"
    headers = {
        "Authorization": f"Bearer {app_jwt}",
        "Accept": "application/vnd.github+json",
        "User-Agent": USER_AGENT,
    }

    try:
        if client is None:
            async with httpx.AsyncClient() as own_client:
                resp = await own_client.post(url, headers=headers, timeout=FETCH_TIMEOUT_SECONDS)
        else:
            resp = await client.post(url, headers=headers, timeout=FETCH_TIMEOUT_SECONDS)
    except httpx.HTTPError as e:
        raise AuthError(f"Failed to get installation token: {e}")

    if not resp.is_success:
        raise AuthError(f"Failed to get installation token: {resp.status_code} {resp.text[:200]}")

    try:
        data = resp.json()
    except ValueError:
        data = None
    token = data.get("token") if isinstance(data, dict) else None
    if not token or not isinstance(token, str):
        raise AuthError("Failed to get installation token: response has no token")

    logger.info(f"Issued installation token for installation {installation_id}")
    return token
