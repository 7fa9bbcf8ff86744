# FILE: firmware_backend/services/github_service.py
import logging
import os
from typing import Optional

import httpx

from firmware_backend.core.config import USER_AGENT, FETCH_TIMEOUT_SECONDS
from firmware_backend.core.errors import UpstreamError

logger = logging.getLogger("firmware-backend.github")

# Configuration limits
MAX_ASSET_SIZE = int(os.environ.get("MAX_ASSET_SIZE", str(64 * 1024 * 1024)))  # 64MB


def _headers(token: Optional[str], binary_api: bool) -> dict:
    headers = {"User-Agent": USER_AGENT}
    if binary_api:
        # API asset URLs return JSON metadata unless octet-stream is requested
        headers["Accept"] = "application/octet-stream"
    if token:
        headers["Authorization"] = f"Bearer {token}"
    return headers


async def _download(client: httpx.AsyncClient, url: str, headers: dict, timeout: float) -> bytes:
    async with client.stream("GET", url, headers=headers, timeout=timeout) as resp:
        if not resp.is_success:
            raise UpstreamError(f"Failed to fetch {url}: {resp.status_code} {resp.reason_phrase}")

        content_length = int(resp.headers.get("content-length") or 0)
        if content_length > MAX_ASSET_SIZE:
            raise UpstreamError(f"Asset too large: {content_length / 1024 / 1024:.1f}MB (max {MAX_ASSET_SIZE / 1024 / 1024}MB)")

        chunks = []
        total_size = 0
        async for chunk in resp.aiter_bytes():
            total_size += len(chunk)
            if total_size > MAX_ASSET_SIZE:
                raise UpstreamError(f"Asset exceeds max size of {MAX_ASSET_SIZE / 1024 / 1024}MB")
            chunks.append(chunk)

    return b"".join(chunks)


async def fetch_release_asset(
    download_url: str,
    api_url: Optional[str] = None,
    token: Optional[str] = None,
    client: Optional[httpx.AsyncClient] = None,
    timeout: float = FETCH_TIMEOUT_SECONDS,
) -> bytes:
    """
    Download a release asset.

    With an installation token the API URL is used (works for private repos),
    otherwise the public browser_download_url.
    """
    use_api = bool(token and api_url)
    url = api_url if use_api else download_url
    headers = _headers(token if use_api else None, binary_api=use_api)

    try:
        if client is None:
            async with httpx.AsyncClient(follow_redirects=True) as own_client:
                data = await _download(own_client, url, headers, timeout)
        else:
            data = await _download(client, url, headers, timeout)
    except httpx.HTTPError as e:
        raise UpstreamError(f"Failed to fetch {url}: {e}")

    logger.debug(f"Fetched {url} ({len(data)} bytes)")
    return data
