# FILE: firmware_backend/api/webhook.py
import json
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header, Request
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from firmware_backend.api.deps import get_queue
from firmware_backend.core import config
from firmware_backend.core.database import get_db
from firmware_backend.core.errors import AuthError, ValidationError
from firmware_backend.schemas.github import GitHubReleaseEvent, WebhookResponse
from firmware_backend.services.queue_service import WorkQueue
from firmware_backend.services.signature_service import verify_github_signature
from firmware_backend.services.sync_service import handle_release_event

logger = logging.getLogger("firmware-backend.webhook")

router = APIRouter(prefix="/webhook", tags=["webhook"])


@router.post("/github", response_model=WebhookResponse)
async def github_webhook(
    request: Request,
    x_hub_signature_256: Optional[str] = Header(None),
    x_github_event: Optional[str] = Header(None),
    db: AsyncSession = Depends(get_db),
    queue: WorkQueue = Depends(get_queue),
):
    """GitHub release webhook: verifies the signature and queues manifest ingestion."""
    body = await request.body()
    if not verify_github_signature(body, x_hub_signature_256, config.GITHUB_WEBHOOK_SECRET):
        raise AuthError("Invalid or missing signature")

    if x_github_event == "ping":
        return WebhookResponse(message="pong")

    try:
        payload = json.loads(body)
    except (UnicodeDecodeError, json.JSONDecodeError):
        raise ValidationError("Invalid JSON payload")

    try:
        event = GitHubReleaseEvent.model_validate(payload)
    except PydanticValidationError as e:
        raise ValidationError(f"Unexpected webhook payload: {e.errors()[:3]}")

    return await handle_release_event(db, event, queue)
