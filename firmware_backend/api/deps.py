# FILE: firmware_backend/api/deps.py

from fastapi import Request

from firmware_backend.services.queue_service import WorkQueue
from firmware_backend.services.storage_service import LocalBlobStore


def get_store(request: Request) -> LocalBlobStore:
    return request.app.state.store


def get_queue(request: Request) -> WorkQueue:
    return request.app.state.queue


def get_public_base_url(request: Request) -> str:
    return request.app.state.public_base_url
