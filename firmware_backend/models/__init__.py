from firmware_backend.models.project import Project
from firmware_backend.models.release import Release
from firmware_backend.models.processed_asset import ProcessedAsset
from firmware_backend.models.queued_task import QueuedTask

__all__ = [
    "Project", "Release", "ProcessedAsset", "QueuedTask",
]
