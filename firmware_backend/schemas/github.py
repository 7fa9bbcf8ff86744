# FILE: firmware_backend/schemas/github.py
from typing import Optional, List
from pydantic import BaseModel, ConfigDict, Field


class GitHubReleaseAsset(BaseModel):
    model_config = ConfigDict(extra="ignore")
    id: int
    name: str
    url: str = Field(..., description="API URL (needs Accept: application/octet-stream)")
    browser_download_url: str
    content_type: str = "application/octet-stream"
    size: Optional[int] = None


class GitHubRelease(BaseModel):
    model_config = ConfigDict(extra="ignore")
    tag_name: str
    name: Optional[str] = None
    assets: List[GitHubReleaseAsset] = Field(default_factory=list)
    html_url: Optional[str] = None
    published_at: Optional[str] = None


class GitHubRepository(BaseModel):
    model_config = ConfigDict(extra="ignore")
    full_name: str


class GitHubInstallation(BaseModel):
    model_config = ConfigDict(extra="ignore")
    id: int


class GitHubReleaseEvent(BaseModel):
    model_config = ConfigDict(extra="ignore")
    action: str
    release: Optional[GitHubRelease] = None
    repository: Optional[GitHubRepository] = None
    installation: Optional[GitHubInstallation] = None


class TaskAsset(BaseModel):
    name: str
    url: str
    api_url: str
    content_type: str = "application/octet-stream"


class IngestionTask(BaseModel):
    """One manifest (= one variant) of a release, queued for ingestion."""
    project_id: int
    project_slug: str
    version: str
    manifest_asset_id: int
    manifest_url: str
    manifest_api_url: str
    manifest_filename: str
    # full asset list of the release, so referenced files resolve without another API call
    assets: List[TaskAsset] = Field(default_factory=list)
    installation_id: Optional[int] = None


class WebhookResponse(BaseModel):
    message: str
    project: Optional[str] = None
    version: Optional[str] = None
    queued: List[str] = Field(default_factory=list)
    skipped: int = 0
    errors: List[str] = Field(default_factory=list)
