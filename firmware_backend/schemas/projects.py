from typing import List
from pydantic import BaseModel, ConfigDict


class ProjectItem(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    slug: str
    repository_slug: str
    name: str


class VariantInfo(BaseModel):
    variant: str
    latest_version: str
    release_count: int


class ProjectDetailResponse(ProjectItem):
    variants: List[VariantInfo]


class VersionInfo(BaseModel):
    version: str
    created_at: str


class VersionListResponse(BaseModel):
    project: str
    variant: str
    versions: List[VersionInfo]
