# FILE: firmware_backend/schemas/manifest.py
from typing import Optional, List
from pydantic import BaseModel, ConfigDict, Field


# ESP Web Tools style manifest; unknown keys (new_install_prompt_erase, improv, ...) are kept

class ManifestPart(BaseModel):
    model_config = ConfigDict(extra="allow")
    path: str
    offset: int


class ManifestBuild(BaseModel):
    model_config = ConfigDict(extra="allow")
    chipFamily: Optional[str] = None
    parts: List[ManifestPart] = Field(default_factory=list)


class Manifest(BaseModel):
    model_config = ConfigDict(extra="allow")
    name: Optional[str] = None
    version: Optional[str] = None
    builds: List[ManifestBuild] = Field(default_factory=list)
