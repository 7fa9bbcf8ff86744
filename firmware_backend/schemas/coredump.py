from typing import Dict, List, Optional
from pydantic import BaseModel, Field


class CoredumpRequest(BaseModel):
    project: str
    variant: str
    version: str
    coredump: str = Field(..., description="Base64-encoded ESP-IDF ELF core dump")


class CrashInfo(BaseModel):
    exception_cause: Optional[str] = None
    pc: Optional[str] = None
    registers: Dict[str, str] = Field(default_factory=dict)


class CoredumpResponse(BaseModel):
    success: bool
    crash_info: Optional[CrashInfo] = None
    backtrace: Optional[List[str]] = None
    elf_download_url: Optional[str] = None
    error: Optional[str] = None
