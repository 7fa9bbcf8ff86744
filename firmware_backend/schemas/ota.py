from typing import Optional
from pydantic import BaseModel


class FirmwareUpdateResponse(BaseModel):
    """
    One of:
      {error: false, update_available: false}
      {error: false, update_available: true, ota_url}
      {error: true, update_available: false, error_message}
    """
    error: bool = False
    update_available: bool = False
    ota_url: Optional[str] = None
    error_message: Optional[str] = None

    @classmethod
    def up_to_date(cls) -> "FirmwareUpdateResponse":
        return cls(error=False, update_available=False)

    @classmethod
    def available(cls, ota_url: str) -> "FirmwareUpdateResponse":
        return cls(error=False, update_available=True, ota_url=ota_url)

    @classmethod
    def failed(cls, message: str) -> "FirmwareUpdateResponse":
        return cls(error=True, update_available=False, error_message=message)
