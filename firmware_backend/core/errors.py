# firmware_backend/core/errors.py


class FirmwareServiceError(Exception):
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(FirmwareServiceError):
    """Malformed identifiers, headers, payloads or version strings."""
    status_code = 400


class AuthError(FirmwareServiceError):
    """Bad webhook signature or failed credential issuance."""
    status_code = 401


class NotFoundError(FirmwareServiceError):
    status_code = 404


class UpstreamError(FirmwareServiceError):
    """GitHub API / asset download failure or unexpected upstream shape."""
    status_code = 502


class InternalError(FirmwareServiceError):
    status_code = 500
