"""Fault kinds raised by the gateway and how each one is reported.

Every class carries a stable ``code``, the HTTP status the façade answers
with, and a fixed user-facing message. Provider error bodies are kept on
``detail`` for server-side logs only and never reach the client.
"""


class GatewayError(Exception):
    """Base class for every fault the façade knows how to report."""

    code = "INTERNAL_ERROR"
    status_code = 500
    user_message = "Internal server error. Please try again."

    def __init__(self, detail: str = "", *, user_message: str | None = None):
        super().__init__(detail or self.user_message)
        self.detail = detail
        if user_message is not None:
            self.user_message = user_message


# Input faults, raised before any external call


class ValidationError(GatewayError):
    code = "VALIDATION_ERROR"
    status_code = 400
    user_message = "Invalid request."

    @classmethod
    def missing(cls, fields: list[str]) -> "ValidationError":
        message = f"Missing required fields: {', '.join(fields)}"
        return cls(message, user_message=message)


class UnsupportedMimeType(GatewayError):
    code = "UNSUPPORTED_MIME_TYPE"
    status_code = 400

    def __init__(self, mime_type: str):
        message = f"Unsupported image type: {mime_type}. Must be JPEG, PNG, GIF, or WebP."
        super().__init__(message, user_message=message)
        self.mime_type = mime_type


class PayloadTooLarge(GatewayError):
    code = "PAYLOAD_TOO_LARGE"
    status_code = 413
    user_message = "Image is too large. Please upload an image smaller than 10MB."


# Spreadsheet faults


class SheetsError(GatewayError):
    """Any failure reported by the spreadsheet provider."""


class PermissionDenied(SheetsError):
    code = "PERMISSION_DENIED"
    status_code = 403
    user_message = "Unable to write to the connected sheet. Please check the admin configuration."


class SheetNotFound(SheetsError):
    code = "SHEET_NOT_FOUND"
    status_code = 404
    user_message = (
        "The configured Google Sheet could not be found. "
        "Please verify the Sheet ID in admin settings."
    )


class QuotaExceeded(SheetsError):
    code = "QUOTA_EXCEEDED"
    status_code = 429
    user_message = (
        "Google Sheets is temporarily unavailable. "
        "Your data has been saved locally and will sync when available."
    )


class SheetsOperationFailed(SheetsError):
    code = "SHEETS_OPERATION_FAILED"
    status_code = 500


# Vision faults


class RateLimited(GatewayError):
    code = "RATE_LIMITED"
    status_code = 429
    user_message = "Rate limited. Please wait a moment and try again."


class VisionServiceError(GatewayError):
    """Non-2xx from the vision provider; the upstream status is passed through."""

    code = "VISION_SERVICE_ERROR"
    status_code = 502
    user_message = "AI service error. Please try again."

    def __init__(self, detail: str = "", status_code: int | None = None):
        super().__init__(detail)
        if status_code is not None and 400 <= status_code <= 599:
            self.status_code = status_code


class ExtractionUnparseable(GatewayError):
    code = "EXTRACTION_UNPARSEABLE"
    status_code = 500
    user_message = (
        "Could not parse extraction results. "
        "The form may be unclear. Try re-uploading a clearer photo."
    )


# Infrastructure faults


class CredentialExchangeFailed(GatewayError):
    code = "CREDENTIAL_EXCHANGE_FAILED"
    status_code = 500


class UpstreamTimeout(GatewayError):
    code = "UPSTREAM_TIMEOUT"
    status_code = 504
    user_message = "The upstream service took too long to respond. Please try again."


class ServiceNotConfigured(GatewayError):
    code = "SERVICE_NOT_CONFIGURED"
    status_code = 500
    user_message = "The service is not fully configured. Please contact an administrator."
