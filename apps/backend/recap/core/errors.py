class AppError(Exception):
    """Base class for all application errors."""

    status_code = 500
    code = "internal_error"
    retryable = False

    def __init__(self, detail: str) -> None:
        super().__init__(detail)
        self.detail = detail


class InvalidRequestError(AppError):
    """Client sent a malformed or invalid request (400)."""

    status_code = 400
    code = "invalid_request"


class MissingArtifactError(InvalidRequestError):
    """No audio file or blob reference was supplied (400)."""

    code = "no_artifact_provided"


class AuthenticationError(AppError):
    """Client is not authenticated or token is invalid/expired (401)."""

    status_code = 401
    code = "unauthorized"


class ForbiddenError(AppError):
    """Client is authenticated but lacks permission to access the resource (403)."""

    status_code = 403
    code = "forbidden"


class NotFoundError(AppError):
    """Requested resource does not exist (404)."""

    status_code = 404
    code = "not_found"


class PayloadTooLargeError(AppError):
    """Request body or uploaded artifact exceeds the configured maximum (413)."""

    status_code = 413
    code = "payload_too_large"


class RateLimitError(AppError):
    """Client has exceeded rate limits (429)."""

    status_code = 429
    code = "rate_limit_exceeded"


class ConfigurationError(AppError):
    """Server misconfiguration (500)."""

    status_code = 500
    code = "configuration_error"


class ExternalServiceError(AppError):
    """Upstream service failed or returned an invalid response (502)."""

    status_code = 502
    code = "external_service_error"


class TranscriptionFailedError(ExternalServiceError):
    """The transcription job reached FAILED; nothing was persisted (502)."""

    code = "transcription_failed"


class StorageWriteFailedError(ExternalServiceError):
    """Object or record store rejected a read/write (502)."""

    code = "storage_write_failed"


class NotReadyError(AppError):
    """Service is temporarily unavailable (503)."""

    status_code = 503
    code = "not_ready"


class TranscriptionTimedOutError(AppError):
    """The transcription job did not finish before the poll deadline (504).

    The job keeps running upstream; submitting the same input again attaches to it.
    """

    status_code = 504
    code = "transcription_timed_out"
    retryable = True
