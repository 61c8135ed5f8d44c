"""Exception taxonomy for scan, platform and persistence failures."""


class ScmSyncError(Exception):
    """Base exception for scmsync."""

    def __init__(self, code: str, message: str, details=None, status_code: int = 500):
        self.code = code
        self.message = message
        self.details = details
        self.status_code = status_code
        super().__init__(message)


class ValidationError(ScmSyncError):
    """A scan request body that does not match the request schema."""

    def __init__(self, message: str, details=None):
        super().__init__("VALIDATION_ERROR", message, details, status_code=422)


class NotFoundError(ScmSyncError):
    """Resource not found."""

    def __init__(self, resource: str, resource_id: str):
        super().__init__(
            "NOT_FOUND",
            f"{resource} '{resource_id}' not found",
            status_code=404,
        )


class ConfigurationError(ScmSyncError):
    """Unparseable repository URL, unknown tool type or missing credentials."""

    def __init__(self, message: str, details=None):
        super().__init__("CONFIGURATION_ERROR", message, details, status_code=400)


class DataProcessingError(ScmSyncError):
    """Normalization or persistence of fetched data failed."""

    def __init__(self, message: str, details=None):
        super().__init__("DATA_PROCESSING_ERROR", message, details, status_code=500)


class PlatformApiError(ScmSyncError):
    """A platform REST API call failed."""

    code = "PLATFORM_API_ERROR"

    def __init__(self, platform: str, message: str, http_status: int | None = None, details=None):
        self.platform = platform
        self.http_status = http_status
        super().__init__(self.code, f"[{platform}] {message}", details, status_code=502)


class PlatformAuthenticationError(PlatformApiError):
    """Credentials rejected by the platform (401/403)."""

    code = "PLATFORM_AUTHENTICATION_ERROR"


class RepositoryNotFoundError(PlatformApiError):
    """The platform does not know the repository or resource (404)."""

    code = "REPOSITORY_NOT_FOUND"


class TransientPlatformError(PlatformApiError):
    """Timeouts, transport failures and 5xx responses; safe to retry."""

    code = "PLATFORM_TRANSIENT_ERROR"

    def __init__(
        self,
        platform: str,
        message: str,
        http_status: int | None = None,
        retry_after: float | None = None,
    ):
        self.retry_after = retry_after
        super().__init__(platform, message, http_status)


class RateLimitedError(TransientPlatformError):
    """The platform reported its rate limit as exhausted."""

    code = "RATE_LIMIT_EXCEEDED"
