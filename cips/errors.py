"""Error types."""


class CipsError(Exception):
    """Base error for CIPS."""


class StoreNotConfiguredError(CipsError):
    """Account has no usable relational store."""


class PlatformApiError(CipsError):
    """Messaging platform answered with a non-zero code or a bad status."""

    def __init__(self, message: str, code: int | None = None, status_code: int | None = None):
        super().__init__(message)
        self.code = code
        self.status_code = status_code


class PlatformAuthError(PlatformApiError):
    """Credentials were rejected."""


class ResourceTooLargeError(CipsError):
    """Attachment exceeds the configured byte limit."""

    def __init__(self, size: int, limit: int):
        super().__init__(f"size {size} exceeds limit {limit}")
        self.size = size
        self.limit = limit


class MissingCredentialError(CipsError):
    """A capability needs a credential that is not configured."""


class ExtractionError(CipsError):
    """An extraction capability failed."""


class UnknownAccountError(CipsError):
    """No enabled account with that id."""
