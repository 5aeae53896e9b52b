"""Custom exception hierarchy for the message vault.

Following error taxonomy: retryable, non-retryable, validation, storage.
"""


class MessageVaultError(Exception):
    """Base exception for all application errors."""

    pass


class RetryableError(MessageVaultError):
    """Errors that can be retried (disk hiccups, temporary failures)."""

    pass


class NonRetryableError(MessageVaultError):
    """Errors that should not be retried (validation, logic errors)."""

    pass


class ValidationError(NonRetryableError):
    """Data validation errors."""

    pass


class InvalidSizeFormatError(ValidationError):
    """Size configuration that is neither a byte count nor ``<N><unit>``."""

    def __init__(self, raw_value: object) -> None:
        self.raw_value = raw_value
        super().__init__(f"Invalid size format: {raw_value!r}")


class MediaTooLargeError(ValidationError):
    """Attachment exceeds the configured vault size limit."""

    def __init__(self, size_bytes: int, limit_bytes: int) -> None:
        """Initialize with the offending size and the active limit."""
        self.size_bytes = size_bytes
        self.limit_bytes = limit_bytes
        super().__init__(
            f"File too large: {size_bytes} bytes exceeds limit of {limit_bytes} bytes"
        )


class VaultNotInitializedError(NonRetryableError):
    """Media vault used before its directories and index were prepared."""

    pass


class StorageError(RetryableError):
    """Filesystem storage errors."""

    pass
