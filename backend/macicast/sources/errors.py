"""
Source adapter error types.

ProviderAuthError is a configuration problem and aborts the whole job.
SourceUnavailableError and TranscodeFailure are per-item.
ProviderRateLimitError is retryable by the caller; nothing here retries it.
"""

from typing import Optional


class ProviderError(Exception):
    """Base exception for adapter and provider failures."""

    def __init__(self, message: str, provider: Optional[str] = None):
        self.message = message
        self.provider = provider
        super().__init__(message)


class ProviderAuthError(ProviderError):
    """Credentials are missing or rejected by the provider."""
    pass


class ProviderRateLimitError(ProviderError):
    """The provider throttled the request."""

    def __init__(
        self,
        message: str,
        provider: Optional[str] = None,
        retry_after: Optional[float] = None,
    ):
        self.retry_after = retry_after
        super().__init__(message, provider)


class SourceUnavailableError(ProviderError):
    """The referenced source (file, video, channel) does not exist or cannot be read."""

    def __init__(self, source_ref: str, reason: str = ""):
        self.source_ref = source_ref
        message = f"Source unavailable: {source_ref}"
        if reason:
            message += f" ({reason})"
        super().__init__(message)


class TranscodeFailure(ProviderError):
    """The local transcoder failed or produced incomplete output."""

    def __init__(
        self,
        source_ref: str,
        reason: str,
        exit_code: Optional[int] = None,
        stderr: Optional[str] = None,
    ):
        self.source_ref = source_ref
        self.exit_code = exit_code
        self.stderr = stderr
        message = f"Transcode failed for {source_ref}: {reason}"
        if exit_code is not None:
            message += f" (exit code: {exit_code})"
        super().__init__(message, provider="local")
