"""Failure taxonomy of the scan engine.

Only the Discord adapter (``remote.py``) raises these from library
exceptions. Everything above it reasons in these terms.
"""


class ScanError(Exception):
    """Base class for scan engine failures."""


class ScanNotConfigured(ScanError):
    """The guild configuration lacks a channel or a sticker."""


class RateLimited(ScanError):
    """The remote service asked us to back off. ``retry_after`` may be unknown."""

    def __init__(self, retry_after: float | None = None, scope: str = "unknown"):
        super().__init__(f"Rate limited ({scope}), retry after {retry_after}s")
        self.retry_after = retry_after
        self.scope = scope


class FetchTransient(ScanError):
    """A history page could not be fetched this time."""


class ChannelUnavailable(ScanError):
    """The channel is gone or no longer readable. Retrying cannot help."""


class UnknownMember(ScanError):
    """The author is no longer a member of the guild."""

    def __init__(self, user_id: int):
        super().__init__(f"Unknown Member {user_id}")
        self.user_id = user_id


class GrantTransient(ScanError):
    """Resolving the member or adding the role failed for a retryable reason."""


class ReportGenerationError(ScanError):
    """The full report document could not be written."""
