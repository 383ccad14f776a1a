"""RivalWatch exception hierarchy.

All exceptions inherit from RivalWatchError and carry a three-part structure:
message (what happened), detail (technical context), suggestion (what to do next).
"""


class RivalWatchError(Exception):
    """Base exception for all RivalWatch errors."""

    def __init__(
        self,
        message: str,
        detail: str | None = None,
        suggestion: str | None = None,
    ) -> None:
        self.message = message
        self.detail = detail
        self.suggestion = suggestion
        super().__init__(message)

    def __str__(self) -> str:
        parts = [self.message]
        if self.detail:
            parts.append(f"Detail: {self.detail}")
        if self.suggestion:
            parts.append(f"Suggestion: {self.suggestion}")
        return " | ".join(parts)


class DatabaseError(RivalWatchError):
    """Error related to database operations."""

    def __init__(
        self,
        message: str = "A database error occurred",
        detail: str | None = None,
        suggestion: str | None = "Check database connectivity and RIVALWATCH_DATABASE_URL",
    ) -> None:
        super().__init__(message, detail, suggestion)


class CompetitorNotFoundError(RivalWatchError):
    """Raised when a competitor cannot be found for the given user."""

    def __init__(
        self,
        message: str = "Competitor not found",
        detail: str | None = None,
        suggestion: str | None = "Check the competitor id and owning user",
    ) -> None:
        super().__init__(message, detail, suggestion)


class JobNotFoundError(RivalWatchError):
    """Raised when a monitoring job cannot be found."""

    def __init__(
        self,
        message: str = "Monitoring job not found",
        detail: str | None = None,
        suggestion: str | None = "Use the monitoring status view to list jobs",
    ) -> None:
        super().__init__(message, detail, suggestion)


class UnsupportedPlatformError(RivalWatchError):
    """Raised when a job names a platform no source monitor handles."""

    def __init__(
        self,
        message: str = "Unsupported platform",
        detail: str | None = None,
        suggestion: str | None = "Supported platforms: linkedin, twitter, facebook, instagram, youtube",
    ) -> None:
        super().__init__(message, detail, suggestion)


class SourceFetchError(RivalWatchError):
    """Raised inside a source monitor when a platform API call fails.

    Never escapes SourceMonitor.fetch(); converted to an empty result there.
    """

    def __init__(
        self,
        message: str = "Source fetch failed",
        detail: str | None = None,
        suggestion: str | None = "Check platform credentials and API availability",
    ) -> None:
        super().__init__(message, detail, suggestion)


class ValidationError(RivalWatchError):
    """Raised when input validation fails."""

    def __init__(
        self,
        message: str = "Validation error",
        detail: str | None = None,
        suggestion: str | None = "Check input format and required fields",
    ) -> None:
        super().__init__(message, detail, suggestion)
