"""Custom exception hierarchy."""


class AppError(Exception):
    """Base exception for application errors."""
    def __init__(self, message: str, original_error: Exception = None):
        super().__init__(message)
        self.original_error = original_error


class APIClientError(AppError):
    """Raised when the text-generation service call fails."""
    pass


class APITimeoutError(APIClientError):
    """Raised when the text-generation service call times out."""
    pass


class ConfigurationError(AppError):
    """Raised when configuration is invalid or missing."""
    pass


class ReportNotFoundError(AppError):
    """Raised when a report record does not exist."""
    pass


class SectionNotFoundError(AppError):
    """Raised when a section id is unknown or absent from a report."""
    pass


class StaleReportError(AppError):
    """Raised when a compare-and-swap write loses to a newer version."""

    def __init__(self, report_id: str, expected_version: int, original_error: Exception = None):
        super().__init__(
            f"Report {report_id} was modified concurrently (expected version {expected_version})",
            original_error,
        )
        self.report_id = report_id
        self.expected_version = expected_version


class InvalidTransitionError(AppError):
    """Raised when a generation state transition is not allowed."""
    pass


class GenerationInProgressError(AppError):
    """Raised when a fresh generation is already running for a report."""
    pass


class DocumentValidationError(AppError):
    """Raised when uploaded documents cannot support a report."""
    pass


class ResponseParseError(AppError):
    """Base exception for model output that cannot be used."""
    pass


class ResponseShapeError(ResponseParseError):
    """Model output is valid JSON but not the expected structure."""
    pass


class ExtractionParseError(ResponseParseError):
    """Extraction output could not be turned into financial data."""
    pass
