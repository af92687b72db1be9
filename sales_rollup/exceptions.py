class RollupError(Exception):
    """Base exception for Sales Rollup errors."""

    def __init__(self, message=None, code=None, details=None):
        """Initialize the exception.

        Args:
            message: Error message
            code: Error code
            details: Dictionary identifying the offending entities
        """
        self.message = message or "An error occurred in the Sales Rollup engine"
        self.code = code
        self.details = details
        super().__init__(self.message)

    def __str__(self):
        if self.code:
            return f"[{self.code}] {self.message}"
        return self.message

    def to_dict(self):
        """Convert the exception to a dictionary."""
        error_dict = {
            'error': self.__class__.__name__,
            'message': self.message,
        }

        if self.code:
            error_dict['code'] = self.code

        if self.details:
            error_dict['details'] = self.details

        return error_dict


class ConfigError(RollupError):
    """Exception raised for configuration errors."""

    def __init__(self, message=None, code=None, details=None):
        message = message or "Configuration error"
        super().__init__(message, code, details)


class DatabaseError(RollupError):
    """Exception raised for database-related errors."""

    def __init__(self, message=None, code=None, details=None):
        message = message or "Database error"
        super().__init__(message, code, details)


class ValidationError(RollupError):
    """Exception raised for data validation errors."""

    def __init__(self, message=None, code=None, details=None):
        message = message or "Validation error"
        super().__init__(message, code, details)


class NotFoundError(RollupError):
    """Exception raised when a referenced category, item, store or week does not exist."""

    def __init__(self, message=None, code=None, details=None):
        message = message or "Resource not found"
        super().__init__(message, code or 'NOT_FOUND', details)


class UnresolvableItemError(RollupError):
    """Exception raised when an item line cannot be resolved to a category.

    Aborts the whole report; no aggregate is touched.
    """

    def __init__(self, message=None, code=None, details=None):
        message = message or "Item has no resolvable category"
        super().__init__(message, code or 'UNRESOLVABLE_ITEM', details)


class InvalidWeekError(RollupError):
    """Exception raised for an empty, inverted or overlapping week range."""

    def __init__(self, message=None, code=None, details=None):
        message = message or "Invalid week"
        super().__init__(message, code or 'INVALID_WEEK', details)


class DuplicateReportError(RollupError):
    """Exception raised when a (store, week) pair already has an applied report."""

    def __init__(self, message=None, code=None, details=None):
        message = message or "Duplicate report"
        super().__init__(message, code or 'DUPLICATE_REPORT', details)


class NegativeCountError(ValidationError):
    """Exception raised for a report line with a negative count."""

    def __init__(self, message=None, code=None, details=None):
        message = message or "Negative sales count"
        super().__init__(message, code or 'NEGATIVE_COUNT', details)


class BatchProcessError(RollupError):
    """Exception raised for batch process errors."""

    def __init__(self, message=None, code=None, details=None):
        message = message or "Batch process error"
        super().__init__(message, code, details)


class ReportingError(RollupError):
    """Exception raised for analytics/reporting errors."""

    def __init__(self, message=None, code=None, details=None):
        message = message or "Reporting error"
        super().__init__(message, code, details)
