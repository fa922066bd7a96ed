"""
Error kinds raised by the core. The HTTP layer maps them with ``status_code``.
"""


class AnalyticsError(Exception):
    status_code = 500
    message = "Internal server error"

    def __init__(self, message=None, details=None):
        super().__init__(message or self.message)
        if message:
            self.message = message
        self.details = details

    def to_dict(self):
        return {"error": self.message, "details": self.details}


class InvalidInput(AnalyticsError):
    status_code = 400
    message = "Invalid input"


class InvalidIdentity(InvalidInput):
    message = "Project Name is required"


class InvalidDateFormat(InvalidInput):
    message = "Invalid date format. Use YYYY-MM-DD"


class InvalidPeriod(InvalidInput):
    message = "Period must be one of daily, weekly, monthly"


class InvalidDimension(InvalidInput):
    message = "Dimension must be one of location, device, browser"


class NotFound(AnalyticsError):
    status_code = 404
    message = "Not found"


class StoreUnavailable(AnalyticsError):
    """
    Persistence failure. The message is fixed so sqlite diagnostics never
    reach the caller; they go to the log instead.
    """
    status_code = 503
    message = "Visitor store unavailable"

    def __init__(self):
        super().__init__()
