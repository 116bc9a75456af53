"""
Error taxonomy for ingestion and reporting.

Only ValidationError and StorageFailure ever reach a caller; classification
and auxiliary write failures are logged and contained where they happen.
"""


class AnalyticsError(Exception):
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(AnalyticsError):
    """A beacon or query parameter is missing or malformed"""
    status_code = 400


class StorageFailure(AnalyticsError):
    """A primary-path persistence error"""
    status_code = 500


class ClassificationFailure(AnalyticsError):
    """User-agent, geo or referrer classification failed"""


class PartialWriteFailure(AnalyticsError):
    """An auxiliary write failed after the primary writes succeeded"""
