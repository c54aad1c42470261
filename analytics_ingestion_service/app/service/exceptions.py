"""
Custom exceptions for the Analytics Ingestion service.
"""

class BaseIngestionError(Exception):
    """Base class for exceptions in this module."""
    pass

class StoreWriteError(BaseIngestionError):
    """Raised when a bulk write is not durably accepted by the store, after retries."""
    def __init__(self, batch_size: int, attempts: int, cause: Exception):
        self.batch_size = batch_size
        self.attempts = attempts
        self.cause = cause
        super().__init__(
            f"Bulk write of {batch_size} documents failed after {attempts} attempt(s): {cause}"
        )

class StoreSetupError(BaseIngestionError):
    """Raised when the events collection or its retention policy cannot be provisioned."""
    def __init__(self, collection_name: str, cause: Exception):
        self.collection_name = collection_name
        self.cause = cause
        super().__init__(f"Failed to provision collection '{collection_name}': {cause}")

class LogBrokerError(BaseIngestionError):
    """Raised when the log broker client reports a fatal error."""
    pass

class ConfigurationError(BaseIngestionError):
    """Raised when a configuration issue is detected."""
    pass
