# src/air_ingest/utils/exceptions.py

class AirIngestError(Exception):
    """Base exception class for the ingestion service"""
    pass

class ConfigurationError(AirIngestError):
    """Raised when there are issues with configuration"""
    pass

class InitializationError(AirIngestError):
    """Raised when component initialization fails"""
    pass

class CommunicationError(AirIngestError):
    """Raised when communication with a broker or remote service fails"""
    pass

class FetchError(CommunicationError):
    """Raised when an HTTP fetch returns a non-success status or fails on the network"""
    def __init__(self, message: str, status: int = None):
        super().__init__(message)
        self.status = status

class PayloadError(AirIngestError):
    """Raised when a whole payload cannot be parsed or holds no usable record"""
    pass

class SourceNotFoundError(AirIngestError):
    """Raised when a source id is not present in the registry"""
    pass

class DatabaseError(Exception):
    """Base exception for database errors"""
    pass

class ConnectionPoolError(DatabaseError):
    """Exception for connection pool related errors"""
    pass
