"""Error taxonomy for the pricing pipeline"""

from typing import Any, Optional


class PricingError(Exception):
    """Base class for all pipeline errors"""


class NetworkError(PricingError):
    """Timeout, non-2xx response or DNS failure while talking to a remote source"""

    def __init__(self, message: str, url: Optional[str] = None, status: Optional[int] = None):
        super().__init__(message)
        self.url = url
        self.status = status


class ValidationError(PricingError):
    """
    A payload could not be turned into trusted pricing data

    Raised for missing provider id/name, non-numeric prices and malformed
    JSON. The offending observation or merge is discarded as a whole.
    """

    def __init__(self, message: str, detail: Any = None):
        super().__init__(message)
        self.detail = detail


class UnitAmbiguityWarning(UserWarning):
    """Two sources disagree in a way that looks like a unit mismatch"""


class StoreWriteError(PricingError):
    """The canonical dataset could not be persisted"""


class StoreConflictError(StoreWriteError):
    """The stored dataset changed since it was loaded"""
