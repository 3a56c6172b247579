"""
Base interface for vendor cloud APIs.
"""

from abc import ABC, abstractmethod

from switchlink.services.client import ServiceClient


class BaseVendorApi(ABC):
    """
    Abstract base class for vendor cloud APIs.

    All vendor APIs should:
    - Use ServiceClient for HTTP requests (with caching, circuit breaker, etc.)
    - Validate inputs before anything goes on the wire
    - Let typed ServiceErrors propagate to the caller
    """

    def __init__(self, client: ServiceClient):
        self.client = client

    @property
    @abstractmethod
    def service_id(self) -> str:
        """Unique identifier for this vendor API."""
        ...

    @abstractmethod
    def is_configured(self) -> bool:
        """Check if the API has what it needs to authenticate."""
        ...
