"""QBO API access for the bridge."""

from qbo_bridge.qbo.client import (
    AuthenticationError,
    QBOAPIError,
    QBOClient,
    RateLimitError,
    describe_error,
)
from qbo_bridge.qbo.retry import RetryPolicy

__all__ = [
    "QBOClient",
    "QBOAPIError",
    "AuthenticationError",
    "RateLimitError",
    "RetryPolicy",
    "describe_error",
]
