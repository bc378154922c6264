"""External service integrations."""

from signbridge.integrations.d4sign import D4SignClient
from signbridge.integrations.http import ResilientClient, RetryPolicy
from signbridge.integrations.pipefy import PipefyClient

__all__ = ["D4SignClient", "PipefyClient", "ResilientClient", "RetryPolicy"]
