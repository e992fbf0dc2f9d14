"""
Messaging gateway client.

Used for outbound messages only (invitations to unregistered senders).
"""

from .client import GatewayAPIError, GatewayClient, GatewayConnectionError, GatewayError

__all__ = [
    "GatewayClient",
    "GatewayError",
    "GatewayAPIError",
    "GatewayConnectionError",
]
