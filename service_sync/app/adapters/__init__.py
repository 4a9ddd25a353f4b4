"""
Adapters package for the sync core.

Contains the remote data gateway contract and its HTTP implementation.
Adapters encapsulate:

- Base URLs and request shapes
- Retry policies and circuit breakers
- Error handling that maps to shared errors

Keep adapters thin and side-effect free outside of explicit calls.
"""

from .gateway import GatewayUnavailableError, HttpGateway, RemoteGateway

__all__ = [
    "GatewayUnavailableError",
    "HttpGateway",
    "RemoteGateway",
]
