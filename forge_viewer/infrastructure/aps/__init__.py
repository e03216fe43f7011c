"""
APS REST client.

Implements the APSClient protocol from core.service.
"""

from .client import APSConfig, HttpAPSClient, MockAPSClient, create_aps_client

__all__ = ["APSConfig", "HttpAPSClient", "MockAPSClient", "create_aps_client"]
