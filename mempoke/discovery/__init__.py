"""Service discovery clients."""

from .base import DiscoveredTarget, DiscoveryClient, service_of
from .consul import ConsulDiscoveryClient

__all__ = ["DiscoveredTarget", "DiscoveryClient", "ConsulDiscoveryClient", "service_of"]
