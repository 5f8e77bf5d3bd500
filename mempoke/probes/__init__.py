"""Probe clients used to check a single endpoint."""

from .base import ProbeClient, RoundTrip, split_address
from .memcached import MemcachedProbeClient

__all__ = ["ProbeClient", "MemcachedProbeClient", "RoundTrip", "split_address"]
