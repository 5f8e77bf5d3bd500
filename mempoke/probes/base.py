"""Base probe client abstract class."""

from abc import ABC, abstractmethod
from typing import Dict, Optional, Tuple
import logging


def split_address(address: str) -> Tuple[str, int]:
    """
    Split a ``host:port`` address.

    IPv6 hosts may be bracketed (``[::1]:11211``).

    Raises:
        ValueError: If the address has no valid port
    """
    host, sep, port = address.rpartition(':')
    if not sep or not host or not port.isdigit():
        raise ValueError(f"Invalid address (expected host:port): {address!r}")
    return host.strip('[]'), int(port)


class RoundTrip(float):
    """
    Probe latency in seconds, carrying the time spent in each command.

    It behaves as a plain float everywhere a latency is expected.
    """

    commands: Dict[str, float]

    def __new__(cls, latency: float, commands: Optional[Dict[str, float]] = None):
        value = super().__new__(cls, latency)
        value.commands = dict(commands or {})
        return value


class ProbeClient(ABC):
    """Performs a single liveness/latency round trip against one endpoint."""

    def __init__(self, logger: logging.Logger):
        self.logger = logger.getChild(self.__class__.__name__)

    @abstractmethod
    async def probe(self, address: str, timeout: float) -> float:
        """
        Probe one endpoint.

        Args:
            address: Endpoint as host:port
            timeout: Upper bound for the whole round trip, in seconds

        Returns:
            float: Round-trip latency in seconds, optionally a RoundTrip
                with per-command timings

        Raises:
            ProbeError: With reason TIMEOUT, CONNECTION_REFUSED or PROTOCOL_ERROR
        """
        pass
