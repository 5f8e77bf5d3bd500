"""Base discovery client abstract class."""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import List
import logging


@dataclass(frozen=True, order=True)
class DiscoveredTarget:
    """One endpoint returned by service discovery."""

    id: str
    address: str  # host:port


def service_of(target_id: str) -> str:
    """Service part of a target id (ids are built as ``service/...``)."""
    return target_id.split("/", 1)[0]


class DiscoveryClient(ABC):
    """Resolves a discovery tag into the endpoints to probe."""

    def __init__(self, logger: logging.Logger):
        self.logger = logger.getChild(self.__class__.__name__)

    @abstractmethod
    async def list(self, tag: str, timeout: float) -> List[DiscoveredTarget]:
        """
        List endpoints of every service carrying ``tag``.

        Args:
            tag: Discovery tag selecting the services to watch
            timeout: Upper bound for the whole query, in seconds

        Returns:
            List[DiscoveredTarget]: Current endpoints

        Raises:
            DiscoveryError: Query failed, timed out or returned a malformed payload
        """
        pass
