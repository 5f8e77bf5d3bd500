"""Consul catalog discovery client."""

import asyncio
import logging
from typing import Any, Dict, List, Optional

import httpx

from ..config.models import ConsulConfig
from ..errors import DiscoveryError
from .base import DiscoveredTarget, DiscoveryClient


def is_matching_service(tag: str, tags: Any) -> bool:
    """Return True if ``tags`` is a list containing ``tag``."""
    if not isinstance(tags, list):
        return False
    return any(isinstance(t, str) and t == tag for t in tags)


def extract_matching_services(tag: str, catalog: Any) -> List[str]:
    """
    Select service names carrying ``tag`` from a /v1/catalog/services body.

    Args:
        tag: Discovery tag
        catalog: Decoded JSON, expected to map service name to its tags

    Returns:
        List[str]: Matching service names, sorted

    Raises:
        DiscoveryError: If the body is not an object or a tag list is not a list
    """
    if not isinstance(catalog, dict):
        raise DiscoveryError(f"Service catalog is not an object: {type(catalog).__name__}")

    matching = []
    for name, tags in catalog.items():
        if not isinstance(tags, list):
            raise DiscoveryError(f"Tags of service {name} are not a list: {tags!r}")
        if is_matching_service(tag, tags):
            matching.append(name)
    return sorted(matching)


def extract_nodes(service_name: str, nodes: Any) -> List[DiscoveredTarget]:
    """
    Convert a /v1/catalog/service/<name> body into targets.

    The address is ServiceAddress, falling back to the node Address when
    the service registered without one.

    Raises:
        DiscoveryError: If the body is not a list or a node lacks an address/port
    """
    if not isinstance(nodes, list):
        raise DiscoveryError(f"Catalog for {service_name} is not a list of nodes")

    targets = []
    for node in nodes:
        if not isinstance(node, dict):
            raise DiscoveryError(f"Malformed node entry for {service_name}: {node!r}")

        host = node.get("ServiceAddress") or node.get("Address")
        port = node.get("ServicePort")
        if not host or not isinstance(port, int) or isinstance(port, bool):
            raise DiscoveryError(f"Node of {service_name} has no usable address: {node!r}")

        address = f"[{host}]:{port}" if ":" in host else f"{host}:{port}"
        targets.append(DiscoveredTarget(id=_target_id(service_name, node, address), address=address))

    return targets


def _target_id(service_name: str, node: Dict[str, Any], address: str) -> str:
    node_name = node.get("Node")
    service_id = node.get("ServiceID")
    if node_name and service_id:
        return f"{service_name}/{node_name}/{service_id}"
    return f"{service_name}/{address}"


class ConsulDiscoveryClient(DiscoveryClient):
    """Discovery backed by the Consul HTTP catalog API."""

    def __init__(
        self,
        config: ConsulConfig,
        logger: logging.Logger,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        """
        Initialize Consul discovery client.

        Args:
            config: Consul agent location
            logger: Logger instance
            transport: Optional httpx transport (tests inject a MockTransport)
        """
        super().__init__(logger)
        self.config = config
        self._transport = transport
        self.logger.debug(f"Create consul client {config.base_url}")

    async def list(self, tag: str, timeout: float) -> List[DiscoveredTarget]:
        try:
            async with httpx.AsyncClient(
                base_url=self.config.base_url,
                timeout=timeout,
                transport=self._transport
            ) as client:
                catalog = await self._get_json(client, "/v1/catalog/services")
                services = extract_matching_services(tag, catalog)
                self.logger.debug(f"Services matching tag {tag}: {', '.join(services)}")

                results = await asyncio.gather(
                    *[self._list_service_nodes(client, name) for name in services],
                    return_exceptions=True
                )

        except httpx.TimeoutException as e:
            raise DiscoveryError(f"Consul query timed out: {e}") from e

        except httpx.HTTPError as e:
            raise DiscoveryError(f"Consul query failed: {e}") from e

        targets: Dict[str, DiscoveredTarget] = {}
        for name, result in zip(services, results):
            if isinstance(result, Exception):
                self.logger.error(f"Failed to list nodes of service {name}: {result}")
                if isinstance(result, DiscoveryError):
                    raise result
                raise DiscoveryError(f"Failed to list nodes of service {name}: {result}") from result
            for target in result:
                targets[target.id] = target

        return sorted(targets.values())

    async def _list_service_nodes(
        self,
        client: httpx.AsyncClient,
        service_name: str
    ) -> List[DiscoveredTarget]:
        body = await self._get_json(client, f"/v1/catalog/service/{service_name}")
        return extract_nodes(service_name, body)

    async def _get_json(self, client: httpx.AsyncClient, path: str) -> Any:
        self.logger.debug(f"Query consul: {path}")
        response = await client.get(path)

        if response.status_code < 200 or response.status_code >= 300:
            raise DiscoveryError(f"Consul query {path} returned HTTP {response.status_code}")

        try:
            return response.json()
        except ValueError as e:
            raise DiscoveryError(f"Consul response for {path} is not JSON: {e}") from e
