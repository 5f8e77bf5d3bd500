"""Prometheus HTTP exposition of the metrics collector."""

import logging
from typing import Optional

from prometheus_client import start_http_server

from ..config.models import MetricsConfig
from .collector import MetricsCollector


class MetricsServer:
    """Serves ``MetricsCollector.render()`` output on GET /metrics."""

    def __init__(self, config: MetricsConfig, collector: MetricsCollector, logger: logging.Logger):
        self.config = config
        self.collector = collector
        self.logger = logger.getChild(self.__class__.__name__)
        self._server = None
        self._thread = None

    @property
    def port(self) -> Optional[int]:
        """Bound port, useful when configured with port 0."""
        if self._server is None:
            return None
        return self._server.server_address[1]

    def start(self) -> None:
        """
        Bind the listen address and serve from a daemon thread.

        Raises:
            OSError: If the address cannot be bound
        """
        self._server, self._thread = start_http_server(
            self.config.port,
            addr=self.config.listen_host,
            registry=self.collector.registry
        )
        self.logger.info(
            f"Serving metrics on http://{self.config.listen_host}:{self.port}/metrics"
        )

    def stop(self) -> None:
        if self._server is None:
            return
        self._server.shutdown()
        self._server.server_close()
        self._thread.join(timeout=5)
        self._server = None
        self._thread = None
        self.logger.info("Metrics server stopped")
