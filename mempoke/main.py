"""Main application entry point for the mempoke memcached prober."""

import argparse
import asyncio
import logging
import os
import signal
import sys
from typing import Any, Dict, List, Optional

import yaml
from pydantic import ValidationError

from .config.loader import ConfigLoader
from .config.models import MempokeConfig
from .discovery.base import DiscoveryClient
from .discovery.consul import ConsulDiscoveryClient
from .engine.collector import MetricsCollector
from .engine.exposition import MetricsServer
from .engine.poller import DiscoveryPoller
from .engine.registry import TargetRegistry
from .probes.base import ProbeClient
from .probes.memcached import MemcachedProbeClient
from .utils.logger import setup_logger


class MempokeApp:
    """
    Main mempoke application.

    Wires discovery, registry, probe loops and the metrics endpoint together,
    and shuts them down gracefully on SIGTERM/SIGINT.
    """

    def __init__(
        self,
        config: MempokeConfig,
        logger: Optional[logging.Logger] = None,
        discovery: Optional[DiscoveryClient] = None,
        probe_client: Optional[ProbeClient] = None
    ):
        """
        Initialize mempoke application.

        Args:
            config: Validated configuration
            logger: Optional logger instance
            discovery: Optional discovery client (defaults to Consul)
            probe_client: Optional probe client (defaults to memcached)
        """
        self.config = config
        self.logger = logger or setup_logger("mempoke", config.logging)

        self.registry = TargetRegistry(config.probe.failure_threshold, self.logger)
        self.collector = MetricsCollector(config.metrics.latency_buckets, self.logger)
        self.discovery = discovery or ConsulDiscoveryClient(config.consul, self.logger)
        self.probe_client = probe_client or MemcachedProbeClient(
            self.logger,
            key=config.probe.key,
            ttl=config.probe.ttl_s
        )
        self.server = MetricsServer(config.metrics, self.collector, self.logger)
        self.poller = DiscoveryPoller(
            config.discovery,
            config.probe,
            self.discovery,
            self.probe_client,
            self.registry,
            self.collector,
            self.logger
        )

    async def run(self) -> None:
        """
        Serve metrics and poll discovery until a shutdown signal arrives.

        Raises:
            OSError: If the metrics endpoint cannot be bound
        """
        self.server.start()

        loop = asyncio.get_running_loop()
        for signum in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(signum, self._signal_handler, signum)

        try:
            await self.poller.run()
        finally:
            for signum in (signal.SIGTERM, signal.SIGINT):
                loop.remove_signal_handler(signum)
            self.server.stop()
            self.logger.info("mempoke stopped")

    def stop(self) -> None:
        self.poller.stop()

    def _signal_handler(self, signum: int) -> None:
        """
        Handle shutdown signals.

        Args:
            signum: Signal number
        """
        signal_name = signal.Signals(signum).name
        self.logger.info(f"Received {signal_name}, initiating graceful shutdown...")
        self.stop()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description='Memcached Probe (MemPoke)',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Probe every memcached service tagged "memcached" in the local Consul agent
  mempoke --services-tag memcached

  # Use a config file and override the metrics port
  mempoke --config /etc/mempoke/config.yaml --http-port 9150
        """
    )

    parser.add_argument('--config', help='Path to YAML configuration file')
    parser.add_argument('--consul-hostname', help='Consul hostname (default: localhost)')
    parser.add_argument('--consul-port', type=int, help='Consul port (default: 8500)')
    parser.add_argument('--services-tag', help='Tag to select services to probe')
    parser.add_argument('--http-port', type=int, help='Http port for metrics endpoint (default: 8080)')
    parser.add_argument('--poll-interval', type=float, help='Seconds between discovery queries (default: 60)')
    parser.add_argument('--probe-interval', type=float, help='Seconds between probes of one target (default: 10)')
    parser.add_argument('--probe-timeout', type=float, help='Timeout of one probe in seconds (default: 2)')
    parser.add_argument(
        '--failure-threshold',
        type=int,
        help='Consecutive failures before a target is reported down (default: 3)'
    )
    parser.add_argument(
        '--log-level',
        default=os.getenv('LOG_LEVEL'),
        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'],
        help='Logging level (default: INFO or LOG_LEVEL env var)'
    )
    parser.add_argument(
        '--log-format',
        choices=['json', 'text'],
        help='Log output format (default: json)'
    )
    return parser


def overrides_from_args(args: argparse.Namespace) -> Dict[str, Any]:
    """Map command-line flags onto dotted configuration keys."""
    return {
        'consul.hostname': args.consul_hostname,
        'consul.port': args.consul_port,
        'discovery.tag': args.services_tag,
        'discovery.poll_interval_s': args.poll_interval,
        'probe.interval_s': args.probe_interval,
        'probe.timeout_s': args.probe_timeout,
        'probe.failure_threshold': args.failure_threshold,
        'metrics.port': args.http_port,
        'logging.level': args.log_level,
        'logging.format': args.log_format,
    }


def main(argv: Optional[List[str]] = None) -> None:
    """
    CLI entry point.

    Exits 1 when the configuration is invalid or the metrics port cannot be
    bound; every other runtime error is handled inside the engine.
    """
    args = build_parser().parse_args(argv)
    logger = setup_logger("mempoke")

    try:
        config = ConfigLoader.load(args.config, overrides_from_args(args))
    except FileNotFoundError as e:
        logger.error(str(e))
        sys.exit(1)
    except (ValidationError, ValueError, yaml.YAMLError) as e:
        logger.error(f"Invalid configuration: {e}")
        sys.exit(1)

    logger = setup_logger("mempoke", config.logging)

    try:
        app = MempokeApp(config, logger)
        asyncio.run(app.run())
    except OSError as e:
        logger.error(f"Cannot serve metrics on port {config.metrics.port}: {e}", exc_info=True)
        sys.exit(1)
    except Exception as e:
        logger.error(f"Application startup failed: {e}", exc_info=True)
        sys.exit(1)


if __name__ == '__main__':
    main()
