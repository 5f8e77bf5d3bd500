"""mempoke: discovery-driven memcached liveness and latency prober."""

__version__ = "0.4.0"
