"""Pydantic configuration models for mempoke."""

from pydantic import BaseModel, Field, field_validator, model_validator
from typing import List


# Latency buckets in seconds, tuned for sub-millisecond cache round trips
DEFAULT_LATENCY_BUCKETS = [
    0.0005, 0.001, 0.0025, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5
]


class ConsulConfig(BaseModel):
    """Consul agent used as the discovery catalog."""
    hostname: str = "localhost"
    port: int = Field(default=8500, ge=1, le=65535)
    scheme: str = "http"

    @field_validator('scheme')
    @classmethod
    def validate_scheme(cls, v: str) -> str:
        """Only plain and TLS HTTP are supported."""
        if v not in ('http', 'https'):
            raise ValueError('scheme must be http or https')
        return v

    @property
    def base_url(self) -> str:
        return f"{self.scheme}://{self.hostname}:{self.port}"


class DiscoveryConfig(BaseModel):
    """Service discovery polling configuration."""
    tag: str
    poll_interval_s: float = Field(default=60.0, gt=0)
    timeout_s: float = Field(default=10.0, gt=0)
    jitter_s: float = Field(default=0.0, ge=0)  # Extra random delay per poll

    @field_validator('tag')
    @classmethod
    def validate_tag(cls, v: str) -> str:
        """An empty tag would match nothing."""
        if not v.strip():
            raise ValueError('Discovery tag must not be empty')
        return v.strip()


class ProbeConfig(BaseModel):
    """Per-target probe loop configuration."""
    interval_s: float = Field(default=10.0, gt=0)
    timeout_s: float = Field(default=2.0, gt=0)
    failure_threshold: int = Field(default=3, ge=1)
    max_concurrency: int = Field(default=64, ge=1)
    key: str = "mempoke"
    ttl_s: int = Field(default=60, ge=0)
    spread_start: bool = True  # Random first delay so loops don't run in lockstep

    @field_validator('key')
    @classmethod
    def validate_key(cls, v: str) -> str:
        """Memcached keys are at most 250 bytes with no whitespace."""
        if not v or len(v.encode()) > 250 or any(c.isspace() for c in v):
            raise ValueError('Probe key must be 1-250 bytes without whitespace')
        return v


class MetricsConfig(BaseModel):
    """Metrics exposition endpoint configuration."""
    listen_host: str = "0.0.0.0"
    port: int = Field(default=8080, ge=0, le=65535)
    latency_buckets: List[float] = Field(
        default_factory=lambda: list(DEFAULT_LATENCY_BUCKETS)
    )

    @field_validator('latency_buckets')
    @classmethod
    def validate_buckets(cls, v: List[float]) -> List[float]:
        """Buckets must be positive and strictly increasing."""
        if not v:
            raise ValueError('At least one latency bucket is required')
        if any(b <= 0 for b in v):
            raise ValueError('Latency buckets must be positive')
        if any(a >= b for a, b in zip(v, v[1:])):
            raise ValueError('Latency buckets must be strictly increasing')
        return v


class LoggingConfig(BaseModel):
    """Logging configuration."""
    level: str = "INFO"
    format: str = "json"  # json for log shippers, text for terminals

    @field_validator('level')
    @classmethod
    def validate_level(cls, v: str) -> str:
        v = v.upper()
        if v not in ('DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'):
            raise ValueError(f'Unknown log level: {v}')
        return v

    @field_validator('format')
    @classmethod
    def validate_format(cls, v: str) -> str:
        v = v.lower()
        if v not in ('json', 'text'):
            raise ValueError('Log format must be json or text')
        return v


class MempokeConfig(BaseModel):
    """Root configuration model."""
    consul: ConsulConfig = Field(default_factory=ConsulConfig)
    discovery: DiscoveryConfig
    probe: ProbeConfig = Field(default_factory=ProbeConfig)
    metrics: MetricsConfig = Field(default_factory=MetricsConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @model_validator(mode='after')
    def probe_timeout_within_interval(self) -> 'MempokeConfig':
        """A probe must finish before the next one is due."""
        if self.probe.timeout_s > self.probe.interval_s:
            raise ValueError(
                f'probe.timeout_s ({self.probe.timeout_s}) must not exceed '
                f'probe.interval_s ({self.probe.interval_s})'
            )
        return self
