"""
Worker settings with environment overrides.
"""

from pathlib import Path
from typing import List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """
    Application settings using Pydantic for validation
    and environment variable support.

    Every field can be overridden with a ``HAZARDWATCH_`` prefixed
    environment variable, e.g. ``HAZARDWATCH_REDIS_URL``. List fields
    take a JSON array: ``HAZARDWATCH_DISABLED_COLLECTORS='["gfs-cape"]'``.
    """

    # Project root directory
    root_dir: Path = Field(
        default_factory=lambda: Path(__file__).resolve().parent.parent.parent
    )

    # Declarative source documents
    sources_dir: Optional[Path] = Field(
        default=None,
        validate_default=True,
        description="Directory of source documents, defaults to root_dir/sources",
    )

    # Cache store
    cache_backend: str = Field(
        default="redis", description="Cache backend: 'redis' or 'memory'"
    )
    redis_url: str = Field(
        default="redis://localhost:6379/0", description="Redis connection URL"
    )
    key_prefix: str = Field(
        default="hazard", description="Namespace prefix for cache keys"
    )

    # Scheduling
    stagger_seconds: float = Field(
        default=10.0, description="Upper bound of the random start offset"
    )
    max_workers: Optional[int] = Field(
        default=None, description="Run pool size, defaults to one per collector"
    )
    disabled_collectors: List[str] = Field(
        default_factory=list, description="Collector names excluded at startup"
    )

    # Default fetch policy for bespoke collectors
    request_timeout: float = Field(
        default=30.0, description="Per-attempt request timeout in seconds"
    )
    request_retries: int = Field(default=2, description="Retries after first attempt")
    retry_base_delay: float = Field(
        default=1.0, description="Initial backoff delay in seconds"
    )
    retry_max_delay: float = Field(
        default=30.0, description="Backoff delay cap in seconds"
    )
    user_agent: str = Field(
        default="hazardwatch/0.1 (+https://github.com/hazardwatch)",
        description="User-Agent header sent upstream",
    )

    # Streaming collectors
    lightning_enabled: bool = Field(default=True, description="Run the lightning feed")
    lightning_servers: List[str] = Field(
        default_factory=lambda: [
            "wss://ws1.blitzortung.org/",
            "wss://ws7.blitzortung.org/",
            "wss://ws8.blitzortung.org/",
        ],
        description="Blitzortung websocket servers, rotated on reconnect",
    )
    aprs_enabled: bool = Field(default=True, description="Run the APRS-IS feed")
    aprs_servers: List[str] = Field(
        default_factory=lambda: [
            "rotate.aprs2.net:14580",
            "euro.aprs2.net:14580",
            "asia.aprs2.net:14580",
        ],
        description="APRS-IS host:port pairs, rotated on reconnect",
    )
    aprs_filter: str = Field(
        default="r/30/0/10000", description="APRS-IS server-side filter"
    )

    # OpenSky OAuth client, anonymous access when unset
    opensky_client_id: Optional[str] = Field(
        default=None, description="OpenSky API client id"
    )
    opensky_client_secret: Optional[str] = Field(
        default=None, description="OpenSky API client secret", repr=False
    )

    # NASA FIRMS fires collector, disabled when unset
    firms_map_key: Optional[str] = Field(
        default=None, description="NASA FIRMS MAP key"
    )

    # Health server
    health_enabled: bool = Field(default=True, description="Serve health endpoints")
    health_host: str = Field(default="0.0.0.0", description="Health server host")
    health_port: int = Field(default=8080, description="Health server port")

    # General settings
    log_level: str = Field(default="INFO", description="Logging level")

    model_config = {
        "env_prefix": "HAZARDWATCH_",
        "case_sensitive": False,
    }

    @field_validator("sources_dir")
    @classmethod
    def set_sources_dir(cls, v, info):
        root = info.data.get("root_dir", Path(__file__).resolve().parent.parent.parent)
        return v or root / "sources"

    @field_validator("cache_backend")
    @classmethod
    def check_cache_backend(cls, v: str) -> str:
        v = v.lower()
        if v not in ("redis", "memory"):
            raise ValueError(f"Unknown cache backend: {v}")
        return v

    @field_validator("log_level")
    @classmethod
    def check_log_level(cls, v: str) -> str:
        v = v.upper()
        if v not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"Unknown log level: {v}")
        return v

    @field_validator("aprs_servers")
    @classmethod
    def check_aprs_servers(cls, v: List[str]) -> List[str]:
        for server in v:
            host, _, port = server.rpartition(":")
            if not host or not port.isdigit():
                raise ValueError(f"APRS server must be host:port, got {server!r}")
        return v

    @field_validator("request_retries")
    @classmethod
    def check_retries(cls, v: int) -> int:
        if v < 0:
            raise ValueError("request_retries must be >= 0")
        return v


settings = Settings()
