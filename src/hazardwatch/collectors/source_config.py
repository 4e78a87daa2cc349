"""
Declarative source documents.

Each document in the sources directory declares one source: where to
fetch it, how often, where to cache it and how to shape it. Documents
may be JSON or YAML and use the camelCase keys shown below::

    name: nws-alerts
    fetch: {url: https://api.weather.gov/alerts/active, timeoutMs: 20000}
    schedule: {intervalMs: 300000, ttlSeconds: 900}
    cache: {key: hazard:warnings:nws}
    transform:
      dataPath: features
      filter: {properties.status: Actual}
      fields: {properties.event: event, properties.severity: severity}
    auth: {type: apikey, envVar: NWS_TOKEN, header: X-Token}
"""

from __future__ import annotations

import base64
import json
import logging
import os
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional

import yaml
from pydantic import AliasChoices, BaseModel, Field, field_validator, model_validator

from .transform import compile_fields, parse_path

logger = logging.getLogger(__name__)

DOCUMENT_SUFFIXES = (".json", ".yaml", ".yml")
IGNORED_DOCUMENTS = {"schema.json"}
DEFAULT_API_KEY_HEADER = "X-API-Key"

_MODEL_CONFIG = {"populate_by_name": True, "frozen": True, "extra": "forbid"}


class FetchConfig(BaseModel):
    """
    Fetch descriptor of a source.
    """

    url: str = Field(..., description="Absolute http(s) URL")
    method: str = Field(default="GET", description="HTTP method")
    headers: Dict[str, str] = Field(default_factory=dict, description="Extra headers")
    params: Optional[Dict[str, Any]] = Field(None, description="Query parameters")
    body: Optional[Any] = Field(None, description="JSON request body")
    timeout_ms: int = Field(
        default=30000,
        gt=0,
        validation_alias=AliasChoices("timeoutMs", "timeout", "timeout_ms"),
        description="Per-attempt timeout in milliseconds",
    )
    retries: int = Field(default=2, ge=0, description="Retries after first attempt")
    backoff: str = Field(default="exponential", description="'fixed' or 'exponential'")
    retry_delay_ms: int = Field(
        default=1000,
        ge=0,
        validation_alias=AliasChoices("retryDelayMs", "retry_delay_ms"),
        description="First backoff delay in milliseconds",
    )

    model_config = _MODEL_CONFIG

    @field_validator("url")
    @classmethod
    def check_url(cls, v: str) -> str:
        if not v.startswith(("http://", "https://")):
            raise ValueError(f"Unsupported URL scheme: {v}")
        return v

    @field_validator("method")
    @classmethod
    def upper_method(cls, v: str) -> str:
        return v.upper()

    @field_validator("backoff")
    @classmethod
    def check_backoff(cls, v: str) -> str:
        if v not in ("fixed", "exponential"):
            raise ValueError(f"Unknown backoff policy: {v}")
        return v


class ScheduleConfig(BaseModel):
    """
    Polling interval and cache TTL of a source.
    """

    interval_ms: int = Field(..., gt=0, alias="intervalMs")
    ttl_seconds: int = Field(..., gt=0, alias="ttlSeconds")

    model_config = _MODEL_CONFIG


class CacheConfig(BaseModel):
    """
    Destination cache key of a source.
    """

    key: str = Field(..., min_length=1)

    model_config = _MODEL_CONFIG


class TransformConfig(BaseModel):
    """
    Optional shaping of the response body.
    """

    data_path: Optional[str] = Field(None, alias="dataPath")
    filter_by: Dict[str, Any] = Field(default_factory=dict, alias="filter")
    field_map: Dict[str, Any] = Field(default_factory=dict, alias="fields")

    model_config = _MODEL_CONFIG

    @model_validator(mode="after")
    def check_paths(self):
        # Surface malformed paths and field specs at load time
        if self.data_path:
            parse_path(self.data_path)
        for path in self.filter_by:
            parse_path(path)
        compile_fields(self.field_map)
        return self


class AuthScheme(str, Enum):
    BEARER = "bearer"
    BASIC = "basic"
    APIKEY = "apikey"


class AuthConfig(BaseModel):
    """
    Credential injection. The credential itself always comes from the
    environment variable named by ``envVar``.
    """

    type: AuthScheme
    env_var: str = Field(..., min_length=1, alias="envVar")
    header: Optional[str] = Field(None, description="Header for apikey auth")

    model_config = _MODEL_CONFIG


class SourceConfig(BaseModel):
    """
    One declaratively defined source. Immutable once loaded.
    """

    name: str = Field(..., pattern=r"^[A-Za-z0-9][A-Za-z0-9_.-]*$")
    description: Optional[str] = None
    enabled: bool = True
    fetch: FetchConfig
    schedule: ScheduleConfig
    cache: CacheConfig = Field(..., validation_alias=AliasChoices("cache", "redis"))
    transform: Optional[TransformConfig] = None
    auth: Optional[AuthConfig] = None

    model_config = {"populate_by_name": True, "frozen": True, "extra": "ignore"}


AuthHeaders = Callable[[], Dict[str, str]]


def _bearer(token: str, header: Optional[str]) -> Dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


def _basic(token: str, header: Optional[str]) -> Dict[str, str]:
    encoded = base64.b64encode(token.encode("utf-8")).decode("ascii")
    return {"Authorization": f"Basic {encoded}"}


def _apikey(token: str, header: Optional[str]) -> Dict[str, str]:
    return {header or DEFAULT_API_KEY_HEADER: token}


AUTH_STRATEGIES = {
    AuthScheme.BEARER: _bearer,
    AuthScheme.BASIC: _basic,
    AuthScheme.APIKEY: _apikey,
}


def resolve_auth(
    source_name: str,
    auth: Optional[AuthConfig],
    environ: Optional[Mapping[str, str]] = None,
) -> AuthHeaders:
    """
    Turn an auth descriptor into a callable producing request headers.

    The credential is looked up on every call. When it is missing a
    warning naming the variable (never its value) is logged and the
    request goes out unauthenticated.
    """
    if auth is None:
        return dict

    env = os.environ if environ is None else environ
    strategy = AUTH_STRATEGIES[auth.type]
    env_var, header = auth.env_var, auth.header

    def headers() -> Dict[str, str]:
        token = env.get(env_var)
        if not token:
            logger.warning(
                f"Source {source_name}: credential variable {env_var} is not set, "
                "sending request without auth"
            )
            return {}
        return strategy(token, header)

    return headers


def read_document(path: Path) -> Any:
    """Parse one JSON or YAML source document."""
    text = path.read_text(encoding="utf-8")
    if path.suffix.lower() == ".json":
        return json.loads(text)
    return yaml.safe_load(text)


def load_source_configs(directory: Path) -> List[SourceConfig]:
    """
    Load every enabled source document from directory.

    A missing directory, unreadable or invalid document is logged as a
    warning and excluded; it never stops the remaining sources loading.
    """
    directory = Path(directory)
    if not directory.is_dir():
        logger.warning(f"Sources directory not found: {directory}")
        return []

    configs: List[SourceConfig] = []
    seen = set()
    for path in sorted(directory.iterdir()):
        if path.suffix.lower() not in DOCUMENT_SUFFIXES:
            continue
        if path.name in IGNORED_DOCUMENTS:
            continue
        try:
            config = SourceConfig.model_validate(read_document(path))
        except (OSError, ValueError, yaml.YAMLError) as e:
            logger.warning(f"Skipping source document {path.name}: {e}")
            continue

        if not config.enabled:
            logger.info(f"Source {config.name} is disabled, skipping")
            continue
        if config.name in seen:
            logger.warning(
                f"Duplicate source name {config.name} in {path.name}, skipping"
            )
            continue

        seen.add(config.name)
        configs.append(config)

    logger.info(f"Loaded {len(configs)} source document(s) from {directory}")
    return configs
