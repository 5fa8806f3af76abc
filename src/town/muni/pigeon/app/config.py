"""
Configuration Module for the Pigeon Keyserver

This module defines the configuration system for the keyserver, using Pydantic for settings validation and
dependency injection through AppKeys.

The Settings class is loaded from environment variables. The only required value is the service's own DID,
which is both the `id` of the published DID document and the audience every service-auth token must name.
Startup fails immediately when it is missing or malformed.

Key configuration areas include:
- Service identification and networking
- Storage backend and Redis connection
- DID resolution and caching
- Monitoring and observability
"""

import asyncio
from typing import Final, List, Literal, Optional
import logging
from pydantic import (
    AliasChoices,
    Field,
    field_validator,
    RedisDsn,
)
from pydantic_settings import BaseSettings
from aiohttp import web
from aiohttp import ClientSession
from redis import asyncio as redis

from town.muni.pigeon.app.auth import Authenticator
from town.muni.pigeon.app.metrics import MetricsClient
from town.muni.pigeon.keys.store import KeypairStore
from town.muni.pigeon.model.health import HealthGauge
from town.muni.pigeon.resolve.did import is_did
from town.muni.pigeon.resolve.resolver import IdResolver


logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """
    Application settings for the keyserver.

    Environment variables are mapped to settings fields automatically, with aliases where the deployed
    environment uses a different name. For example, the service DID can be set with either DID or
    SERVICE_DID.
    """

    # Environment and debugging settings
    debug: bool = False
    """
    Enable debug mode for verbose logging.
    Set with DEBUG=true environment variable.
    """

    allowed_origins: str = "*"
    """
    Comma-separated list of origins allowed for CORS, or * for any origin.
    Set with ALLOWED_ORIGINS environment variable.
    """

    # Network and service identification settings
    http_port: int = Field(alias="port", default=5100)
    """
    HTTP port for the service to listen on.
    Set with PORT environment variable.
    """

    service_did: str = Field(validation_alias=AliasChoices("service_did", "did"))
    """
    DID of this deployed service (required, no default).
    Used as the DID document id and as the expected audience of service-auth tokens.
    Set with DID or SERVICE_DID environment variables.
    """

    plc_hostname: str = "plc.directory"
    """
    Hostname for the PLC directory service for DID resolution.
    Set with PLC_HOSTNAME environment variable.
    """

    # Monitoring and error reporting
    sentry_dsn: Optional[str] = None
    """
    Sentry DSN for error reporting. Optional, no error reporting if not set.
    Set with SENTRY_DSN environment variable.
    """

    # Storage settings
    storage_backend: Literal["redis", "memory"] = "redis"
    """
    Where keypairs and cached DID documents live. `memory` is only suitable for development and tests
    because keypairs are lost on restart.
    Set with STORAGE_BACKEND environment variable.
    """

    redis_dsn: RedisDsn = Field(
        "redis://valkey:6379/1?decode_responses=True",
        validation_alias=AliasChoices("redis_dsn", "redis_url"),
    )  # type: ignore
    """
    Redis connection string for keypair storage and the DID cache.
    Set with REDIS_DSN or REDIS_URL environment variables.
    Default: redis://valkey:6379/1?decode_responses=True
    """

    keypair_key_prefix: str = "keys"
    """
    Redis key prefix for stored keypairs. Entries are stored at {prefix}:{did}.
    Set with KEYPAIR_KEY_PREFIX environment variable.
    """

    # DID resolution settings
    did_cache_stale_ttl: int = 3600
    """
    Age in seconds after which a cached DID document is refreshed on read.
    Set with DID_CACHE_STALE_TTL environment variable.
    Default: 3600 (1 hour)
    """

    did_cache_max_ttl: int = 86400
    """
    Age in seconds after which a cached DID document is discarded.
    Set with DID_CACHE_MAX_TTL environment variable.
    Default: 86400 (1 day)
    """

    did_resolve_timeout: float = 3.0
    """
    Timeout in seconds for a single DID document request.
    Set with DID_RESOLVE_TIMEOUT environment variable.
    """

    # Monitoring and observability settings
    metrics_backend: Literal["telegraf", "none"] = "telegraf"
    """
    Metrics backend. Set with METRICS_BACKEND environment variable.
    """

    statsd_host: str = Field(alias="TELEGRAF_HOST", default="telegraf")
    """
    StatsD/Telegraf host for metrics collection.
    Set with TELEGRAF_HOST environment variable.
    """

    statsd_port: int = Field(alias="TELEGRAF_PORT", default=8125)
    """
    StatsD/Telegraf port for metrics collection.
    Set with TELEGRAF_PORT environment variable.
    """

    statsd_prefix: str = "pigeon"
    """
    Prefix for all StatsD metrics from this service.
    Set with STATSD_PREFIX environment variable.
    """

    health_threshold: int = 100
    """
    Number of recent unexpected errors tolerated before /internal/ready reports 503.
    Set with HEALTH_THRESHOLD environment variable.
    """

    health_tick_seconds: float = 30.0
    """
    Interval in seconds between health gauge ticks. Each tick forgives one recorded error.
    Set with HEALTH_TICK_SECONDS environment variable.
    """

    @field_validator("service_did")
    @classmethod
    def validate_service_did(cls, v: str) -> str:
        """
        Reject service DIDs that are empty or not syntactically valid.

        Raises:
            ValueError: If the value is not a DID
        """
        if not is_did(v):
            raise ValueError(
                "Must set DID environment variable to the DID of this deployed service."
            )
        return v

    def cors_origins(self) -> List[str]:
        return [
            origin.strip()
            for origin in self.allowed_origins.split(",")
            if len(origin.strip()) > 0
        ]


XRPC_PREFIX = "/xrpc/"
"""Path prefix gated by service-auth, except for the public methods below."""

PUBLIC_KEY_METHOD = "public.key.pigeon.muni.town"
"""XRPC method returning the public half of any DID's keypair. Unauthenticated."""

OWN_KEYPAIR_METHOD = "key.pigeon.muni.town"
"""XRPC method returning both halves of the caller's own keypair. Requires service-auth."""

PUBLIC_XRPC_METHODS = frozenset({PUBLIC_KEY_METHOD})

PUBLIC_XRPC_PATHS = frozenset(f"{XRPC_PREFIX}{method}" for method in PUBLIC_XRPC_METHODS)
"""Exact request paths exempt from service-auth. Sub-paths of a public method are still gated."""

AuthContextRequestKey: Final = "auth_context"
"""Request key under which the auth wall stores the authenticated AuthContext"""

# Application context keys for dependency injection
SettingsAppKey: Final = web.AppKey("settings", Settings)
"""AppKey for accessing the application settings"""

SessionAppKey: Final = web.AppKey("http_session", ClientSession)
"""AppKey for accessing the shared aiohttp client session"""

RedisClientAppKey: Final = web.AppKey("redis_client", redis.Redis)
"""AppKey for accessing the Redis client"""

KeypairStoreAppKey: Final = web.AppKey("keypair_store", KeypairStore)
"""AppKey for accessing the keypair store"""

IdResolverAppKey: Final = web.AppKey("id_resolver", IdResolver)
"""AppKey for accessing the DID resolver used as the service-auth key source"""

AuthenticatorAppKey: Final = web.AppKey("authenticator", Authenticator)
"""AppKey for accessing the service-auth authenticator"""

MetricsClientAppKey: Final = web.AppKey("metrics_client", MetricsClient)
"""AppKey for the metrics client"""

HealthGaugeAppKey: Final = web.AppKey("health_gauge", HealthGauge)
"""AppKey for accessing the health monitoring gauge"""

TickHealthTaskAppKey: Final = web.AppKey("tick_health_task", asyncio.Task[None])
"""AppKey for the background task that decays the health gauge"""
