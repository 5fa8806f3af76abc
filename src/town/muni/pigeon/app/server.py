import asyncio
import contextlib
import logging
from time import time
from typing import (
    Optional,
)
from aiohttp import web
import aiohttp
from redis import asyncio as redis
import sentry_sdk
from sentry_sdk.integrations.aiohttp import AioHttpIntegration

from town.muni.pigeon.app.auth import AuthenticationException, Authenticator
from town.muni.pigeon.app.config import (
    AuthenticatorAppKey,
    HealthGaugeAppKey,
    IdResolverAppKey,
    KeypairStoreAppKey,
    MetricsClientAppKey,
    OWN_KEYPAIR_METHOD,
    PUBLIC_KEY_METHOD,
    PUBLIC_XRPC_PATHS,
    RedisClientAppKey,
    SessionAppKey,
    Settings,
    SettingsAppKey,
    TickHealthTaskAppKey,
    XRPC_PREFIX,
)
from town.muni.pigeon.app.cors import get_cors_headers
from town.muni.pigeon.app.handlers.did import handle_did_document
from town.muni.pigeon.app.handlers.helpers import (
    auth_context_helper,
    json_error,
    xrpc_method,
)
from town.muni.pigeon.app.handlers.internal import (
    handle_internal_alive,
    handle_internal_ready,
)
from town.muni.pigeon.app.handlers.keys import handle_own_keypair, handle_public_key
from town.muni.pigeon.app.metrics import MetricsClient, create_metrics_client
from town.muni.pigeon.app.tasks import tick_health_task
from town.muni.pigeon.keys.store import (
    KeypairStore,
    MemoryKeypairStore,
    RedisKeypairStore,
)
from town.muni.pigeon.model.health import HealthGauge
from town.muni.pigeon.resolve.cache import DidCache, MemoryDidCache, RedisDidCache
from town.muni.pigeon.resolve.resolver import IdResolver

logger = logging.getLogger(__name__)


async def background_tasks(app):
    logger.info("Starting up")
    settings: Settings = app[SettingsAppKey]

    if MetricsClientAppKey not in app:
        metrics_client = create_metrics_client(
            settings.metrics_backend,
            host=settings.statsd_host,
            port=settings.statsd_port,
            debug=settings.debug,
            prefix=settings.statsd_prefix,
        )
        await metrics_client.connect()
        app[MetricsClientAppKey] = metrics_client

    app[SessionAppKey] = aiohttp.ClientSession()

    did_cache: DidCache
    if settings.storage_backend == "redis":
        redis_client = redis.Redis.from_url(str(settings.redis_dsn))
        app[RedisClientAppKey] = redis_client
        did_cache = RedisDidCache(
            redis_client,
            stale_ttl=settings.did_cache_stale_ttl,
            max_ttl=settings.did_cache_max_ttl,
        )
        if KeypairStoreAppKey not in app:
            app[KeypairStoreAppKey] = RedisKeypairStore(
                redis_client,
                key_prefix=settings.keypair_key_prefix,
                metrics_client=app[MetricsClientAppKey],
            )
    else:
        logger.warning("Using in-memory storage, keypairs will not survive a restart")
        did_cache = MemoryDidCache(
            stale_ttl=settings.did_cache_stale_ttl,
            max_ttl=settings.did_cache_max_ttl,
        )
        if KeypairStoreAppKey not in app:
            app[KeypairStoreAppKey] = MemoryKeypairStore(
                metrics_client=app[MetricsClientAppKey]
            )

    if IdResolverAppKey not in app:
        app[IdResolverAppKey] = IdResolver(
            app[SessionAppKey],
            plc_hostname=settings.plc_hostname,
            cache=did_cache,
            timeout=settings.did_resolve_timeout,
        )

    app[AuthenticatorAppKey] = Authenticator(
        app[IdResolverAppKey], app[MetricsClientAppKey]
    )

    logger.info("Startup complete")

    app[TickHealthTaskAppKey] = asyncio.create_task(tick_health_task(app))

    yield

    logger.info("Shutting down background tasks")

    app[TickHealthTaskAppKey].cancel()

    with contextlib.suppress(asyncio.exceptions.CancelledError):
        await app[TickHealthTaskAppKey]

    await app[SessionAppKey].close()
    if RedisClientAppKey in app:
        await app[RedisClientAppKey].aclose()
    await app[MetricsClientAppKey].close()


@web.middleware
async def cors_middleware(request: web.Request, handler):
    settings = request.app[SettingsAppKey]
    headers = get_cors_headers(request.headers.get("Origin"), settings.cors_origins())

    if request.method == "OPTIONS":
        return web.Response(status=204, headers=headers)

    response = await handler(request)
    response.headers.update(headers)
    return response


@web.middleware
async def sentry_middleware(request: web.Request, handler):
    try:
        response = await handler(request)
        return response
    except web.HTTPException:
        raise
    except Exception as e:
        logger.exception("Unhandled error serving %s %s", request.method, request.path)
        sentry_sdk.capture_exception(e)
        await request.app[HealthGaugeAppKey].womp()
        return json_error(500)


@web.middleware
async def statsd_middleware(request: web.Request, handler):
    metrics_client = request.app[MetricsClientAppKey]
    request_method: str = request.method
    request_path = request.path

    start_time: float = time()
    response_status_code = 0

    try:
        response = await handler(request)
        response_status_code = response.status
        return response
    except Exception as e:
        metrics_client.increment(
            "server.request.exception",
            1,
            tag_dict={
                "exception": type(e).__name__,
                "path": request_path,
                "method": request_method,
            },
        )
        raise e
    finally:
        metrics_client.timer(
            "server.request.time",
            time() - start_time,
            tag_dict={"path": request_path, "method": request_method},
        )
        metrics_client.increment(
            "server.request.count",
            1,
            tag_dict={
                "path": request_path,
                "method": request_method,
                "status": response_status_code,
            },
        )


@web.middleware
async def auth_wall_middleware(request: web.Request, handler):
    """
    Require service-auth for every XRPC request except the exact paths of the public methods.

    Every authentication failure produces the same 403 response. The underlying reason is only logged.
    Requests under the prefix that do not match a route are authenticated before they are rejected as
    not found.
    """
    lxm = xrpc_method(request.path)
    if lxm is None or request.path in PUBLIC_XRPC_PATHS:
        return await handler(request)

    metrics_client = request.app[MetricsClientAppKey]
    try:
        await auth_context_helper(request, lxm)
    except AuthenticationException as e:
        logger.info("Forbidden %s %s: %s", request.method, request.path, e)
        metrics_client.increment(
            "auth.failure", 1, tag_dict={"reason": e.reason}
        )
        return json_error(403)

    metrics_client.increment("auth.success", 1, tag_dict={"method": lxm})
    return await handler(request)


@web.middleware
async def json_error_middleware(request: web.Request, handler):
    try:
        return await handler(request)
    except web.HTTPException as e:
        if e.status < 400:
            raise
        return json_error(e.status)


async def start_web_server(
    settings: Optional[Settings] = None,
    keypair_store: Optional[KeypairStore] = None,
    id_resolver: Optional[IdResolver] = None,
    metrics_client: Optional[MetricsClient] = None,
):
    """
    Build the keyserver application.

    The keypair store, DID resolver and metrics client are created from settings during startup unless
    they are passed in.
    """

    if settings is None:
        settings = Settings()  # type: ignore
    if settings.sentry_dsn:
        sentry_sdk.init(
            dsn=settings.sentry_dsn,
            send_default_pii=False,
            integrations=[AioHttpIntegration()]
        )
    app = web.Application(
        middlewares=[
            cors_middleware,
            statsd_middleware,
            sentry_middleware,
            auth_wall_middleware,
            json_error_middleware,
        ]
    )

    app[SettingsAppKey] = settings
    app[HealthGaugeAppKey] = HealthGauge(health_threshold=settings.health_threshold)

    if keypair_store is not None:
        app[KeypairStoreAppKey] = keypair_store
    if id_resolver is not None:
        app[IdResolverAppKey] = id_resolver
    if metrics_client is not None:
        app[MetricsClientAppKey] = metrics_client

    app.add_routes([web.get("/.well-known/did.json", handle_did_document)])

    app.add_routes(
        [
            web.get("/internal/alive", handle_internal_alive),
            web.get("/internal/ready", handle_internal_ready),
        ]
    )

    app.add_routes(
        [
            web.get(f"{XRPC_PREFIX}{PUBLIC_KEY_METHOD}", handle_public_key),
            web.get(f"{XRPC_PREFIX}{OWN_KEYPAIR_METHOD}", handle_own_keypair),
        ]
    )

    app.cleanup_ctx.append(background_tasks)

    return app
