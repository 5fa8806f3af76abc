import asyncio
import logging
from typing import NoReturn

from aiohttp import web

from town.muni.pigeon.app.config import (
    HealthGaugeAppKey,
    MetricsClientAppKey,
    SettingsAppKey,
)

logger = logging.getLogger(__name__)


async def tick_health_task(app: web.Application) -> NoReturn:
    """
    Decay the health gauge every `health_tick_seconds` and report its value as the `health.gauge` metric.
    """

    interval = app[SettingsAppKey].health_tick_seconds
    logger.info("Starting health gauge task, ticking every %ss", interval)

    health_gauge = app[HealthGaugeAppKey]
    metrics_client = app[MetricsClientAppKey]
    while True:
        errors = await health_gauge.tick()
        metrics_client.gauge("health.gauge", errors)
        await asyncio.sleep(interval)
