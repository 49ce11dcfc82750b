"""Scrape-and-normalize pipeline behind the outward config and monitor contracts."""

import asyncio
import copy
import logging
from dataclasses import dataclass, field
from typing import Optional

from kumamirror.cache import RequestCache
from kumamirror.config import BaseConfig, PageScopedConfig, get_config_for_page, resolve_icon_url
from kumamirror.errors import (
    STAGE_CONFIG,
    STAGE_MAINTENANCE,
    STAGE_MONITOR,
    ApiDataError,
    MirrorError,
    SanitizationError,
    log_degradation,
    should_degrade,
)
from kumamirror.fetcher import Fetcher
from kumamirror.locator import locate_preload_payload
from kumamirror.maintenance import process_maintenance_data
from kumamirror.preload import DEFAULT_ICON, MonitoringData, PreloadData, extract_preload_data
from kumamirror.sanitizer import sanitize_json_string

logger = logging.getLogger("kumamirror.service")


@dataclass
class RequestContext:
    """Everything one page request needs: base config, HTTP access and its own cache."""

    base_config: BaseConfig
    fetcher: Fetcher
    cache: RequestCache = field(default_factory=RequestCache)

    def page_config(self, page_id: Optional[str] = None) -> PageScopedConfig:
        return get_config_for_page(self.base_config, page_id)

    def resolve(self, page_config: Optional[PageScopedConfig]) -> PageScopedConfig:
        return page_config if page_config is not None else self.page_config()


def placeholder_global_config() -> dict:
    """Minimal config rendered when the upstream site config is unusable."""
    return {
        "config": {
            "slug": "",
            "title": "",
            "description": "",
            "icon": DEFAULT_ICON,
            "theme": "system",
            "published": True,
            "showTags": False,
            "customCSS": "",
            "footerText": "",
            "showPoweredBy": False,
            "googleAnalyticsId": None,
            "showCertificateExpiry": False,
        },
        "maintenanceList": [],
    }


async def scrape_preload_data(fetcher: Fetcher, endpoint: str) -> PreloadData:
    """Fetch ``endpoint`` and run locate, sanitize, parse and validate on it."""
    html = await fetcher.fetch_text(endpoint)
    located = locate_preload_payload(html)
    sanitized = sanitize_json_string(located.text)
    try:
        return extract_preload_data(sanitized)
    except SanitizationError as exc:
        logger.error(
            "Sanitizer output rejected for %s (located via %s): %s",
            endpoint,
            located.strategy,
            exc,
        )
        raise


async def get_preload_data(
    ctx: RequestContext, page_config: Optional[PageScopedConfig] = None
) -> PreloadData:
    """Return the preload data for a page, scraping at most once per request.

    FetchError and PayloadNotFoundError always propagate.
    """
    page = ctx.resolve(page_config)
    return await ctx.cache.get_or_compute(
        ("preload", page),
        lambda: scrape_preload_data(ctx.fetcher, page.html_endpoint),
    )


async def get_maintenance_data(
    ctx: RequestContext,
    page_config: Optional[PageScopedConfig] = None,
    preload: Optional[PreloadData] = None,
) -> dict:
    """Return ``{success, maintenanceList[, error]}`` with statuses recomputed.

    Unusable maintenance data degrades to an empty list with success False.
    """
    page = ctx.resolve(page_config)
    try:
        if preload is None:
            preload = await get_preload_data(ctx, page)
        if preload.maintenance_issue:
            raise ApiDataError(preload.maintenance_issue)
        processed = process_maintenance_data(preload.maintenance_list)
    except MirrorError as exc:
        if not should_degrade(exc, STAGE_MAINTENANCE):
            raise
        log_degradation(STAGE_MAINTENANCE, exc, page.html_endpoint)
        return {"success": False, "maintenanceList": [], "error": str(exc)}

    return {"success": True, "maintenanceList": [m.to_dict() for m in processed]}


async def _assemble_global_config(ctx: RequestContext, page: PageScopedConfig) -> dict:
    try:
        preload = await get_preload_data(ctx, page)
    except MirrorError as exc:
        if not should_degrade(exc, STAGE_CONFIG):
            raise
        log_degradation(STAGE_CONFIG, exc, page.html_endpoint)
        return placeholder_global_config()

    maintenance = await get_maintenance_data(ctx, page, preload=preload)

    config = preload.config.to_dict()
    config["icon"] = resolve_icon_url(preload.config.icon, page.base_url)
    result = {"config": config, "maintenanceList": maintenance["maintenanceList"]}
    if preload.incident is not None:
        result["incident"] = preload.incident.to_dict()
    return result


async def get_global_config(
    ctx: RequestContext, page_config: Optional[PageScopedConfig] = None
) -> dict:
    """Return the ``/api/config`` contract: ``{config, incident?, maintenanceList}``.

    Memoized per page config within the request. A malformed upstream config
    degrades to placeholder_global_config(); an unreachable upstream or a
    page without preload data propagates.
    """
    page = ctx.resolve(page_config)
    result = await ctx.cache.get_or_compute(
        ("global-config", page), lambda: _assemble_global_config(ctx, page)
    )
    return copy.deepcopy(result)


async def get_monitoring_data(
    ctx: RequestContext, page_config: Optional[PageScopedConfig] = None
) -> dict:
    """Return the ``/api/monitor`` contract: ``{success, monitorGroups, data}``.

    The status page and the heartbeat API are fetched concurrently. A
    malformed API response or monitor group list degrades to success
    False with empty data.
    """
    page = ctx.resolve(page_config)
    preload_result, api_result = await asyncio.gather(
        get_preload_data(ctx, page),
        ctx.fetcher.fetch_json(page.api_endpoint),
        return_exceptions=True,
    )

    try:
        for outcome in (preload_result, api_result):
            if isinstance(outcome, BaseException):
                raise outcome
        if preload_result.monitor_groups_issue:
            raise ApiDataError(preload_result.monitor_groups_issue)
        data = MonitoringData.from_dict(api_result)
    except MirrorError as exc:
        if not should_degrade(exc, STAGE_MONITOR):
            raise
        log_degradation(STAGE_MONITOR, exc, page.api_endpoint)
        return {
            "success": False,
            "monitorGroups": [],
            "data": MonitoringData().to_dict(),
            "error": str(exc),
        }

    return {
        "success": True,
        "monitorGroups": [group.to_dict() for group in preload_result.monitor_groups],
        "data": data.to_dict(),
    }
