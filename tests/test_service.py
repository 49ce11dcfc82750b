"""Tests for kumamirror.service, end to end over fixture pages."""

import asyncio
import logging
from unittest.mock import AsyncMock, MagicMock

import pytest

from kumamirror.config import BaseConfig
from kumamirror.errors import ApiDataError, FetchError, PayloadNotFoundError
from kumamirror.service import (
    RequestContext,
    get_global_config,
    get_maintenance_data,
    get_monitoring_data,
    get_preload_data,
    placeholder_global_config,
)

HTML_URL = "https://status.example.com/status/default"
API_URL = "https://status.example.com/api/status-page/heartbeat/default"


def _fake_fetcher(html=None, api=None):
    fetcher = MagicMock()
    fetcher.fetch_text = AsyncMock(return_value=html)
    fetcher.fetch_json = AsyncMock(return_value=api)
    return fetcher


@pytest.fixture
def make_ctx(base_config_dict):
    def _make(fetcher):
        return RequestContext(base_config=BaseConfig.from_dict(base_config_dict), fetcher=fetcher)

    return _make


class TestGetGlobalConfig:
    @pytest.mark.asyncio
    async def test_legacy_page(self, make_ctx, legacy_html):
        fetcher = _fake_fetcher(html=legacy_html)
        result = await get_global_config(make_ctx(fetcher))

        fetcher.fetch_text.assert_awaited_once_with(HTML_URL)
        config = result["config"]
        assert config["slug"] == "default"
        assert config["theme"] == "system"
        assert config["description"] == ""
        assert config["icon"] == "https://status.example.com/upload/logo1.png"
        assert config["googleAnalyticsId"] is None
        assert result["incident"]["style"] == "warning"
        assert result["incident"]["createdDate"] == "2024-05-01T08:00:00+00:00"
        assert [m["status"] for m in result["maintenanceList"]] == ["ended", "scheduled"]

    @pytest.mark.asyncio
    async def test_modern_page_without_incident(self, make_ctx, modern_html):
        result = await get_global_config(make_ctx(_fake_fetcher(html=modern_html)))
        assert "incident" not in result
        assert result["config"]["icon"] == "https://cdn.example.com/logo.svg"
        assert result["maintenanceList"] == []

    @pytest.mark.asyncio
    async def test_memoized_within_request(self, make_ctx, legacy_html):
        fetcher = _fake_fetcher(html=legacy_html)
        ctx = make_ctx(fetcher)
        first = await get_global_config(ctx)
        first["config"]["title"] = "mutated"
        second = await get_global_config(ctx, ctx.page_config("default"))
        assert second["config"]["title"] == "Example Status"
        assert fetcher.fetch_text.await_count == 1

    @pytest.mark.asyncio
    async def test_separate_requests_scrape_again(self, make_ctx, legacy_html):
        fetcher = _fake_fetcher(html=legacy_html)
        await get_global_config(make_ctx(fetcher))
        await get_global_config(make_ctx(fetcher))
        assert fetcher.fetch_text.await_count == 2

    @pytest.mark.asyncio
    async def test_pages_cached_separately(self, make_ctx, legacy_html):
        fetcher = _fake_fetcher(html=legacy_html)
        ctx = make_ctx(fetcher)
        await get_global_config(ctx)
        await get_global_config(ctx, ctx.page_config("internal"))
        urls = [call.args[0] for call in fetcher.fetch_text.await_args_list]
        assert urls == [HTML_URL, "https://status.example.com/status/internal"]

    @pytest.mark.asyncio
    async def test_unparseable_payload_degrades_to_placeholder(self, make_ctx, caplog):
        html = "<script>window.preloadData = {config: someVariable};</script>"
        with caplog.at_level(logging.WARNING, logger="kumamirror"):
            result = await get_global_config(make_ctx(_fake_fetcher(html=html)))
        assert result == placeholder_global_config()
        assert "Degrading config" in caplog.text

    @pytest.mark.asyncio
    async def test_radix_prefix_without_digits_degrades_to_placeholder(self, make_ctx):
        html = (
            "<script>window.preloadData = {config: {slug: 's', title: 't', "
            "description: '', icon: '/i.svg', theme: 'light'}, x: 0x_};</script>"
        )
        result = await get_global_config(make_ctx(_fake_fetcher(html=html)))
        assert result == placeholder_global_config()

    @pytest.mark.asyncio
    async def test_missing_config_degrades_to_placeholder(self, make_ctx):
        html = '<script id="preload-data">{"publicGroupList": []}</script>'
        result = await get_global_config(make_ctx(_fake_fetcher(html=html)))
        assert result == placeholder_global_config()

    @pytest.mark.asyncio
    async def test_malformed_maintenance_keeps_config(self, make_ctx):
        html = (
            '<script id="preload-data">{"config": {"slug": "s", "title": "t", '
            '"description": "", "icon": "/i.svg", "theme": "light"}, '
            '"maintenanceList": {"id": 1}}</script>'
        )
        result = await get_global_config(make_ctx(_fake_fetcher(html=html)))
        assert result["config"]["title"] == "t"
        assert result["maintenanceList"] == []

    @pytest.mark.asyncio
    async def test_malformed_monitor_groups_keep_config(self, make_ctx):
        html = (
            '<script id="preload-data">{"config": {"slug": "s", "title": "t", '
            '"description": "", "icon": "/i.svg", "theme": "light"}, '
            '"publicGroupList": [{"monitorList": [{"name": "no id"}]}]}</script>'
        )
        result = await get_global_config(make_ctx(_fake_fetcher(html=html)))
        assert result["config"]["title"] == "t"
        assert result["config"]["slug"] == "s"

    @pytest.mark.asyncio
    async def test_unreachable_upstream_propagates(self, make_ctx):
        fetcher = _fake_fetcher()
        fetcher.fetch_text.side_effect = FetchError(HTML_URL, None, "Connection refused")
        with pytest.raises(FetchError):
            await get_global_config(make_ctx(fetcher))

    @pytest.mark.asyncio
    async def test_missing_payload_propagates(self, make_ctx, no_preload_html):
        with pytest.raises(PayloadNotFoundError):
            await get_global_config(make_ctx(_fake_fetcher(html=no_preload_html)))

    @pytest.mark.asyncio
    async def test_failure_not_memoized(self, make_ctx, legacy_html):
        fetcher = _fake_fetcher()
        fetcher.fetch_text.side_effect = [FetchError(HTML_URL, 502, "HTTP 502"), legacy_html]
        ctx = make_ctx(fetcher)
        with pytest.raises(FetchError):
            await get_global_config(ctx)
        result = await get_global_config(ctx)
        assert result["config"]["slug"] == "default"


class TestGetMaintenanceData:
    @pytest.mark.asyncio
    async def test_statuses(self, make_ctx, legacy_html):
        result = await get_maintenance_data(make_ctx(_fake_fetcher(html=legacy_html)))
        assert result["success"] is True
        assert [m["id"] for m in result["maintenanceList"]] == [7, 8]
        assert [m["status"] for m in result["maintenanceList"]] == ["ended", "scheduled"]

    @pytest.mark.asyncio
    async def test_malformed_list_degrades(self, make_ctx):
        html = (
            '<script id="preload-data">{"config": {"slug": "s", "title": "t", '
            '"description": "", "icon": "/i.svg", "theme": "light"}, '
            '"maintenanceList": "broken"}</script>'
        )
        result = await get_maintenance_data(make_ctx(_fake_fetcher(html=html)))
        assert result == {
            "success": False,
            "maintenanceList": [],
            "error": "Maintenance list data must be an array",
        }

    @pytest.mark.asyncio
    async def test_fetch_error_propagates(self, make_ctx):
        fetcher = _fake_fetcher()
        fetcher.fetch_text.side_effect = FetchError(HTML_URL, 500, "HTTP 500")
        with pytest.raises(FetchError):
            await get_maintenance_data(make_ctx(fetcher))


class TestGetMonitoringData:
    @pytest.mark.asyncio
    async def test_success(self, make_ctx, legacy_html, heartbeat_payload):
        fetcher = _fake_fetcher(html=legacy_html, api=heartbeat_payload)
        result = await get_monitoring_data(make_ctx(fetcher))

        fetcher.fetch_json.assert_awaited_once_with(API_URL)
        assert result["success"] is True
        assert [g["name"] for g in result["monitorGroups"]] == ["Services"]
        assert [m["name"] for m in result["monitorGroups"][0]["monitorList"]] == [
            "API",
            "Website",
        ]
        assert result["data"]["uptimeList"] == {"1_24": 0.998, "2_24": 1.0}
        assert len(result["data"]["heartbeatList"]["1"]) == 2

    @pytest.mark.asyncio
    async def test_shares_scrape_with_global_config(self, make_ctx, legacy_html, heartbeat_payload):
        fetcher = _fake_fetcher(html=legacy_html, api=heartbeat_payload)
        ctx = make_ctx(fetcher)
        await get_global_config(ctx)
        await get_monitoring_data(ctx)
        await get_preload_data(ctx)
        assert fetcher.fetch_text.await_count == 1

    @pytest.mark.asyncio
    async def test_malformed_api_data_degrades(self, make_ctx, legacy_html):
        fetcher = _fake_fetcher(html=legacy_html, api={"heartbeatList": []})
        result = await get_monitoring_data(make_ctx(fetcher))
        assert result["success"] is False
        assert result["monitorGroups"] == []
        assert result["data"] == {"heartbeatList": {}, "uptimeList": {}}
        assert "heartbeatList" in result["error"]

    @pytest.mark.asyncio
    async def test_invalid_json_degrades(self, make_ctx, legacy_html):
        fetcher = _fake_fetcher(html=legacy_html)
        fetcher.fetch_json.side_effect = ApiDataError("Upstream API returned invalid JSON")
        result = await get_monitoring_data(make_ctx(fetcher))
        assert result["success"] is False

    @pytest.mark.asyncio
    async def test_malformed_monitor_groups_degrade(self, make_ctx, heartbeat_payload):
        html = (
            '<script id="preload-data">{"config": {"slug": "s", "title": "t", '
            '"description": "", "icon": "/i.svg", "theme": "light"}, '
            '"publicGroupList": [{"monitorList": [{"name": "no id"}]}]}</script>'
        )
        ctx = make_ctx(_fake_fetcher(html=html, api=heartbeat_payload))
        result = await get_monitoring_data(ctx)
        assert result["success"] is False
        assert result["monitorGroups"] == []
        assert "Monitor id must be an integer" in result["error"]
        config = await get_global_config(ctx)
        assert config["config"]["title"] == "t"

    @pytest.mark.asyncio
    async def test_page_and_api_fetched_concurrently(
        self, make_ctx, legacy_html, heartbeat_payload
    ):
        api_started = asyncio.Event()

        async def fetch_text(url):
            await api_started.wait()
            return legacy_html

        async def fetch_json(url):
            api_started.set()
            return heartbeat_payload

        fetcher = _fake_fetcher()
        fetcher.fetch_text = AsyncMock(side_effect=fetch_text)
        fetcher.fetch_json = AsyncMock(side_effect=fetch_json)
        result = await asyncio.wait_for(get_monitoring_data(make_ctx(fetcher)), timeout=1)
        assert result["success"] is True
        assert [g["name"] for g in result["monitorGroups"]] == ["Services"]

    @pytest.mark.asyncio
    async def test_api_fetch_error_propagates(self, make_ctx, legacy_html):
        fetcher = _fake_fetcher(html=legacy_html)
        fetcher.fetch_json.side_effect = FetchError(API_URL, 404, "HTTP 404")
        with pytest.raises(FetchError) as exc_info:
            await get_monitoring_data(make_ctx(fetcher))
        assert exc_info.value.endpoint == API_URL

    @pytest.mark.asyncio
    async def test_missing_payload_propagates(self, make_ctx, no_preload_html, heartbeat_payload):
        fetcher = _fake_fetcher(html=no_preload_html, api=heartbeat_payload)
        with pytest.raises(PayloadNotFoundError):
            await get_monitoring_data(make_ctx(fetcher))
