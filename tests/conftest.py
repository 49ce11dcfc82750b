"""Shared fixtures for kuma-mirror tests."""

import json
from pathlib import Path

import pytest

FIXTURES = Path(__file__).parent / "fixtures"


def read_fixture(name: str) -> str:
    return (FIXTURES / name).read_text(encoding="utf-8")


@pytest.fixture
def legacy_html():
    return read_fixture("legacy_status_page.html")


@pytest.fixture
def modern_html():
    return read_fixture("modern_status_page.html")


@pytest.fixture
def no_preload_html():
    return read_fixture("no_preload.html")


@pytest.fixture
def heartbeat_payload():
    return json.loads(read_fixture("heartbeat.json"))


@pytest.fixture
def base_config_dict():
    return {
        "baseUrl": "https://status.example.com",
        "defaultPageId": "default",
        "pages": [
            {
                "id": "default",
                "name": "Default Page",
                "siteMeta": {
                    "title": "Example Status",
                    "description": "Service status",
                    "icon": "/icon.svg",
                },
            },
            {
                "id": "internal",
                "siteMeta": {
                    "title": "Internal",
                    "description": "Internal services",
                    "icon": "/internal.svg",
                },
            },
        ],
        "isPlaceholder": False,
        "isEditThisPage": False,
        "isShowStarButton": True,
    }
