"""Offline generator for the configuration file read at process start.

Reads the upstream base URL, page ids and feature flags from the
environment, fetches each page's site metadata, and writes
``config/generated-config.json``.

Environment:
    UPTIME_KUMA_BASE_URL      upstream base URL (required)
    PAGE_IDS                  ``id[:name],...`` (or PAGE_ID for a single page)
    PAGE_DEFAULT_ID           default page id (first page when unset)
    FEATURE_TITLE / FEATURE_DESCRIPTION / FEATURE_ICON
                              site metadata overrides
    FEATURE_EDIT_THIS_PAGE    show the "edit this page" link (default false)
    FEATURE_SHOW_STAR_BUTTON  show the star button (default true)
"""

import argparse
import asyncio
import json
import logging
import os
import sys
import tempfile
from pathlib import Path
from typing import Optional

from bs4 import BeautifulSoup

from kumamirror.config import (
    GENERATED_CONFIG_PATH,
    BaseConfig,
    Settings,
    html_endpoint,
    setup_logging,
)
from kumamirror.errors import MirrorError
from kumamirror.fetcher import Fetcher, FetchOptions
from kumamirror.locator import locate_preload_payload
from kumamirror.preload import DEFAULT_ICON, extract_preload_data
from kumamirror.sanitizer import sanitize_json_string

logger = logging.getLogger("kumamirror.generate_config")

DEFAULT_SITE_META = {
    "title": "Kuma Mieru",
    "description": "A beautiful and modern uptime monitoring dashboard",
    "icon": DEFAULT_ICON,
}


class GeneratorError(Exception):
    """Raised when the environment does not describe a usable configuration."""


def get_required_env_var(name: str) -> str:
    value = os.getenv(name)
    if not value:
        raise GeneratorError(f"Environment variable {name} is required")
    return value


def get_boolean_env_var(name: str, default: bool = True) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    logger.debug("%s=%r", name, value)
    return value.strip().lower() == "true"


def parse_page_ids(raw: str) -> list[dict]:
    """Parse ``default:Default Page,page1`` into page entries."""
    pages = []
    for entry in raw.split(","):
        entry = entry.strip()
        if not entry:
            continue
        page_id, sep, name = entry.partition(":")
        page = {"id": page_id.strip()}
        if sep and name.strip():
            page["name"] = name.strip()
        pages.append(page)
    if not pages:
        raise GeneratorError("PAGE_IDS does not contain any page id")
    return pages


def _site_meta(
    title: Optional[str] = None,
    description: Optional[str] = None,
    icon: Optional[str] = None,
) -> dict:
    return {
        "title": title or DEFAULT_SITE_META["title"],
        "description": description or DEFAULT_SITE_META["description"],
        "icon": icon or DEFAULT_SITE_META["icon"],
    }


def site_meta_from_html(html: str, overrides: dict) -> dict:
    """Take site metadata from preload data, else from the HTML head."""
    try:
        preload = extract_preload_data(
            sanitize_json_string(locate_preload_payload(html).text)
        )
    except MirrorError as exc:
        logger.info("No usable preload data (%s), reading the HTML head instead", exc)
        soup = BeautifulSoup(html, "html.parser")
        description = soup.find("meta", attrs={"name": "description"})
        icon = soup.find("link", rel="icon")
        return _site_meta(
            overrides.get("title") or (soup.title.get_text().strip() if soup.title else None),
            overrides.get("description") or (description.get("content") if description else None),
            overrides.get("icon") or (icon.get("href") if icon else None),
        )

    return _site_meta(
        overrides.get("title") or preload.config.title,
        overrides.get("description") or preload.config.description,
        overrides.get("icon") or preload.config.icon,
    )


async def fetch_site_meta(fetcher: Fetcher, base_url: str, page_id: str, overrides: dict) -> dict:
    """Resolve site metadata for one page; overrides win over upstream values."""
    if all(overrides.get(key) for key in ("title", "description", "icon")):
        return _site_meta(**overrides)

    endpoint = html_endpoint(base_url, page_id)
    try:
        html = await fetcher.fetch_text(endpoint)
    except MirrorError as exc:
        logger.error("Error fetching site meta for page %s: %s", page_id, exc)
        return _site_meta(**overrides)

    meta = site_meta_from_html(html, overrides)
    logger.info(
        "Site meta for %s: title=%r description=%r icon=%r",
        page_id,
        meta["title"],
        meta["description"],
        meta["icon"],
    )
    return meta


async def build_config(fetcher: Fetcher) -> BaseConfig:
    """Build and validate the base configuration from the environment."""
    base_url = get_required_env_var("UPTIME_KUMA_BASE_URL").rstrip("/")
    raw_ids = os.getenv("PAGE_IDS") or os.getenv("PAGE_ID")
    if not raw_ids:
        raise GeneratorError("Either PAGE_IDS or PAGE_ID environment variable is required")

    pages = parse_page_ids(raw_ids)
    default_page_id = os.getenv("PAGE_DEFAULT_ID") or pages[0]["id"]
    overrides = {
        "title": os.getenv("FEATURE_TITLE"),
        "description": os.getenv("FEATURE_DESCRIPTION"),
        "icon": os.getenv("FEATURE_ICON"),
    }

    metas = await asyncio.gather(
        *(fetch_site_meta(fetcher, base_url, page["id"], overrides) for page in pages)
    )
    for page, meta in zip(pages, metas):
        page["siteMeta"] = meta

    return BaseConfig.from_dict(
        {
            "baseUrl": base_url,
            "defaultPageId": default_page_id,
            "pages": pages,
            "isPlaceholder": False,
            "isEditThisPage": get_boolean_env_var("FEATURE_EDIT_THIS_PAGE", False),
            "isShowStarButton": get_boolean_env_var("FEATURE_SHOW_STAR_BUTTON", True),
        },
        source="environment",
    )


def write_config(config: BaseConfig, path: Path) -> None:
    """Write the configuration atomically."""
    path.parent.mkdir(parents=True, exist_ok=True)
    content = json.dumps(config.to_dict(), indent=2)
    # Write to temp file then atomically replace to prevent a half-written config
    fd, tmp_path = tempfile.mkstemp(dir=str(path.parent), suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(content)
        os.replace(tmp_path, str(path))
    except BaseException:
        try:
            os.unlink(tmp_path)
        except OSError:
            pass
        raise


async def generate(output: Path, options: Optional[FetchOptions] = None) -> BaseConfig:
    async with Fetcher(options) as fetcher:
        config = await build_config(fetcher)
    write_config(config, output)
    logger.info("Configuration written to %s (%d pages)", output, len(config.pages))
    return config


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Generate the kuma-mirror base configuration from the environment"
    )
    parser.add_argument(
        "--env",
        type=str,
        default=None,
        help="Path to .env file",
    )
    parser.add_argument(
        "--output",
        type=str,
        default=str(GENERATED_CONFIG_PATH),
        help="Where to write the generated configuration",
    )
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> None:
    args = parse_args(argv)
    settings = Settings.from_env(env_path=args.env)
    setup_logging(settings.log_level)

    errors = settings.validate()
    if errors:
        for err in errors:
            logger.error("Config error: %s", err)
        sys.exit(1)

    try:
        asyncio.run(generate(Path(args.output), settings.fetch_options()))
    except Exception as exc:
        logger.error("Error generating configuration file: %s", exc, exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
