"""kuma-mirror entry point - render an outward JSON contract for one page."""

import argparse
import asyncio
import json
import logging
import sys

from kumamirror.config import BaseConfig, Settings, load_base_config, setup_logging
from kumamirror.errors import BaseConfigError, FetchError, MirrorError
from kumamirror.fetcher import Fetcher
from kumamirror.service import RequestContext, get_global_config, get_monitoring_data

logger: logging.Logger | None = None

COMMANDS = ("config", "monitor")


async def render(
    command: str,
    base_config: BaseConfig,
    settings: Settings,
    page_id: str | None = None,
) -> dict:
    """Run one page request and return its outward JSON document.

    An omitted page id selects the default page.
    """
    async with Fetcher(settings.fetch_options()) as fetcher:
        ctx = RequestContext(base_config=base_config, fetcher=fetcher)
        page_config = ctx.page_config(page_id) if page_id else None
        if command == "config":
            return await get_global_config(ctx, page_config)
        return await get_monitoring_data(ctx, page_config)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="kuma-mirror - mirror an Uptime Kuma status page as JSON"
    )
    parser.add_argument(
        "command",
        choices=COMMANDS,
        help="Which contract to render: config (/api/config) or monitor (/api/monitor)",
    )
    parser.add_argument(
        "--page",
        type=str,
        default=None,
        help="Status page id (defaults to the configured default page)",
    )
    parser.add_argument(
        "--env",
        type=str,
        default=None,
        help="Path to .env file",
    )
    parser.add_argument(
        "--config",
        type=str,
        default=None,
        help="Path to the generated configuration file",
    )
    parser.add_argument(
        "--pretty",
        action="store_true",
        help="Indent the JSON output",
    )
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> None:
    global logger

    try:
        args = parse_args(argv)
        settings = Settings.from_env(env_path=args.env)
        logger = setup_logging(settings.log_level)
    except SystemExit:
        raise
    except Exception as exc:
        # Fallback logging if settings parsing fails
        logging.basicConfig(level=logging.ERROR)
        logging.error("Failed to initialize: %s", exc)
        sys.exit(1)

    errors = settings.validate()
    if errors:
        for err in errors:
            logger.error("Config error: %s", err)
        sys.exit(1)

    try:
        base_config = load_base_config(args.config or settings.config_path)
    except BaseConfigError as exc:
        for err in exc.errors:
            logger.error("Base configuration error (%s): %s", exc.path, err)
        sys.exit(1)

    try:
        document = asyncio.run(render(args.command, base_config, settings, args.page))
    except FetchError as exc:
        logger.error("Upstream request failed: %s", exc)
        sys.exit(2)
    except MirrorError as exc:
        logger.error("Could not extract status page data: %s", exc)
        sys.exit(2)
    except Exception as exc:
        logger.error("Fatal error: %s", exc, exc_info=True)
        sys.exit(1)

    print(json.dumps(document, indent=2 if args.pretty else None))


if __name__ == "__main__":
    main()
