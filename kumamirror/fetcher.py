"""Upstream HTTP access using curl_cffi."""

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Optional

from curl_cffi import CurlError
from curl_cffi.requests import AsyncSession

from kumamirror.errors import ApiDataError, FetchError, truncate

logger = logging.getLogger("kumamirror.fetcher")

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/122.0.0.0 Safari/537.36"
)


def _default_headers() -> dict[str, str]:
    return {
        "User-Agent": DEFAULT_USER_AGENT,
        "Accept": "text/html,application/xhtml+xml,application/json;q=0.9,*/*;q=0.8",
        "Accept-Language": "en-US,en;q=0.5",
    }


@dataclass
class FetchOptions:
    """Per-request options applied to every upstream call."""

    timeout: float = 10.0
    headers: dict[str, str] = field(default_factory=_default_headers)
    allow_redirects: bool = True
    impersonate: Optional[str] = "chrome"


@dataclass
class FetchResponse:
    url: str
    status_code: int
    text: str

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300


class Fetcher:
    """Fetches upstream status-page HTML and heartbeat JSON.

    Use as an async context manager, or call start()/stop() explicitly.
    Every failure surfaces as FetchError so callers can tell "unreachable"
    (status is None) from "answered with an error status".
    """

    def __init__(self, options: Optional[FetchOptions] = None):
        self._options = options or FetchOptions()
        self._session: Optional[AsyncSession] = None

    @property
    def options(self) -> FetchOptions:
        return self._options

    async def start(self) -> None:
        if self._session is not None:
            return
        self._session = AsyncSession(
            impersonate=self._options.impersonate,
            headers=dict(self._options.headers),
        )
        logger.debug(
            "HTTP session started (timeout=%.1fs, impersonate=%s)",
            self._options.timeout,
            self._options.impersonate,
        )

    async def stop(self) -> None:
        if self._session:
            await self._session.close()
            self._session = None
            logger.debug("HTTP session closed")

    async def __aenter__(self) -> "Fetcher":
        await self.start()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.stop()

    async def fetch(self, url: str) -> FetchResponse:
        """GET ``url`` and return the response; raise FetchError on failure."""
        if not self._session:
            raise RuntimeError("HTTP session not started. Call start() first.")

        try:
            response = await self._session.get(
                url,
                timeout=self._options.timeout,
                allow_redirects=self._options.allow_redirects,
            )
        except CurlError as exc:
            logger.warning("Request to %s failed: %s", url, exc)
            raise FetchError(url, None, str(exc)) from exc

        result = FetchResponse(url=url, status_code=response.status_code, text=response.text)
        if not result.ok:
            logger.warning(
                "Upstream %s answered %d: %s", url, result.status_code, truncate(result.text)
            )
            raise FetchError(url, result.status_code, f"HTTP {result.status_code}")

        logger.debug("Fetched %s (%d, %d chars)", url, result.status_code, len(result.text))
        return result

    async def fetch_text(self, url: str) -> str:
        return (await self.fetch(url)).text

    async def fetch_json(self, url: str) -> Any:
        """GET ``url`` and decode it as JSON; raise ApiDataError on a non-JSON body."""
        text = await self.fetch_text(url)
        try:
            return json.loads(text)
        except json.JSONDecodeError as exc:
            raise ApiDataError(
                f"Upstream API {url} returned invalid JSON: {exc.msg} ({truncate(text, 80)})"
            ) from exc
