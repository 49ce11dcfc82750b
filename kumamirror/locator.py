"""Locate the embedded preload payload inside an upstream status page."""

import logging
import re
from dataclasses import dataclass
from typing import Callable, Optional

from bs4 import BeautifulSoup

from kumamirror.errors import PayloadNotFoundError
from kumamirror.sanitizer import find_balanced_end

logger = logging.getLogger("kumamirror.locator")

PRELOAD_ELEMENT_ID = "preload-data"
PRELOAD_GLOBAL = "window.preloadData"

HTML_PREVIEW_CHARS = 500

_ASSIGNMENT_RE = re.compile(r"window\.preloadData\s*=\s*")


@dataclass
class LocatedPayload:
    """Raw payload text plus the name of the strategy that found it."""

    text: str
    strategy: str


def _from_preload_element(soup: BeautifulSoup) -> Optional[str]:
    """Uptime Kuma > 1.18.4 ships the state in ``<script id="preload-data">``."""
    element = soup.find(id=PRELOAD_ELEMENT_ID)
    if element is None:
        return None
    text = element.get_text()
    return text if text.strip() else None


def extract_assigned_object(script: str) -> Optional[str]:
    """Return the object literal assigned to ``window.preloadData`` in ``script``.

    The literal runs from the first ``{`` after the assignment to its
    balanced ``}``; an optional ``;`` may follow it.
    """
    for match in _ASSIGNMENT_RE.finditer(script):
        start = script.find("{", match.end())
        if start == -1:
            return None
        end = find_balanced_end(script, start)
        if end == -1:
            logger.warning(
                "Unbalanced %s literal, script starts: %s", PRELOAD_GLOBAL, script[:200]
            )
            return None
        rest = script[end + 1:].lstrip(" \t")
        if rest and rest[0] not in ";\r\n":
            # Not a plain assignment (e.g. a member access); keep looking.
            continue
        return script[start:end + 1]
    return None


def _from_window_assignment(soup: BeautifulSoup) -> Optional[str]:
    """Uptime Kuma <= 1.18.4 assigns ``window.preloadData = {...};`` inline."""
    for script in soup.find_all("script"):
        content = script.get_text()
        if PRELOAD_GLOBAL not in content:
            continue
        payload = extract_assigned_object(content)
        if payload:
            logger.debug("Extracted preload data from %s assignment", PRELOAD_GLOBAL)
            return payload
    return None


LOCATOR_STRATEGIES: list[tuple[str, Callable[[BeautifulSoup], Optional[str]]]] = [
    ("preload-element", _from_preload_element),
    ("window-assignment", _from_window_assignment),
]


def locate_preload_payload(html: str) -> LocatedPayload:
    """Run the locator strategies in order and return the first payload found.

    Raises PayloadNotFoundError with an HTML preview and the ids of every
    script element when no strategy yields non-empty text.
    """
    soup = BeautifulSoup(html, "html.parser")

    for name, strategy in LOCATOR_STRATEGIES:
        text = strategy(soup)
        if text and text.strip():
            logger.debug("Preload payload located via %s (%d chars)", name, len(text))
            return LocatedPayload(text=text, strategy=name)

    script_ids = [script.get("id") or "no-id" for script in soup.find_all("script")]
    logger.error(
        "Preload payload not found. HTML preview: %s | scripts: %s",
        html[:HTML_PREVIEW_CHARS],
        script_ids,
    )
    raise PayloadNotFoundError(html[:HTML_PREVIEW_CHARS], script_ids)
