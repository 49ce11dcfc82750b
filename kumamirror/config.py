"""Configuration management for kuma-mirror.

Two layers: runtime ``Settings`` read from the environment, and the
``BaseConfig`` loaded once from the generated configuration file. Page
requests derive a frozen ``PageScopedConfig`` from the base config.
"""

import json
import logging
import os
import sys
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import List, Optional
from urllib.parse import urlparse

from dotenv import load_dotenv

from kumamirror.errors import BaseConfigError
from kumamirror.fetcher import DEFAULT_USER_AGENT, FetchOptions
from kumamirror.preload import DEFAULT_ICON

_logger = logging.getLogger("kumamirror.config")

# Project root is one level up from this file's directory
PROJECT_ROOT = Path(__file__).resolve().parent.parent
CONFIG_DIR = PROJECT_ROOT / "config"
LOGS_DIR = PROJECT_ROOT / "logs"
GENERATED_CONFIG_PATH = CONFIG_DIR / "generated-config.json"


@dataclass
class Settings:
    """Runtime settings loaded from environment variables."""

    config_path: str = str(GENERATED_CONFIG_PATH)
    fetch_timeout: float = 10.0
    user_agent: str = DEFAULT_USER_AGENT
    impersonate: str = "chrome"
    log_level: str = "INFO"

    @staticmethod
    def _safe_float(env_var: str, default: float) -> float:
        """Parse an env var as float, falling back to default with a warning."""
        raw = os.getenv(env_var)
        if raw is None:
            return default
        try:
            return float(raw)
        except ValueError:
            _logger.warning(
                "%s=%r is not a valid number, using default %s", env_var, raw, default
            )
            return default

    @classmethod
    def from_env(cls, env_path: str | None = None) -> "Settings":
        """Load settings from .env file and environment variables."""
        if env_path:
            load_dotenv(env_path)
        else:
            load_dotenv(PROJECT_ROOT / ".env")

        return cls(
            config_path=os.getenv("MIRROR_CONFIG_PATH", str(GENERATED_CONFIG_PATH)),
            fetch_timeout=cls._safe_float("MIRROR_FETCH_TIMEOUT", 10.0),
            user_agent=os.getenv("MIRROR_USER_AGENT", DEFAULT_USER_AGENT),
            impersonate=os.getenv("MIRROR_IMPERSONATE", "chrome"),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        )

    def validate(self) -> List[str]:
        """Validate settings and return list of error messages (empty = valid)."""
        errors = []
        if self.fetch_timeout <= 0:
            errors.append("MIRROR_FETCH_TIMEOUT must be > 0")
        if not self.user_agent:
            errors.append("MIRROR_USER_AGENT must not be empty")
        if self.log_level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            errors.append(f"LOG_LEVEL '{self.log_level}' is not valid")
        return errors

    def fetch_options(self) -> FetchOptions:
        options = FetchOptions(timeout=self.fetch_timeout, impersonate=self.impersonate or None)
        options.headers["User-Agent"] = self.user_agent
        return options


@dataclass(frozen=True)
class SiteMeta:
    title: str
    description: str
    icon: str

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class PageConfig:
    id: str
    site_meta: SiteMeta
    name: Optional[str] = None

    def to_dict(self) -> dict:
        data = {"id": self.id, "siteMeta": self.site_meta.to_dict()}
        if self.name is not None:
            data["name"] = self.name
        return data


def _is_http_url(value: object) -> bool:
    if not isinstance(value, str):
        return False
    parsed = urlparse(value)
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


def _page_errors(index: int, page: object) -> List[str]:
    prefix = f"pages[{index}]"
    if not isinstance(page, dict):
        return [f"{prefix} must be an object"]
    errors = []
    if not isinstance(page.get("id"), str) or not page.get("id"):
        errors.append(f"{prefix}.id must be a non-empty string")
    if "name" in page and page["name"] is not None and not isinstance(page["name"], str):
        errors.append(f"{prefix}.name must be a string")
    meta = page.get("siteMeta")
    if not isinstance(meta, dict):
        errors.append(f"{prefix}.siteMeta must be an object")
    else:
        for key in ("title", "description", "icon"):
            if not isinstance(meta.get(key), str):
                errors.append(f"{prefix}.siteMeta.{key} must be a string")
    return errors


@dataclass(frozen=True)
class BaseConfig:
    """Process-wide configuration produced by the config generator.

    Loaded once at startup and passed explicitly to whatever needs it.
    """

    base_url: str
    default_page_id: str
    pages: tuple[PageConfig, ...]
    is_placeholder: bool = False
    is_edit_this_page: bool = False
    is_show_star_button: bool = True

    @staticmethod
    def schema_errors(data: object) -> List[str]:
        """Return every schema violation in a raw generated config (empty = valid)."""
        if not isinstance(data, dict):
            return ["configuration must be a JSON object"]
        errors = []
        if not _is_http_url(data.get("baseUrl")):
            errors.append("baseUrl must be an http(s) URL")
        if not isinstance(data.get("defaultPageId"), str) or not data.get("defaultPageId"):
            errors.append("defaultPageId must be a non-empty string")
        pages = data.get("pages")
        if not isinstance(pages, list) or not pages:
            errors.append("pages must be a non-empty array")
        else:
            for index, page in enumerate(pages):
                errors.extend(_page_errors(index, page))
        for flag in ("isPlaceholder", "isEditThisPage", "isShowStarButton"):
            if flag in data and not isinstance(data[flag], bool):
                errors.append(f"{flag} must be a boolean")
        return errors

    @classmethod
    def from_dict(cls, data: dict, source: str = "<dict>") -> "BaseConfig":
        errors = cls.schema_errors(data)
        if errors:
            raise BaseConfigError(source, errors)
        return cls(
            base_url=data["baseUrl"].rstrip("/"),
            default_page_id=data["defaultPageId"],
            pages=tuple(
                PageConfig(
                    id=page["id"],
                    name=page.get("name"),
                    site_meta=SiteMeta(
                        title=page["siteMeta"]["title"],
                        description=page["siteMeta"]["description"],
                        icon=page["siteMeta"]["icon"],
                    ),
                )
                for page in data["pages"]
            ),
            is_placeholder=data.get("isPlaceholder", False),
            is_edit_this_page=data.get("isEditThisPage", False),
            is_show_star_button=data.get("isShowStarButton", True),
        )

    def to_dict(self) -> dict:
        return {
            "baseUrl": self.base_url,
            "defaultPageId": self.default_page_id,
            "pages": [page.to_dict() for page in self.pages],
            "isPlaceholder": self.is_placeholder,
            "isEditThisPage": self.is_edit_this_page,
            "isShowStarButton": self.is_show_star_button,
        }

    def find_page(self, page_id: Optional[str]) -> Optional[PageConfig]:
        for page in self.pages:
            if page.id == page_id:
                return page
        return None


def load_base_config(path: str | Path) -> BaseConfig:
    """Read and validate the generated configuration file.

    Raises BaseConfigError on any problem; callers treat that as fatal.
    """
    config_path = Path(path)
    try:
        data = json.loads(config_path.read_text(encoding="utf-8"))
    except FileNotFoundError:
        raise BaseConfigError(str(config_path), ["file not found"]) from None
    except (OSError, json.JSONDecodeError) as exc:
        raise BaseConfigError(str(config_path), [str(exc)]) from exc

    config = BaseConfig.from_dict(data, source=str(config_path))
    _logger.info(
        "Loaded base configuration from %s (%d pages, default=%s)",
        config_path,
        len(config.pages),
        config.default_page_id,
    )
    return config


def html_endpoint(base_url: str, page_id: str) -> str:
    return f"{base_url}/status/{page_id}"


def api_endpoint(base_url: str, page_id: str) -> str:
    return f"{base_url}/api/status-page/heartbeat/{page_id}"


@dataclass(frozen=True)
class PageScopedConfig:
    """Outward configuration for one page request. Hashable, never mutated."""

    base_url: str
    default_page_id: str
    pages: tuple[PageConfig, ...]
    current_page_id: str
    html_endpoint: str
    api_endpoint: str
    site_meta: SiteMeta
    is_placeholder: bool = False
    is_edit_this_page: bool = False
    is_show_star_button: bool = True

    def to_dict(self) -> dict:
        return {
            "baseUrl": self.base_url,
            "defaultPageId": self.default_page_id,
            "pages": [page.to_dict() for page in self.pages],
            "currentPageId": self.current_page_id,
            "htmlEndpoint": self.html_endpoint,
            "apiEndpoint": self.api_endpoint,
            "siteMeta": self.site_meta.to_dict(),
            "isPlaceholder": self.is_placeholder,
            "isEditThisPage": self.is_edit_this_page,
            "isShowStarButton": self.is_show_star_button,
        }


def get_config_for_page(base: BaseConfig, page_id: Optional[str] = None) -> PageScopedConfig:
    """Derive the configuration for ``page_id``.

    None selects the default page; an unknown id falls back to the first
    configured page. Each call returns an independent value.
    """
    if page_id is None:
        page = base.find_page(base.default_page_id) or base.pages[0]
    else:
        page = base.find_page(page_id)
        if page is None:
            _logger.info("Unknown page id %r, using %r", page_id, base.pages[0].id)
            page = base.pages[0]

    return PageScopedConfig(
        base_url=base.base_url,
        default_page_id=base.default_page_id,
        pages=base.pages,
        current_page_id=page.id,
        html_endpoint=html_endpoint(base.base_url, page.id),
        api_endpoint=api_endpoint(base.base_url, page.id),
        site_meta=page.site_meta,
        is_placeholder=base.is_placeholder,
        is_edit_this_page=base.is_edit_this_page,
        is_show_star_button=base.is_show_star_button,
    )


def resolve_icon_url(icon_path: Optional[str], base_url: Optional[str] = None) -> str:
    """Make an upstream icon path absolute against ``base_url``."""
    if not icon_path:
        return DEFAULT_ICON
    if icon_path.startswith(("http://", "https://", "data:")):
        return icon_path
    if not base_url:
        return icon_path if icon_path.startswith("/") else f"/{icon_path}"
    return f"{base_url.rstrip('/')}/{icon_path.lstrip('/')}"


def setup_logging(level: str = "INFO") -> logging.Logger:
    """Configure application logging with file and console handlers."""
    LOGS_DIR.mkdir(parents=True, exist_ok=True)

    logger = logging.getLogger("kumamirror")
    logger.setLevel(getattr(logging, level, logging.INFO))

    # Avoid adding duplicate handlers on repeated calls
    if logger.handlers:
        return logger

    formatter = logging.Formatter(
        "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    # stderr keeps stdout free for the JSON the CLI prints
    console = logging.StreamHandler(sys.stderr)
    console.setFormatter(formatter)
    logger.addHandler(console)

    file_handler = logging.FileHandler(LOGS_DIR / "kumamirror.log", encoding="utf-8")
    file_handler.setFormatter(formatter)
    logger.addHandler(file_handler)

    return logger
