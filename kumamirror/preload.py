"""Typed preload-data aggregate and its parser/validator."""

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Optional

from kumamirror.errors import ApiDataError, SanitizationError, ValidationError, truncate
from kumamirror.timestamps import ensure_utc_timezone

logger = logging.getLogger("kumamirror.preload")

THEMES = ("light", "dark", "system")
DEFAULT_THEME = "system"
DEFAULT_ICON = "/icon.svg"
REQUIRED_CONFIG_FIELDS = ("slug", "title", "description", "icon", "theme")
NON_NULL_CONFIG_FIELDS = ("slug", "title", "theme")


def normalize_theme(theme: str) -> str:
    return theme if theme in THEMES else DEFAULT_THEME


def _extra(data: dict, known: tuple[str, ...]) -> dict:
    return {k: v for k, v in data.items() if k not in known}


def uptime_key(monitor_id: int, period_hours: int) -> str:
    """Build the ``"<monitorId>_<periodHours>"`` key used by ``uptimeList``."""
    return f"{monitor_id}_{period_hours}"


def parse_uptime_key(key: str) -> tuple[int, int]:
    """Split an ``uptimeList`` key into ``(monitor_id, period_hours)``."""
    monitor_id, sep, period = str(key).partition("_")
    try:
        if not sep:
            raise ValueError(key)
        return int(monitor_id), int(period)
    except ValueError:
        raise ApiDataError(f"Malformed uptime key: {key!r}") from None


@dataclass
class StatusPageConfig:
    """Upstream status-page settings. Unknown upstream keys live in ``extra``."""

    _KNOWN = REQUIRED_CONFIG_FIELDS

    slug: str
    title: str
    description: str
    icon: str
    theme: str
    extra: dict = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Any) -> "StatusPageConfig":
        if not isinstance(data, dict):
            raise ValidationError("config", "Configuration data is missing")

        for name in REQUIRED_CONFIG_FIELDS:
            if name not in data:
                raise ValidationError(name, f"Configuration is missing required field: {name}")
            value = data[name]
            if value is None and name not in NON_NULL_CONFIG_FIELDS:
                continue
            if not isinstance(value, str):
                raise ValidationError(name, f"Configuration field {name} must be a string")

        return cls(
            slug=data["slug"],
            title=data["title"],
            description=data["description"] or "",
            icon=data["icon"] or DEFAULT_ICON,
            theme=normalize_theme(data["theme"]),
            extra=_extra(data, cls._KNOWN),
        )

    def to_dict(self) -> dict:
        return {
            **self.extra,
            "slug": self.slug,
            "title": self.title,
            "description": self.description,
            "icon": self.icon,
            "theme": self.theme,
        }


@dataclass
class Incident:
    _KNOWN = ("id", "title", "content", "style", "createdDate", "lastUpdatedDate")

    id: Optional[int]
    title: str
    content: str
    style: str
    created_date: Optional[str]
    last_updated_date: Optional[str]
    extra: dict = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict) -> "Incident":
        return cls(
            id=data.get("id"),
            title=data.get("title") or "",
            content=data.get("content") or "",
            style=data.get("style") or "primary",
            created_date=ensure_utc_timezone(data.get("createdDate")),
            last_updated_date=ensure_utc_timezone(data.get("lastUpdatedDate")),
            extra=_extra(data, cls._KNOWN),
        )

    def to_dict(self) -> dict:
        return {
            **self.extra,
            "id": self.id,
            "title": self.title,
            "content": self.content,
            "style": self.style,
            "createdDate": self.created_date,
            "lastUpdatedDate": self.last_updated_date,
        }


@dataclass
class Timeslot:
    start_date: Optional[str]
    end_date: Optional[str]

    def to_dict(self) -> dict:
        return {"startDate": self.start_date, "endDate": self.end_date}


@dataclass
class Maintenance:
    """A maintenance window. ``status`` is derived, see kumamirror.maintenance."""

    _KNOWN = ("id", "title", "description", "timeslotList", "status")

    id: Optional[int]
    title: str
    description: str
    timeslot_list: list[Timeslot] = field(default_factory=list)
    status: Optional[str] = None
    extra: dict = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Any) -> "Maintenance":
        if not isinstance(data, dict):
            raise ApiDataError(f"Maintenance entry must be an object, got {type(data).__name__}")
        slots = data.get("timeslotList") or []
        if not isinstance(slots, list):
            raise ApiDataError("Maintenance timeslotList must be an array")
        return cls(
            id=data.get("id"),
            title=data.get("title") or "",
            description=data.get("description") or "",
            timeslot_list=[
                Timeslot(
                    start_date=ensure_utc_timezone(slot.get("startDate")),
                    end_date=ensure_utc_timezone(slot.get("endDate")),
                )
                for slot in slots
                if isinstance(slot, dict)
            ],
            extra=_extra(data, cls._KNOWN),
        )

    def to_dict(self) -> dict:
        return {
            **self.extra,
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "timeslotList": [slot.to_dict() for slot in self.timeslot_list],
            "status": self.status or "undated",
        }


@dataclass
class Monitor:
    _KNOWN = ("id", "name", "type", "tags")

    id: int
    name: str
    type: Optional[str] = None
    tags: list = field(default_factory=list)
    extra: dict = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Any) -> "Monitor":
        if not isinstance(data, dict):
            raise ValidationError("monitorList", "Monitor entry must be an object")
        try:
            monitor_id = int(data["id"])
        except (KeyError, TypeError, ValueError):
            raise ValidationError("monitorList.id", f"Monitor id must be an integer: {data.get('id')!r}") from None
        tags = data.get("tags") or []
        return cls(
            id=monitor_id,
            name=data.get("name") or "",
            type=data.get("type"),
            tags=tags if isinstance(tags, list) else [],
            extra=_extra(data, cls._KNOWN),
        )

    def to_dict(self) -> dict:
        return {**self.extra, "id": self.id, "name": self.name, "type": self.type, "tags": self.tags}


@dataclass
class MonitorGroup:
    _KNOWN = ("id", "name", "weight", "monitorList")

    id: Optional[int]
    name: str
    weight: Optional[int] = None
    monitor_list: list[Monitor] = field(default_factory=list)
    extra: dict = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Any) -> "MonitorGroup":
        if not isinstance(data, dict):
            raise ValidationError("publicGroupList", "Monitor group must be an object")
        monitors = data.get("monitorList") or []
        if not isinstance(monitors, list):
            raise ValidationError("monitorList", "Monitor group monitorList must be an array")
        return cls(
            id=data.get("id"),
            name=data.get("name") or "",
            weight=data.get("weight"),
            monitor_list=[Monitor.from_dict(m) for m in monitors],
            extra=_extra(data, cls._KNOWN),
        )

    def to_dict(self) -> dict:
        return {
            **self.extra,
            "id": self.id,
            "name": self.name,
            "weight": self.weight,
            "monitorList": [m.to_dict() for m in self.monitor_list],
        }


@dataclass
class Heartbeat:
    status: int
    time: str
    ping: Optional[float] = None
    duration: Optional[float] = None
    msg: str = ""

    @classmethod
    def from_dict(cls, data: Any) -> "Heartbeat":
        if not isinstance(data, dict) or "status" not in data or "time" not in data:
            raise ApiDataError(f"Heartbeat record is malformed: {truncate(repr(data), 80)}")
        return cls(
            status=data["status"],
            time=data["time"],
            ping=data.get("ping"),
            duration=data.get("duration"),
            msg=data.get("msg") or "",
        )

    def to_dict(self) -> dict:
        return {
            "status": self.status,
            "time": self.time,
            "ping": self.ping,
            "duration": self.duration,
            "msg": self.msg,
        }


@dataclass
class MonitoringData:
    """Heartbeat series keyed by monitor id and uptime ratios keyed by uptime_key()."""

    heartbeat_list: dict[int, list[Heartbeat]] = field(default_factory=dict)
    uptime_list: dict[str, float] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Any) -> "MonitoringData":
        if not isinstance(data, dict):
            raise ApiDataError("Monitoring data must be an object")
        raw_heartbeats = data.get("heartbeatList", {})
        raw_uptimes = data.get("uptimeList", {})
        if not isinstance(raw_heartbeats, dict):
            raise ApiDataError("heartbeatList must be an object")
        if not isinstance(raw_uptimes, dict):
            raise ApiDataError("uptimeList must be an object")

        heartbeats: dict[int, list[Heartbeat]] = {}
        for key, records in raw_heartbeats.items():
            try:
                monitor_id = int(key)
            except (TypeError, ValueError):
                raise ApiDataError(f"Malformed heartbeat monitor id: {key!r}") from None
            if not isinstance(records, list):
                raise ApiDataError(f"Heartbeats for monitor {key} must be an array")
            heartbeats[monitor_id] = [Heartbeat.from_dict(r) for r in records]

        uptimes: dict[str, float] = {}
        for key, ratio in raw_uptimes.items():
            monitor_id, period = parse_uptime_key(key)
            if isinstance(ratio, bool) or not isinstance(ratio, (int, float)):
                raise ApiDataError(f"Uptime for {key} must be a number")
            uptimes[uptime_key(monitor_id, period)] = min(max(float(ratio), 0.0), 1.0)

        return cls(heartbeat_list=heartbeats, uptime_list=uptimes)

    def to_dict(self) -> dict:
        return {
            "heartbeatList": {
                str(monitor_id): [h.to_dict() for h in beats]
                for monitor_id, beats in self.heartbeat_list.items()
            },
            "uptimeList": dict(self.uptime_list),
        }


@dataclass
class PreloadData:
    """Everything extracted from one scrape of an upstream status page.

    ``maintenance_issue`` and ``monitor_groups_issue`` are set when the
    matching upstream list was present but unusable; the list itself is
    then empty.
    """

    config: StatusPageConfig
    incident: Optional[Incident] = None
    maintenance_list: list[Maintenance] = field(default_factory=list)
    monitor_groups: list[MonitorGroup] = field(default_factory=list)
    data: MonitoringData = field(default_factory=MonitoringData)
    maintenance_issue: Optional[str] = None
    monitor_groups_issue: Optional[str] = None


def parse_sanitized(text: str) -> dict:
    """Strictly parse sanitized payload text into a top-level object."""
    try:
        parsed = json.loads(text)
    except json.JSONDecodeError as exc:
        raise SanitizationError(
            f"Sanitized payload is not valid JSON: {exc.msg} at offset {exc.pos}",
            snippet=text[max(exc.pos - 40, 0):exc.pos + 40],
        ) from exc
    if not isinstance(parsed, dict):
        raise ValidationError("<root>", "Preload data must be a JSON object")
    return parsed


def _parse_incident(raw: Any) -> Optional[Incident]:
    if raw is None:
        return None
    if not isinstance(raw, dict):
        logger.warning("Ignoring malformed incident: %s", truncate(repr(raw)))
        return None
    return Incident.from_dict(raw)


def _parse_maintenance(raw: Any) -> tuple[list[Maintenance], Optional[str]]:
    if raw is None:
        return [], None
    if not isinstance(raw, list):
        return [], "Maintenance list data must be an array"
    try:
        return [Maintenance.from_dict(item) for item in raw], None
    except ApiDataError as exc:
        return [], str(exc)


def _parse_groups(raw: Any) -> tuple[list[MonitorGroup], Optional[str]]:
    if raw is None:
        return [], None
    if not isinstance(raw, list):
        return [], "publicGroupList must be an array"
    try:
        return [MonitorGroup.from_dict(group) for group in raw], None
    except ValidationError as exc:
        return [], str(exc)


def extract_preload_data(text: str) -> PreloadData:
    """Parse sanitized preload text and validate it into a PreloadData.

    Raises SanitizationError when the text is not strict JSON and
    ValidationError when the site config is missing or malformed.
    """
    raw = parse_sanitized(text)
    config = StatusPageConfig.from_dict(raw.get("config"))
    maintenance_list, maintenance_issue = _parse_maintenance(raw.get("maintenanceList"))
    monitor_groups, groups_issue = _parse_groups(
        raw.get("publicGroupList", raw.get("monitorGroups"))
    )

    data = MonitoringData()
    if isinstance(raw.get("data"), dict):
        try:
            data = MonitoringData.from_dict(raw["data"])
        except ApiDataError as exc:
            logger.warning("Ignoring embedded monitoring data: %s", exc)

    return PreloadData(
        config=config,
        incident=_parse_incident(raw.get("incident")),
        maintenance_list=maintenance_list,
        monitor_groups=monitor_groups,
        data=data,
        maintenance_issue=maintenance_issue,
        monitor_groups_issue=groups_issue,
    )
