"""Maintenance lifecycle status derived from timeslot windows."""

import logging
from dataclasses import replace
from datetime import datetime, timezone
from typing import Optional

from kumamirror.preload import Maintenance
from kumamirror.timestamps import parse_timestamp

logger = logging.getLogger("kumamirror.maintenance")

SCHEDULED = "scheduled"
UNDER_MAINTENANCE = "under-maintenance"
ENDED = "ended"


def compute_maintenance_status(
    maintenance: Maintenance, now: Optional[datetime] = None
) -> Optional[str]:
    """Return the status of ``maintenance`` at ``now``.

    Only the first timeslot counts. Returns None when there is no timeslot
    or its bounds cannot be parsed.
    """
    if not maintenance.timeslot_list:
        return None

    slot = maintenance.timeslot_list[0]
    start = parse_timestamp(slot.start_date)
    end = parse_timestamp(slot.end_date)
    if start is None or end is None:
        logger.debug(
            "Maintenance %s has an unparseable timeslot (%s - %s)",
            maintenance.id,
            slot.start_date,
            slot.end_date,
        )
        return None

    now = now or datetime.now(timezone.utc)
    if now < start:
        return SCHEDULED
    if now < end:
        return UNDER_MAINTENANCE
    return ENDED


def process_maintenance_data(
    maintenance_list: list[Maintenance], now: Optional[datetime] = None
) -> list[Maintenance]:
    """Return copies of ``maintenance_list`` with ``status`` recomputed."""
    now = now or datetime.now(timezone.utc)
    return [
        replace(item, status=compute_maintenance_status(item, now))
        for item in maintenance_list
    ]
