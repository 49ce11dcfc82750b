"""Tests for kumamirror.maintenance status computation."""

from datetime import datetime, timezone

import pytest

from kumamirror.maintenance import (
    ENDED,
    SCHEDULED,
    UNDER_MAINTENANCE,
    compute_maintenance_status,
    process_maintenance_data,
)
from kumamirror.preload import Maintenance, Timeslot

NOW = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)


def _maintenance(*slots, status=None):
    return Maintenance(
        id=1,
        title="Upgrade",
        description="",
        timeslot_list=[Timeslot(start_date=s, end_date=e) for s, e in slots],
        status=status,
    )


class TestComputeMaintenanceStatus:
    def test_scheduled(self):
        item = _maintenance(("2024-06-02 00:00:00", "2024-06-02 02:00:00"))
        assert compute_maintenance_status(item, NOW) == SCHEDULED

    def test_under_maintenance(self):
        item = _maintenance(("2024-06-01T11:00:00+00:00", "2024-06-01T13:00:00+00:00"))
        assert compute_maintenance_status(item, NOW) == UNDER_MAINTENANCE

    def test_ended(self):
        item = _maintenance(("2024-05-01 00:00:00", "2024-05-01 02:00:00"))
        assert compute_maintenance_status(item, NOW) == ENDED

    def test_start_boundary_is_active(self):
        item = _maintenance(("2024-06-01 12:00:00", "2024-06-01 13:00:00"))
        assert compute_maintenance_status(item, NOW) == UNDER_MAINTENANCE

    def test_end_boundary_is_ended(self):
        item = _maintenance(("2024-06-01 10:00:00", "2024-06-01 12:00:00"))
        assert compute_maintenance_status(item, NOW) == ENDED

    def test_offset_respected(self):
        # 13:30+02:00 is 11:30 UTC, before NOW
        item = _maintenance(("2024-06-01T13:30:00+02:00", "2024-06-01T14:30:00+02:00"))
        assert compute_maintenance_status(item, NOW) == UNDER_MAINTENANCE

    def test_only_first_slot_counts(self):
        item = _maintenance(
            ("2024-05-01 00:00:00", "2024-05-01 02:00:00"),
            ("2024-06-01 11:00:00", "2024-06-01 13:00:00"),
        )
        assert compute_maintenance_status(item, NOW) == ENDED

    def test_no_slots(self):
        assert compute_maintenance_status(_maintenance(), NOW) is None

    @pytest.mark.parametrize(
        "slot",
        [
            ("garbage", "2024-06-01 13:00:00"),
            ("2024-06-01 11:00:00", None),
            ("", ""),
        ],
    )
    def test_unparseable_slot(self, slot):
        assert compute_maintenance_status(_maintenance(slot), NOW) is None

    def test_defaults_to_current_time(self):
        assert compute_maintenance_status(
            _maintenance(("2000-01-01 00:00:00", "2000-01-01 02:00:00"))
        ) == ENDED
        assert compute_maintenance_status(
            _maintenance(("2999-01-01 00:00:00", "2999-01-01 02:00:00"))
        ) == SCHEDULED


class TestProcessMaintenanceData:
    def test_statuses_recomputed(self):
        items = [
            _maintenance(("2024-05-01 00:00:00", "2024-05-01 02:00:00"), status=SCHEDULED),
            _maintenance(status=ENDED),
        ]
        processed = process_maintenance_data(items, NOW)
        assert [m.status for m in processed] == [ENDED, None]
        assert processed[1].to_dict()["status"] == "undated"

    def test_input_not_mutated(self):
        items = [_maintenance(("2024-06-02 00:00:00", "2024-06-02 02:00:00"))]
        processed = process_maintenance_data(items, NOW)
        assert processed[0].status == SCHEDULED
        assert items[0].status is None

    def test_empty(self):
        assert process_maintenance_data([], NOW) == []
