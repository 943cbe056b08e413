from __future__ import annotations

import datetime as dt

import pytest

from crewtrack import productivity
from crewtrack.aggregator import SubtaskAggregator
from crewtrack.models import UnitType
from crewtrack.productivity import PaceKind, PaceStatus


def _tiling_task(make_task, add_entry, now, **fields):
    fields.setdefault("unit", UnitType.SQUARE_METERS)
    task = make_task("Tile bathroom", **fields)
    add_entry(task, now - dt.timedelta(hours=2), now, personnel=2)
    return task


def test_quantity_progress_and_remaining(make_task):
    task = make_task(expected_quantity=60, quantity=45)
    assert productivity.quantity_progress(task) == pytest.approx(0.75)
    assert productivity.quantity_remaining(task) == pytest.approx(15)


def test_quantity_progress_is_not_clamped(make_task):
    task = make_task(expected_quantity=40, quantity=50)
    assert productivity.quantity_progress(task) == pytest.approx(1.25)
    assert productivity.quantity_remaining(task) == pytest.approx(-10)


def test_quantity_progress_undefined_without_target(make_task):
    task = make_task(quantity=10)
    assert productivity.quantity_progress(task) is None
    assert not productivity.has_quantity_progress(task)


def test_live_rate_uses_person_hours(make_task, add_entry, now):
    task = _tiling_task(make_task, add_entry, now, quantity=20)
    assert productivity.live_productivity_rate(task) == pytest.approx(5.0)
    assert productivity.units_per_hour(task) is None

    task.completed_date = now
    assert productivity.units_per_hour(task) == pytest.approx(5.0)
    assert productivity.has_productivity_data(task)


def test_rates_undefined_without_data(make_task, add_entry, now):
    assert productivity.live_productivity_rate(make_task(unit=UnitType.METERS, quantity=10)) is None
    unitless = _tiling_task(make_task, add_entry, now, unit=UnitType.NONE, quantity=20)
    assert productivity.live_productivity_rate(unitless) is None


def test_required_rate(make_task, add_entry, now):
    task = _tiling_task(
        make_task,
        add_entry,
        now,
        quantity=20,
        expected_quantity=60,
        estimated_seconds=6 * 3600,
        expected_personnel_count=2,
    )
    # 40 m² left over 4 h × 2 people.
    assert productivity.required_productivity_rate(task, now) == pytest.approx(5.0)


def test_required_rate_undefined_when_quantity_done(make_task, add_entry, now):
    task = _tiling_task(
        make_task, add_entry, now, quantity=60, expected_quantity=60, estimated_seconds=6 * 3600
    )
    assert productivity.required_productivity_rate(task, now) is None


def test_required_rate_undefined_when_budget_spent(make_task, add_entry, now):
    task = _tiling_task(
        make_task, add_entry, now, quantity=10, expected_quantity=60, estimated_seconds=2 * 3600
    )
    assert productivity.required_productivity_rate(task, now) is None


@pytest.mark.parametrize(
    "live, required, expected",
    [
        (6.0, 5.0, PaceStatus(PaceKind.AHEAD, 20)),
        (5.5, 5.0, PaceStatus(PaceKind.AHEAD, 10)),
        (5.0, 5.0, PaceStatus(PaceKind.ON_PACE)),
        (4.5, 5.0, PaceStatus(PaceKind.ON_PACE)),
        (2.5, 5.0, PaceStatus(PaceKind.BEHIND, 50)),
    ],
)
def test_pace_buckets(live, required, expected):
    assert productivity.pace_status_for(live, required) == expected


def test_pace_undefined_without_both_rates():
    assert productivity.pace_status_for(None, 5.0) is None
    assert productivity.pace_status_for(5.0, None) is None


def test_pace_labels():
    assert PaceStatus(PaceKind.AHEAD, 12).label == "12% ahead"
    assert PaceStatus(PaceKind.BEHIND, 7).label == "7% behind"
    assert PaceStatus(PaceKind.ON_PACE).label == "On pace"


def test_pace_status_for_task_with_aggregator(make_task, add_entry, now):
    task = _tiling_task(
        make_task,
        add_entry,
        now,
        quantity=24,
        expected_quantity=64,
        estimated_seconds=6 * 3600,
        expected_personnel_count=2,
    )
    # Live 24 / 4 = 6; required 40 / 8 = 5.
    status = productivity.pace_status(task, now, SubtaskAggregator())
    assert status == PaceStatus(PaceKind.AHEAD, 20)


def test_expected_rate_prefers_custom(make_task):
    assert productivity.expected_productivity_rate(make_task(unit=UnitType.PIECES)) == 2.0
    custom = make_task(unit=UnitType.PIECES, custom_productivity_rate=3.5)
    assert productivity.expected_productivity_rate(custom) == 3.5
    assert productivity.expected_productivity_rate(make_task()) is None


def test_minimum_required_rate(make_task):
    task = make_task(
        unit=UnitType.METERS, expected_quantity=80, estimated_seconds=4 * 3600, expected_personnel_count=2
    )
    assert productivity.minimum_required_productivity_rate(task) == pytest.approx(10.0)


def test_live_insights_need_a_rate(make_task, add_entry, now):
    assert not productivity.has_live_productivity_insights(make_task(unit=UnitType.METERS), now)
    task = _tiling_task(make_task, add_entry, now, quantity=10)
    assert productivity.has_live_productivity_insights(task, now)
