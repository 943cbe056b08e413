from __future__ import annotations

import datetime as dt

import pytest

from crewtrack import analytics
from crewtrack.analytics import KPIDateRange, KPIHealthStatus, TaskTypeAnalytics
from crewtrack.models import UnitType


def _completed(make_task, add_entry, now, hours_spent, estimate_hours, task_type="tiling", **fields):
    task = make_task(
        task_type=task_type,
        estimated_seconds=int(estimate_hours * 3600),
        completed_date=now,
        **fields,
    )
    add_entry(task, now - dt.timedelta(hours=hours_spent), now)
    return task


def test_task_type_needs_three_samples(make_task, add_entry, now):
    tasks = [_completed(make_task, add_entry, now, 2, 2) for _ in range(2)]
    assert TaskTypeAnalytics.calculate("tiling", tasks, now) is None

    tasks.append(_completed(make_task, add_entry, now, 2, 2))
    result = TaskTypeAnalytics.calculate("tiling", tasks, now)
    assert result is not None
    assert result.sample_size == 3
    assert result.is_significant


def test_task_type_ignores_other_types_and_open_tasks(make_task, add_entry, now):
    tasks = [_completed(make_task, add_entry, now, 2, 2) for _ in range(2)]
    tasks.append(_completed(make_task, add_entry, now, 2, 2, task_type="painting"))
    unfinished = make_task(task_type="tiling", estimated_seconds=3600)
    add_entry(unfinished, now - dt.timedelta(hours=1), now)
    tasks.append(unfinished)

    assert TaskTypeAnalytics.calculate("tiling", tasks, now) is None


def test_task_type_overrun(make_task, add_entry, now):
    tasks = [
        _completed(make_task, add_entry, now, 4, 2),
        _completed(make_task, add_entry, now, 4, 3),
        _completed(make_task, add_entry, now, 4, 4),
    ]
    result = TaskTypeAnalytics.calculate("tiling", tasks, now)

    assert result.avg_accuracy == pytest.approx(0.75)
    assert result.typical_overrun_percentage == 25
    assert result.variance_description == "typically 25% over estimate"
    assert result.adjusted_effort(3.0) == pytest.approx(4.0)
    assert result.avg_productivity_rate is None


def test_task_type_productivity_average(make_task, add_entry, now):
    tasks = [
        _completed(make_task, add_entry, now, 2, 2, unit=UnitType.SQUARE_METERS, quantity=20),
        _completed(make_task, add_entry, now, 2, 2, unit=UnitType.SQUARE_METERS, quantity=40),
        _completed(make_task, add_entry, now, 2, 2),
    ]
    result = TaskTypeAnalytics.calculate("tiling", tasks, now)

    assert result.avg_productivity_rate == pytest.approx(15.0)
    assert result.variance_description == "typically on target"


def test_task_type_analytics_groups_by_type(make_task, add_entry, now):
    tasks = [_completed(make_task, add_entry, now, 1, 1) for _ in range(3)]
    tasks += [_completed(make_task, add_entry, now, 1, 1, task_type="painting") for _ in range(2)]

    assert list(analytics.task_type_analytics(tasks, now)) == ["tiling"]


def test_efficiency_metrics(make_task, add_entry, now):
    tasks = [
        _completed(make_task, add_entry, now, 1, 2),
        _completed(make_task, add_entry, now, 2, 2),
        _completed(make_task, add_entry, now, 3, 2),
        make_task(completed_date=now),
    ]
    metrics = analytics.efficiency_metrics(tasks, now)

    assert metrics.total_tasks_analyzed == 3
    assert metrics.tasks_under_estimate == 1
    assert metrics.tasks_on_estimate == 1
    assert metrics.tasks_over_estimate == 1
    assert metrics.efficiency_score == pytest.approx(200 / 3)
    assert metrics.average_time_delta == 0


def test_accuracy_metrics(make_task, add_entry, now):
    tasks = [
        _completed(make_task, add_entry, now, 1, 1),
        _completed(make_task, add_entry, now, 3, 2),
    ]
    metrics = analytics.accuracy_metrics(tasks, now)

    assert metrics.mean_absolute_percentage_error == pytest.approx(25.0)
    assert metrics.accuracy_score == pytest.approx(75.0)
    assert metrics.estimates_within_10_percent == 1
    assert metrics.estimates_within_25_percent == 1


def test_accuracy_score_clamps_at_zero():
    metrics = analytics.EstimateAccuracyMetrics(mean_absolute_percentage_error=180.0, total_tasks_analyzed=1)
    assert metrics.accuracy_score == 0.0


def test_empty_metrics_score_zero(now):
    assert analytics.efficiency_metrics([], now).efficiency_score == 0.0
    assert analytics.accuracy_metrics([], now).accuracy_score == 0.0


def test_utilization(make_task, add_entry, now):
    task = make_task()
    add_entry(task, now - dt.timedelta(hours=4), now - dt.timedelta(hours=2), personnel=2)
    add_entry(task, now - dt.timedelta(days=30), now - dt.timedelta(days=30) + dt.timedelta(hours=1))
    date_range = KPIDateRange.custom(now - dt.timedelta(days=1), now)

    metrics = analytics.utilization_metrics(task.time_entries, date_range, 8.0, "UTC")

    assert metrics.total_time_entries == 1
    assert metrics.total_person_hours_tracked == pytest.approx(4.0)
    assert metrics.active_contributors == 2
    assert metrics.total_person_hours_available == pytest.approx(16.0)
    assert metrics.utilization_percentage == pytest.approx(25.0)
    assert metrics.is_under_utilized


@pytest.mark.parametrize(
    "score, expected",
    [
        (80, KPIHealthStatus.EXCELLENT),
        (79.9, KPIHealthStatus.GOOD),
        (60, KPIHealthStatus.GOOD),
        (40, KPIHealthStatus.FAIR),
        (20, KPIHealthStatus.POOR),
        (19.9, KPIHealthStatus.CRITICAL),
    ],
)
def test_kpi_health_buckets(score, expected):
    assert KPIHealthStatus.for_score(score) is expected


def test_overall_score_caps_utilization(now):
    date_range = KPIDateRange.custom(now - dt.timedelta(days=1), now)
    result = analytics.KPIResult(
        date_range=date_range,
        calculated_at=now,
        efficiency=analytics.TaskEfficiencyMetrics(tasks_under_estimate=1, total_tasks_analyzed=1),
        accuracy=analytics.EstimateAccuracyMetrics(mean_absolute_percentage_error=0.0, total_tasks_analyzed=1),
        utilization=analytics.TeamUtilizationMetrics(
            total_person_hours_tracked=24.0,
            total_person_hours_available=8.0,
            utilization_rate=3.0,
            active_contributors=1,
            average_hours_per_contributor=24.0,
            total_time_entries=3,
        ),
        total_tasks=1,
        total_completed_tasks=1,
    )

    assert result.overall_health_score == pytest.approx(100.0)
    assert result.health_status is KPIHealthStatus.EXCELLENT
    assert result.utilization.is_over_utilized
    snapshot = analytics.KPISnapshot.from_result(result)
    assert snapshot.overall_health_score == pytest.approx(100.0)


def test_calculate_kpis_filters_by_completion_date(make_task, add_entry, now):
    recent = _completed(make_task, add_entry, now, 2, 2)
    old = _completed(make_task, add_entry, now - dt.timedelta(days=40), 5, 1)
    open_task = make_task()
    date_range = KPIDateRange.custom(now - dt.timedelta(days=7), now)
    entries = list(recent.time_entries) + list(old.time_entries)

    result = analytics.calculate_kpis([recent, old, open_task], entries, date_range, now, 8.0, tz="UTC")

    assert result.total_tasks == 3
    assert result.total_completed_tasks == 1
    assert result.efficiency.efficiency_score == pytest.approx(100.0)
    assert result.accuracy.accuracy_score == pytest.approx(100.0)


def test_compare_kpis_rewards_moving_toward_ideal_utilization(now):
    def _result(utilization_rate: float) -> analytics.KPIResult:
        return analytics.KPIResult(
            date_range=KPIDateRange.custom(now - dt.timedelta(days=1), now),
            calculated_at=now,
            efficiency=analytics.TaskEfficiencyMetrics(),
            accuracy=analytics.EstimateAccuracyMetrics(),
            utilization=analytics.TeamUtilizationMetrics(0.0, 8.0, utilization_rate, 1, 0.0, 0),
            total_tasks=0,
            total_completed_tasks=0,
        )

    delta = analytics.compare_kpis(_result(0.80), _result(0.50))
    assert delta["utilizationImprovement"] == pytest.approx(30.0)


def test_date_range_presets():
    moment = dt.datetime(2024, 3, 14, 15, 30, tzinfo=dt.timezone.utc)

    assert KPIDateRange.today(moment, "UTC").start == dt.datetime(2024, 3, 14, tzinfo=dt.timezone.utc)
    assert KPIDateRange.this_week(moment, "UTC").start == dt.datetime(2024, 3, 11, tzinfo=dt.timezone.utc)
    assert KPIDateRange.this_month(moment, "UTC").start == dt.datetime(2024, 3, 1, tzinfo=dt.timezone.utc)


def test_single_task_efficiency(make_task, add_entry, now):
    quick = _completed(make_task, add_entry, now, 1, 2)
    slow = _completed(make_task, add_entry, now, 3, 2)

    assert analytics.task_efficiency_ratio(quick, now) == pytest.approx(0.5)
    assert analytics.was_completed_within_estimate(quick, now)
    assert not analytics.was_completed_within_estimate(slow, now)
    assert analytics.task_efficiency_ratio(make_task(), now) is None
