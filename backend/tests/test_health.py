from __future__ import annotations

import datetime as dt

import pytest

from crewtrack import health
from crewtrack.aggregator import SubtaskAggregator
from crewtrack.health import DateConflict, ProjectHealthStatus
from crewtrack.models import Priority, ProjectStatus


def _day(day: int) -> dt.datetime:
    return dt.datetime(2024, 3, day, 8, 0, tzinfo=dt.timezone.utc)


@pytest.mark.parametrize(
    "time_progress, planning_progress, completion, expected",
    [
        (1.01, None, None, ProjectHealthStatus.CRITICAL),
        (None, 1.25, None, ProjectHealthStatus.CRITICAL),
        (0.95, None, 0.4, ProjectHealthStatus.CRITICAL),
        (0.95, None, 0.6, ProjectHealthStatus.WARNING),
        (None, 1.15, None, ProjectHealthStatus.WARNING),
        (0.75, None, 0.3, ProjectHealthStatus.WARNING),
        (0.75, None, 0.5, ProjectHealthStatus.ON_TRACK),
        (0.5, 1.0, 0.9, ProjectHealthStatus.ON_TRACK),
        (None, None, None, ProjectHealthStatus.ON_TRACK),
    ],
)
def test_classify_thresholds(time_progress, planning_progress, completion, expected):
    assert health.classify_health(time_progress, planning_progress, completion) is expected


def test_overdue_task_is_critical_even_when_ratios_are_healthy():
    status = health.classify_health(0.1, 0.5, 0.9, overdue_count=1)
    assert status is ProjectHealthStatus.CRITICAL


@pytest.mark.parametrize("counter", ["blocked_count", "missing_estimate_count", "date_conflict_count"])
def test_soft_issues_raise_warning(counter):
    status = health.classify_health(0.1, 0.5, 0.9, **{counter: 1})
    assert status is ProjectHealthStatus.WARNING


def test_evaluate_project_with_overdue_task(make_project, make_task, now):
    project = make_project(estimated_hours=100, status=ProjectStatus.IN_PROGRESS)
    make_task("Late", project=project, due_date=now - dt.timedelta(days=1), estimated_seconds=3600)

    report = health.evaluate_project(project, now)

    assert report.overdue_count == 1
    assert report.status is ProjectHealthStatus.CRITICAL


def test_blocked_task_scenario(make_project, make_task, add_entry, now):
    project = make_project(estimated_hours=100, status=ProjectStatus.IN_PROGRESS)
    task = make_task("Drywall", project=project, estimated_seconds=36000, has_custom_estimate=True)
    task.depends_on.append(make_task("Inspection", project=project, estimated_seconds=3600))
    add_entry(task, now - dt.timedelta(hours=9), now)

    report = health.evaluate_project(project, now, SubtaskAggregator())

    assert report.time_progress == pytest.approx(0.09)
    assert report.planning_progress == pytest.approx(0.11)
    assert report.blocked_count == 1
    assert report.status is ProjectHealthStatus.WARNING


def test_budget_burn_is_critical(make_project, make_task, add_entry, now):
    project = make_project(estimated_hours=10, status=ProjectStatus.IN_PROGRESS)
    task = make_task("Roof", project=project, estimated_seconds=8 * 3600)
    make_task("Gutters", project=project, estimated_seconds=3600)
    add_entry(task, now - dt.timedelta(hours=9, minutes=30), now)

    report = health.evaluate_project(project, now)

    # 9.5 h of 10 h with none of two tasks done.
    assert report.time_progress == pytest.approx(0.95)
    assert report.completion_ratio == 0
    assert report.status is ProjectHealthStatus.CRITICAL


def test_missing_estimates_skip_planning_projects_and_low_priority(make_project, make_task, now):
    planning = make_project(status=ProjectStatus.PLANNING)
    make_task("Unsized", project=planning)
    assert health.evaluate_project(planning, now).missing_estimate_count == 0

    running = make_project(status=ProjectStatus.IN_PROGRESS)
    make_task("Unsized", project=running)
    make_task("Someday", project=running, priority=int(Priority.LOW))
    report = health.evaluate_project(running, now)
    assert report.missing_estimate_count == 1
    assert report.status is ProjectHealthStatus.WARNING


def test_subtask_time_counts_once(make_project, make_task, add_entry, now):
    project = make_project(estimated_hours=10)
    parent = make_task("Parent", project=project)
    child = make_task("Child", parent=parent, project=project)
    add_entry(child, now - dt.timedelta(hours=2), now)

    assert health.actual_hours(project, now) == pytest.approx(2.0)


def test_planning_variance(make_project, make_task):
    project = make_project(estimated_hours=5)
    make_task("Big", project=project, estimated_seconds=8 * 3600)

    assert health.planned_hours(project) == pytest.approx(8.0)
    assert health.planning_variance(project) == pytest.approx(3.0)
    assert health.is_over_planned(project)


def test_date_conflicts_are_independent(make_project, make_task):
    project = make_project(start_date=_day(10), due_date=_day(20))
    task = make_task("Early and late", project=project, start_date=_day(5), end_date=_day(25))

    assert health.date_conflicts(task) == [DateConflict.STARTS_BEFORE_PROJECT, DateConflict.ENDS_AFTER_PROJECT]
    assert health.date_conflict_messages(task) == [
        "starts before event (Mar 05, 2024 vs Mar 10, 2024)",
        "ends after event (Mar 25, 2024 vs Mar 20, 2024)",
    ]


def test_task_entirely_outside_window(make_project, make_task):
    project = make_project(start_date=_day(10), due_date=_day(20))
    task = make_task("Later", project=project, start_date=_day(22), end_date=_day(24))

    assert health.date_conflicts(task) == [DateConflict.ENDS_AFTER_PROJECT, DateConflict.STARTS_AFTER_PROJECT]


def test_no_conflicts_without_project(make_task):
    assert health.date_conflicts(make_task(start_date=_day(1))) == []


def test_fit_to_project_is_idempotent(make_project, make_task):
    project = make_project(start_date=_day(10), due_date=_day(20))
    task = make_task(project=project, start_date=_day(5), end_date=_day(25))

    assert task.fit_to_project()
    assert task.start_date == _day(10)
    assert task.end_date == _day(20)
    assert not task.fit_to_project()
    assert not health.has_date_conflicts(task)


def test_expand_project_is_idempotent(make_project, make_task):
    project = make_project(start_date=_day(10), due_date=_day(20))
    task = make_task(project=project, start_date=_day(5), end_date=_day(25))

    assert project.expand_to_include(task)
    assert project.start_date == _day(5)
    assert project.due_date == _day(25)
    assert not project.expand_to_include(task)


def test_attention_needed(make_task, add_entry, now):
    overdue = make_task("Overdue", due_date=now - dt.timedelta(hours=1), estimated_seconds=3600)
    nearing = make_task("Nearing", estimated_seconds=3600)
    add_entry(nearing, now - dt.timedelta(minutes=50), now)
    unsized = make_task("Unsized")
    blocked = make_task("Blocked", estimated_seconds=3600)
    blocked.depends_on.append(unsized)
    done = make_task("Done", completed_date=now)

    result = health.attention_needed([overdue, nearing, unsized, blocked, done], now)

    assert result.overdue_tasks == [overdue]
    assert result.tasks_nearing_estimate == [nearing]
    assert result.tasks_without_estimates == [unsized]
    assert result.blocked_tasks == [blocked]
    assert result.total_issue_count == 4
    assert result.has_issues


def test_projects_needing_attention_orders_by_health(make_project, make_task, now):
    calm = make_project("Calm", status=ProjectStatus.IN_PROGRESS)
    make_task("Blocked", project=calm, estimated_seconds=60).depends_on.append(
        make_task("Dep", project=calm, estimated_seconds=60)
    )
    urgent = make_project("Urgent", status=ProjectStatus.IN_PROGRESS)
    make_task("Late", project=urgent, estimated_seconds=60, due_date=now - dt.timedelta(days=1))
    finished = make_project("Finished", status=ProjectStatus.COMPLETED)
    make_task("Late", project=finished, estimated_seconds=60, due_date=now - dt.timedelta(days=1))

    issues = health.projects_needing_attention([calm, urgent, finished], now)

    assert [issue.project.title for issue in issues] == ["Urgent", "Calm"]
    assert issues[0].summary_text == "1 overdue"
    assert issues[1].summary_text == "1 blocked"


def test_todays_activity(make_task, add_entry, now):
    running = make_task("Running")
    add_entry(running, now - dt.timedelta(minutes=30), personnel=3)
    logged = make_task("Logged", completed_date=now - dt.timedelta(hours=1))
    add_entry(logged, now - dt.timedelta(hours=3), now - dt.timedelta(hours=1), personnel=2)

    activity = health.todays_activity([running, logged], now, "UTC")

    assert activity.active_timers == 1
    assert activity.active_personnel == 3
    assert activity.hours_logged_today == pytest.approx(2.0)
    assert activity.person_hours_today == pytest.approx(4.0)
    assert activity.tasks_completed_today == 1


def test_upcoming_projects(make_project, now):
    planned = make_project("Planned")
    soon = make_project("Soon", status=ProjectStatus.IN_PROGRESS, due_date=now + dt.timedelta(days=2))
    later = make_project("Later", status=ProjectStatus.IN_PROGRESS, due_date=now + dt.timedelta(days=9))
    past = make_project("Past", status=ProjectStatus.IN_PROGRESS, due_date=now - dt.timedelta(days=1))

    assert health.upcoming_projects([later, planned, past, soon], now) == [soon, later, planned]


def test_active_projects_rank_by_health_then_due_date(make_project, make_task, now):
    quiet = make_project("Quiet", status=ProjectStatus.IN_PROGRESS, due_date=now + dt.timedelta(days=3))
    make_task("Open", project=quiet, estimated_seconds=60)
    late = make_project("Late", status=ProjectStatus.IN_PROGRESS, due_date=now + dt.timedelta(days=30))
    make_task("Overdue", project=late, estimated_seconds=60, due_date=now - dt.timedelta(days=1))
    done = make_project("Done", status=ProjectStatus.IN_PROGRESS)
    make_task("Finished", project=done, completed_date=now)
    paused = make_project("Paused", status=ProjectStatus.ON_HOLD)
    make_task("Waiting", project=paused)

    assert not health.is_active_project(done)
    assert health.active_projects([quiet, done, paused, late], now) == [late, quiet]
