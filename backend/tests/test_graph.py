from __future__ import annotations

import pytest

from crewtrack import graph
from crewtrack.graph import DUPLICATE_DEPENDENCY


def test_self_dependency_rejected(make_task):
    task = make_task("Solo")
    assert graph.dependency_rejection_reason(task, task) == "A task cannot depend on itself"


def test_cannot_depend_on_own_subtask(make_task):
    parent = make_task("Parent")
    child = make_task("Child", parent=parent)
    grandchild = make_task("Grandchild", parent=child)

    assert graph.dependency_rejection_reason(parent, grandchild) == "A task cannot depend on its own subtask"


def test_subtask_cannot_depend_on_parent(make_task):
    parent = make_task("Parent")
    child = make_task("Child", parent=parent)
    assert graph.dependency_rejection_reason(child, parent) == "A subtask cannot depend on its parent"


def test_dependency_already_waiting_on_parent(make_task):
    parent = make_task("Parent")
    child = make_task("Child", parent=parent)
    other = make_task("Other")
    other.depends_on.append(parent)

    reason = graph.dependency_rejection_reason(child, other)
    assert reason == "'Other' already depends on the parent task 'Parent'"


def test_duplicate_dependency(make_task):
    task = make_task("Task")
    other = make_task("Other")
    task.depends_on.append(other)

    assert graph.dependency_rejection_reason(task, other) == DUPLICATE_DEPENDENCY
    assert not graph.would_create_dependency_cycle(task, other)


def test_transitive_dependency_cycle(make_task):
    first = make_task("First")
    second = make_task("Second")
    third = make_task("Third")
    second.depends_on.append(first)
    third.depends_on.append(second)

    assert graph.would_create_dependency_cycle(first, third)
    assert graph.dependency_rejection_reason(first, third) == "'Third' already depends on 'First'"
    assert graph.can_add_dependency(third, first)


def test_cycle_through_subtask_dependencies(make_task):
    task = make_task("Task")
    other = make_task("Other")
    other_child = make_task("Other child", parent=other)
    other_child.depends_on.append(task)

    # Other is blocked by its subtask, which waits on Task.
    assert graph.would_create_dependency_cycle(task, other)


def test_available_dependencies(make_task):
    parent = make_task("Parent")
    child = make_task("Child", parent=parent)
    sibling = make_task("Sibling", parent=parent)
    outsider = make_task("Outsider")

    assert graph.available_dependencies(child, [parent, child, sibling, outsider]) == [sibling, outsider]


def test_parent_cycle_detection(make_task):
    root = make_task("Root")
    child = make_task("Child", parent=root)
    grandchild = make_task("Grandchild", parent=child)

    assert graph.would_create_parent_cycle(root, grandchild)
    assert graph.would_create_parent_cycle(root, root)
    assert not graph.would_create_parent_cycle(grandchild, root)
    assert not graph.would_create_parent_cycle(child, None)


def test_find_dependents_skips_archived(make_task):
    task = make_task("Task")
    active = make_task("Active")
    archived = make_task("Archived", is_archived=True)
    active.depends_on.append(task)
    archived.depends_on.append(task)

    assert graph.find_dependents(task, [task, active, archived]) == [active]


def test_iter_subtree_and_ancestors(make_task):
    root = make_task("Root")
    child = make_task("Child", parent=root)
    leaf = make_task("Leaf", parent=child)
    sibling = make_task("Sibling", parent=root)

    assert list(graph.iter_subtree(root)) == [child, leaf, sibling]
    assert list(graph.iter_ancestors(leaf)) == [child, root]


@pytest.mark.parametrize("depth", [1, 5])
def test_depends_on_transitively(make_task, depth):
    chain = [make_task(f"Step {index}") for index in range(depth + 1)]
    for earlier, later in zip(chain, chain[1:]):
        later.depends_on.append(earlier)

    assert graph.depends_on_transitively(chain[-1], chain[0])
    assert not graph.depends_on_transitively(chain[0], chain[-1])


def test_cycle_through_nested_subtask_dependencies(make_task):
    task = make_task("Tile")
    other = make_task("Plumbing")
    rough_in = make_task("Rough-in", parent=other)
    valves = make_task("Valves", parent=rough_in)
    valves.depends_on.append(task)

    assert graph.would_create_dependency_cycle(task, other)
    assert graph.dependency_rejection_reason(task, other) == "'Plumbing' already depends on 'Tile'"


def test_nested_subtask_dependencies_without_cycle_are_allowed(make_task):
    task = make_task("Tile")
    other = make_task("Plumbing")
    valves = make_task("Valves", parent=make_task("Rough-in", parent=other))
    valves.depends_on.append(make_task("Permit"))

    assert graph.can_add_dependency(task, other)


def test_dependency_already_waiting_on_grandparent(make_task):
    root = make_task("Bathroom")
    walls = make_task("Walls", parent=root)
    paint = make_task("Paint", parent=walls)
    primer = make_task("Primer")
    primer.depends_on.append(root)

    assert graph.would_create_dependency_cycle(paint, primer)
    assert graph.dependency_rejection_reason(paint, primer) == "'Primer' already depends on the parent task 'Bathroom'"
    assert graph.dependency_rejection_reason(paint, root) == "A subtask cannot depend on its parent"
