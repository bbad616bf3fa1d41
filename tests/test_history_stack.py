"""Tests for the bounded undo/redo log."""
from wizardflow.core.history import HistoryStack
from wizardflow.schemas.wizard import WizardState


def state(n):
    return WizardState(selected_package="starter", redesign_count=n)


def test_undo_redo_walks_entries():
    history = HistoryStack(capacity=5)
    for n in range(3):
        history.push(state(n))

    assert history.undo().redesign_count == 1
    assert history.undo().redesign_count == 0
    assert history.undo() is None
    assert history.redo().redesign_count == 1
    assert history.redo().redesign_count == 2
    assert history.redo() is None


def test_push_discards_redo_tail():
    history = HistoryStack(capacity=5)
    for n in range(3):
        history.push(state(n))
    history.undo()
    history.undo()

    history.push(state(10))

    assert len(history) == 2
    assert not history.can_redo
    assert history.undo().redesign_count == 0


def test_capacity_evicts_oldest():
    capacity = 50
    history = HistoryStack(capacity=capacity)
    pushes = 2 * capacity - 1
    for n in range(pushes):
        history.push(state(n))

    assert len(history) == capacity
    reachable = [history.current().redesign_count]
    while history.can_undo:
        reachable.append(history.undo().redesign_count)

    assert reachable[-1] == pushes - capacity
    assert not set(range(capacity - 1)) & set(reachable)


def test_entries_are_deep_copies():
    history = HistoryStack(capacity=5)
    live = WizardState(requirements={"topic": "Acme Corp"})
    history.push(live)

    live.requirements["topic"] = "Globex"

    assert history.current().requirements == {"topic": "Acme Corp"}
