"""Unit tests for the per-node state machine.

Illegal transitions must fail loudly; terminal states are final.
"""

from __future__ import annotations

import pytest

from agent_flow_engine.flows import AgentStep, NodeStatus
from agent_flow_engine.flows.results import NodeRecord
from agent_flow_engine.flows.status import (
    ALLOWED_TRANSITIONS,
    TERMINAL_STATUSES,
    IllegalTransitionError,
    check_transition,
)


@pytest.mark.parametrize(
    ("current", "to"),
    [
        (NodeStatus.PENDING, NodeStatus.RUNNING),
        (NodeStatus.PENDING, NodeStatus.SKIPPED),
        (NodeStatus.PENDING, NodeStatus.CANCELLED),
        (NodeStatus.RUNNING, NodeStatus.SUCCEEDED),
        (NodeStatus.RUNNING, NodeStatus.FAILED),
        (NodeStatus.RUNNING, NodeStatus.CANCELLED),
    ],
)
def test_legal_transitions(current: NodeStatus, to: NodeStatus) -> None:
    assert check_transition(current, to) is to


@pytest.mark.parametrize(
    ("current", "to"),
    [
        (NodeStatus.PENDING, NodeStatus.SUCCEEDED),
        (NodeStatus.PENDING, NodeStatus.FAILED),
        (NodeStatus.RUNNING, NodeStatus.SKIPPED),
        (NodeStatus.RUNNING, NodeStatus.PENDING),
        (NodeStatus.SUCCEEDED, NodeStatus.FAILED),
        (NodeStatus.FAILED, NodeStatus.RUNNING),
    ],
)
def test_transition_rejects_illegal_transitions(current: NodeStatus, to: NodeStatus) -> None:
    with pytest.raises(IllegalTransitionError):
        check_transition(current, to)


def test_terminal_states_have_no_way_out() -> None:
    for status in TERMINAL_STATUSES:
        assert status.is_terminal
        assert ALLOWED_TRANSITIONS[status] == set()
    assert not NodeStatus.PENDING.is_terminal
    assert not NodeStatus.RUNNING.is_terminal


def test_record_move_stamps_times() -> None:
    record = NodeRecord(path="$", node=AgentStep(agent="one"))

    assert record.move(NodeStatus.RUNNING) is NodeStatus.PENDING
    assert record.started_at is not None
    assert record.finished_at is None

    assert record.move(NodeStatus.SUCCEEDED) is NodeStatus.RUNNING
    assert record.finished_at >= record.started_at

    with pytest.raises(IllegalTransitionError):
        record.move(NodeStatus.RUNNING)
    assert record.status is NodeStatus.SUCCEEDED
