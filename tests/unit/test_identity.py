"""Unit tests for node identity assignment."""

from __future__ import annotations

import pytest

from agent_flow_engine.flows import (
    AgentStep,
    BranchCase,
    BranchStep,
    LoopStep,
    SequenceStep,
    TreeContractError,
    adopt_identities,
    assign_identities,
    derive_names,
    literal,
)
from agent_flow_engine.flows.models import child_nodes
from agent_flow_engine.flows.results import NodeResult


def _all_nodes(node):
    yield node
    for child in child_nodes(node):
        yield from _all_nodes(child)


def _tree() -> SequenceStep:
    return SequenceStep(
        children=[
            AgentStep(agent="fetch"),
            LoopStep(source=literal([1, 2]), body=AgentStep(agent="summarize")),
            BranchStep(
                condition=literal("a"),
                children=[BranchCase(when="a", node=AgentStep(agent="left"))],
                default=AgentStep(agent="right"),
            ),
        ]
    )


def test_every_node_gets_a_unique_id() -> None:
    annotated = assign_identities(_tree())

    ids = [node.id for node in _all_nodes(annotated)]
    assert len(ids) == 7
    assert all(ids)
    assert len(set(ids)) == len(ids)


def test_assignment_is_idempotent() -> None:
    annotated = assign_identities(_tree())

    again = assign_identities(annotated)

    assert again is annotated


def test_existing_ids_are_never_reassigned() -> None:
    tree = SequenceStep(
        id="root",
        children=[AgentStep(id="kept", agent="fetch"), AgentStep(agent="summarize")],
    )

    annotated = assign_identities(tree)

    assert annotated.id == "root"
    assert annotated.children[0].id == "kept"
    assert annotated.children[0] is tree.children[0]
    assert annotated.children[1].id not in {None, "root", "kept"}


def test_input_tree_is_left_untouched() -> None:
    tree = _tree()

    assign_identities(tree)

    assert all(node.id is None for node in _all_nodes(tree))


def test_aliased_node_is_rejected() -> None:
    shared = AgentStep(agent="fetch")
    tree = SequenceStep(children=[shared, shared])

    with pytest.raises(TreeContractError):
        assign_identities(tree)


def test_duplicate_ids_are_rejected() -> None:
    tree = SequenceStep(
        children=[AgentStep(id="same", agent="fetch"), AgentStep(id="same", agent="summarize")]
    )

    with pytest.raises(TreeContractError, match="same"):
        assign_identities(tree)


def _recorded(path: str, node_id: str, kind: str, label: str, **nested) -> NodeResult:
    return NodeResult(
        path=path, node_id=node_id, kind=kind, label=label, status="succeeded", **nested
    )


def _previous_run() -> NodeResult:
    return _recorded(
        "$",
        "root-1",
        "sequence",
        "sequence",
        children=[
            _recorded("$.input[0]", "fetch-1", "step", "fetch"),
            _recorded(
                "$.input[1]",
                "loop-1",
                "loop",
                "loop",
                items=[_recorded("$.input[1].item[0]", "summarize-1", "step", "summarize")],
            ),
        ],
    )


def test_ids_are_adopted_from_a_previous_run_by_position() -> None:
    tree = derive_names(
        SequenceStep(
            children=[
                AgentStep(agent="fetch"),
                LoopStep(source=literal([1, 2]), body=AgentStep(agent="summarize")),
            ]
        )
    )

    adopted = adopt_identities(tree, _previous_run())

    assert adopted.id == "root-1"
    assert adopted.children[0].id == "fetch-1"
    assert adopted.children[1].id == "loop-1"
    assert adopted.children[1].body.id == "summarize-1"


def test_changed_steps_and_taken_ids_are_not_adopted() -> None:
    tree = derive_names(
        SequenceStep(
            children=[
                AgentStep(agent="crawl"),
                LoopStep(
                    source=literal([1]),
                    body=AgentStep(id="loop-1", agent="summarize"),
                ),
            ]
        )
    )

    adopted = adopt_identities(tree, _previous_run())

    assert adopted.id == "root-1"
    assert adopted.children[0].id is None
    assert adopted.children[1].id is None
    assert adopted.children[1].body is tree.children[1].body
