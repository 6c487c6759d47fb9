from __future__ import annotations

import uuid
from typing import TYPE_CHECKING

from .errors import TreeContractError
from .models import (
    AgentStep,
    BranchStep,
    LoopStep,
    WorkflowNode,
    child_nodes,
    replace_children,
)

if TYPE_CHECKING:
    from .results import NodeResult


def new_node_id() -> str:
    return uuid.uuid4().hex


def assign_identities(tree: WorkflowNode) -> WorkflowNode:
    """Give every node without an id a fresh one.

    Existing ids are never changed. A tree that is already fully identified is
    returned as the same object.

    Raises:
        TreeContractError: a node object appears twice (aliasing or a cycle),
            or two nodes already carry the same id.
    """

    seen_objects: set[int] = set()
    seen_ids: set[str] = set()
    # Pre-assigned ids are collected first so a fresh id can never collide with
    # one that appears later in the walk.
    _collect_ids(tree, seen_objects, seen_ids)
    return _assign(tree, seen_ids)


def _collect_ids(node: WorkflowNode, seen_objects: set[int], seen_ids: set[str]) -> None:
    if id(node) in seen_objects:
        raise TreeContractError(
            f"Node {node.id or node.kind!r} appears more than once in the tree"
        )
    seen_objects.add(id(node))
    if node.id is not None:
        if node.id in seen_ids:
            raise TreeContractError(f"Duplicate node id {node.id!r}")
        seen_ids.add(node.id)
    for child in child_nodes(node):
        _collect_ids(child, seen_objects, seen_ids)


def _assign(node: WorkflowNode, taken: set[str]) -> WorkflowNode:
    children = child_nodes(node)
    new_children = [_assign(child, taken) for child in children]
    changed = any(new is not old for new, old in zip(new_children, children))
    if changed:
        node = replace_children(node, new_children)

    if node.id is None:
        node_id = new_node_id()
        while node_id in taken:
            node_id = new_node_id()
        taken.add(node_id)
        node = node.model_copy(update={"id": node_id})
    return node


def adopt_identities(tree: WorkflowNode, previous: NodeResult) -> WorkflowNode:
    """Copy node ids from an earlier run's result tree onto id-less nodes.

    Nodes are matched by position. A node adopts the recorded id only when the
    recorded node has the same kind (and, for agent steps, the same label) and
    the id is not already used elsewhere in `tree`. Loop bodies adopt the id
    recorded for the first instance. Untouched subtrees are returned as the
    same objects.

    Used before `assign_identities` when resuming a flow document that was
    never annotated, so its steps can be matched against the earlier run.
    """

    seen_ids: set[str] = set()
    _collect_ids(tree, set(), seen_ids)
    return _adopt(tree, previous, seen_ids)


def _counterparts(node: WorkflowNode, result: NodeResult) -> list[NodeResult | None]:
    children = child_nodes(node)
    if isinstance(node, LoopStep):
        return [result.items[0] if result.items else None]
    recorded: list[NodeResult | None] = list(result.children)
    if isinstance(node, BranchStep):
        recorded = recorded[: len(node.children)]
        recorded += [None] * (len(node.children) - len(recorded))
        if node.default is not None:
            recorded.append(result.default)
    recorded += [None] * (len(children) - len(recorded))
    return recorded[: len(children)]


def _adopt(node: WorkflowNode, result: NodeResult | None, taken: set[str]) -> WorkflowNode:
    if result is None or result.kind != node.kind:
        return node
    if isinstance(node, AgentStep) and node.label is not None and node.label != result.label:
        return node

    children = child_nodes(node)
    new_children = [
        _adopt(child, counterpart, taken)
        for child, counterpart in zip(children, _counterparts(node, result))
    ]
    if any(new is not old for new, old in zip(new_children, children)):
        node = replace_children(node, new_children)

    if node.id is None and result.node_id is not None and result.node_id not in taken:
        taken.add(result.node_id)
        node = node.model_copy(update={"id": result.node_id})
    return node
