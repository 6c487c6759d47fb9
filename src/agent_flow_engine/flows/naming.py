"""Breadcrumb labels for flow nodes.

Only agent steps contribute to the lineage: a step's label is the chain of
ancestor step segments down to and including its own. Containers are labelled
with the lineage they sit under.
"""

from __future__ import annotations

from .models import AgentStep, WorkflowNode, child_nodes, replace_children

DEFAULT_SEPARATOR = " > "


def step_segment(node: AgentStep) -> str:
    return node.name or node.agent


def derive_names(tree: WorkflowNode, separator: str = DEFAULT_SEPARATOR) -> WorkflowNode:
    """Return `tree` with every node's `label` derived from its lineage.

    Idempotent. Subtrees whose labels are already correct are returned as the
    same objects.
    """

    return _derive(tree, (), separator)


def _derive(node: WorkflowNode, lineage: tuple[str, ...], separator: str) -> WorkflowNode:
    if isinstance(node, AgentStep):
        lineage = (*lineage, step_segment(node))
        label = separator.join(lineage)
    elif lineage:
        label = separator.join(lineage)
    else:
        label = node.name or node.kind

    children = child_nodes(node)
    new_children = [_derive(child, lineage, separator) for child in children]
    if any(new is not old for new, old in zip(new_children, children)):
        node = replace_children(node, new_children)

    if node.label != label:
        node = node.model_copy(update={"label": label})
    return node
